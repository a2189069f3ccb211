"""
Driver Registry Module

First-login registration of drivers. A 6-digit driver id owns exactly one
name: logging in again with a different name is rejected instead of
renaming the driver.
"""

import logging
from typing import List, Optional

from server.database import DriverRecord
from server.errors import DriverNameConflictError, InvalidInputError
from server.input_validator import validator
from server.repository import DriverRepository

logger = logging.getLogger(__name__)


class DriverRegistry:

    def __init__(self, drivers: DriverRepository):
        self._drivers = drivers

    def login(self, driver_id: str, driver_name: str) -> DriverRecord:
        """
        Return the registered driver, creating it on first login.
        Name comparison ignores case and surrounding whitespace.
        """
        validator.require_driver_id(driver_id)
        name = (driver_name or "").strip()
        if not name:
            raise InvalidInputError("Driver name is missing")

        existing = self._drivers.get(driver_id)
        if existing is None:
            driver = DriverRecord(driver_id=driver_id, driver_name=name)
            if self._drivers.insert_if_absent(driver):
                logger.info(f"Registered new driver {driver_id}")
                return driver
            # another first login for this id won the insert
            existing = self._drivers.get(driver_id)

        if existing.driver_name.strip().lower() != name.lower():
            logger.warning(f"Login for driver {driver_id} rejected: name mismatch "
                           f"(provided {name!r}, expected {existing.driver_name!r})")
            raise DriverNameConflictError(driver_id)
        logger.info(f"Driver {driver_id} logged in")
        return existing

    def get_driver(self, driver_id: str) -> Optional[DriverRecord]:
        validator.require_driver_id(driver_id)
        return self._drivers.get(driver_id)

    def is_registered(self, driver_id: str) -> bool:
        return self._drivers.exists(driver_id)

    def list_drivers(self) -> List[DriverRecord]:
        return self._drivers.list_all()
