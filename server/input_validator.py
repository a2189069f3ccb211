"""
Input Validator Module

Lightweight validation of values arriving from the request layer before
they reach the session and event logic. Each check reports precisely what
was wrong; nothing is silently coerced.
"""

import math
import re
from typing import Any, Optional, Tuple

from server.errors import InvalidInputError
from shared.models import DriverState

DRIVER_ID_PATTERN = re.compile(r"[0-9]{6}")


class InputValidator:
    """
    Validates identifiers, state names and durations.
    The check_* methods return (is_valid, reason); the require_* methods
    raise InvalidInputError with that reason.
    """

    def __init__(self):
        self.max_duration_seconds = 24 * 3600.0  # one event cannot outlast a day

    def check_driver_id(self, driver_id: Any) -> Tuple[bool, str]:
        if driver_id is None:
            return False, "Driver ID is missing"
        if not isinstance(driver_id, str) or not DRIVER_ID_PATTERN.fullmatch(driver_id):
            return False, f"Driver ID must be exactly 6 digits, got {driver_id!r}"
        return True, ""

    def check_state(self, state: Any) -> Tuple[Optional[DriverState], str]:
        if isinstance(state, DriverState):
            return state, ""
        if state is None or (isinstance(state, str) and not state.strip()):
            return None, "Driver state is missing"
        if not isinstance(state, str):
            return None, f"Invalid driver state: {state!r}"
        try:
            return DriverState(state.strip().upper()), ""
        except ValueError:
            return None, f"Invalid driver state: {state}"

    def check_duration(self, duration: Any) -> Tuple[bool, str]:
        if isinstance(duration, bool) or not isinstance(duration, (int, float)):
            return False, f"Duration must be a number of seconds, got {duration!r}"
        if not math.isfinite(duration):
            return False, "Duration must be finite"
        if duration < 0:
            return False, f"Duration {duration} is negative"
        if duration > self.max_duration_seconds:
            return False, f"Duration {duration} exceeds {self.max_duration_seconds:.0f}s"
        return True, ""

    def require_driver_id(self, driver_id: Any) -> str:
        is_valid, reason = self.check_driver_id(driver_id)
        if not is_valid:
            raise InvalidInputError(reason)
        return driver_id

    def require_state(self, state: Any) -> DriverState:
        parsed, reason = self.check_state(state)
        if parsed is None:
            raise InvalidInputError(reason)
        return parsed

    def require_duration(self, duration: Any) -> float:
        is_valid, reason = self.check_duration(duration)
        if not is_valid:
            raise InvalidInputError(reason)
        return float(duration)


validator = InputValidator()
