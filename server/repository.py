"""
Record Store Module

Repository classes over the SQLAlchemy tables. Each public call runs in
its own database session and transaction: it either commits completely or
rolls back, so readers never see a half-written session or event.

Any SQLAlchemyError is converted into PersistenceError, which callers treat
as transient and distinct from "nothing found".
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from server.database import DriverRecord, DriverSessionRecord, EventRecord
from server.errors import PersistenceError

logger = logging.getLogger(__name__)


class _Repository:

    def __init__(self, session_factory):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Record store failure in {type(self).__name__}: {e}")
            raise PersistenceError(str(e)) from e
        finally:
            db.close()


class DriverRepository(_Repository):

    def get(self, driver_id: str) -> Optional[DriverRecord]:
        with self._transaction() as db:
            return db.get(DriverRecord, driver_id)

    def exists(self, driver_id: str) -> bool:
        with self._transaction() as db:
            return db.query(DriverRecord.driver_id).filter(
                DriverRecord.driver_id == driver_id).first() is not None

    def insert_if_absent(self, driver: DriverRecord) -> bool:
        """
        Insert a new driver. Returns False, writing nothing, when the id is
        already taken, including by a concurrent first login.
        """
        with self._transaction() as db:
            db.add(driver)
            try:
                db.flush()
            except IntegrityError:
                db.rollback()
                logger.debug(f"Driver {driver.driver_id} was registered concurrently")
                return False
            return True

    def list_all(self) -> List[DriverRecord]:
        with self._transaction() as db:
            return db.query(DriverRecord).order_by(DriverRecord.driver_id).all()


class SessionRepository(_Repository):

    def insert(self, record: DriverSessionRecord) -> DriverSessionRecord:
        with self._transaction() as db:
            db.add(record)
            db.flush()
            return record

    def update(self, record: DriverSessionRecord) -> DriverSessionRecord:
        with self._transaction() as db:
            return db.merge(record)

    def find_by_id(self, session_id: int) -> Optional[DriverSessionRecord]:
        with self._transaction() as db:
            return db.get(DriverSessionRecord, session_id)

    def find_active_by_driver(self, driver_id: str) -> List[DriverSessionRecord]:
        """All active sessions of a driver. Uniqueness is the caller's job."""
        with self._transaction() as db:
            return (db.query(DriverSessionRecord)
                    .filter(DriverSessionRecord.driver_id == driver_id,
                            DriverSessionRecord.active.is_(True))
                    .order_by(DriverSessionRecord.start_time.desc())
                    .all())

    def find_all_by_driver(self, driver_id: str) -> List[DriverSessionRecord]:
        with self._transaction() as db:
            return (db.query(DriverSessionRecord)
                    .filter(DriverSessionRecord.driver_id == driver_id)
                    .order_by(DriverSessionRecord.start_time)
                    .all())

    def find_all_active(self) -> List[DriverSessionRecord]:
        with self._transaction() as db:
            return (db.query(DriverSessionRecord)
                    .filter(DriverSessionRecord.active.is_(True))
                    .order_by(DriverSessionRecord.start_time)
                    .all())

    def find_active_before(self, threshold: datetime) -> List[DriverSessionRecord]:
        with self._transaction() as db:
            return (db.query(DriverSessionRecord)
                    .filter(DriverSessionRecord.active.is_(True),
                            DriverSessionRecord.start_time < threshold)
                    .all())

    def close_if_active(self, session_id: int, end_time: datetime,
                        total_seconds: int) -> bool:
        """
        Conditional write: close the session only if it is still active.
        Returns False when somebody else already closed it.
        """
        with self._transaction() as db:
            updated = (db.query(DriverSessionRecord)
                       .filter(DriverSessionRecord.session_id == session_id,
                               DriverSessionRecord.active.is_(True))
                       .update({
                           DriverSessionRecord.end_time: end_time,
                           DriverSessionRecord.total_driving_time_seconds: total_seconds,
                           DriverSessionRecord.active: False,
                       }, synchronize_session=False))
            return updated == 1


class EventRepository(_Repository):

    def insert(self, record: EventRecord) -> EventRecord:
        with self._transaction() as db:
            db.add(record)
            db.flush()
            return record

    def find_by_session(self, session_id: int) -> List[EventRecord]:
        with self._transaction() as db:
            return (db.query(EventRecord)
                    .filter(EventRecord.session_id == session_id)
                    .order_by(EventRecord.start_time, EventRecord.event_id)
                    .all())

    def find_by_driver(self, driver_id: str, since: Optional[datetime] = None,
                       limit: Optional[int] = None) -> List[EventRecord]:
        """Driver's events, latest first, optionally bounded below by `since`."""
        with self._transaction() as db:
            query = db.query(EventRecord).filter(EventRecord.driver_id == driver_id)
            if since is not None:
                query = query.filter(EventRecord.start_time >= since)
            query = query.order_by(EventRecord.start_time.desc(), EventRecord.event_id.desc())
            if limit is not None:
                query = query.limit(limit)
            return query.all()

    def find_by_session_and_type(self, session_id: int, event_type: str) -> List[EventRecord]:
        with self._transaction() as db:
            return (db.query(EventRecord)
                    .filter(EventRecord.session_id == session_id,
                            EventRecord.event_type == event_type)
                    .all())

    def find_before(self, threshold: datetime) -> List[EventRecord]:
        with self._transaction() as db:
            return db.query(EventRecord).filter(EventRecord.start_time < threshold).all()

    def count_before(self, threshold: datetime) -> int:
        with self._transaction() as db:
            return db.query(EventRecord).filter(EventRecord.start_time < threshold).count()

    def delete_before(self, threshold: datetime) -> int:
        with self._transaction() as db:
            return (db.query(EventRecord)
                    .filter(EventRecord.start_time < threshold)
                    .delete(synchronize_session=False))

    def count_by_session_and_type(self, session_id: int, event_type: str) -> int:
        with self._transaction() as db:
            return (db.query(EventRecord)
                    .filter(EventRecord.session_id == session_id,
                            EventRecord.event_type == event_type)
                    .count())


class RecordStore:
    """The three repositories sharing one session factory."""

    def __init__(self, session_factory):
        self.drivers = DriverRepository(session_factory)
        self.sessions = SessionRepository(session_factory)
        self.events = EventRepository(session_factory)
