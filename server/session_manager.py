"""
Session Lifecycle Manager

Owns the start/end state machine of driving sessions and upholds the
central invariant: a driver has at most one active session at any instant.

Per session instance the states are NONE -> ACTIVE -> ENDED. ENDED is
terminal; a new driving period is a new instance. Besides the regular END,
an active session can be force-ended in two named ways:

- FORCE_END_ON_START: the driver starts a new session while one is still
  active (client forgot to end it). The old one is closed first.
- FORCE_END_STALE: the session reaper found it active for too long.

Start, end and force-end are serialized per driver id with a lock, and the
close itself is a conditional write, so two closers racing on the same
session apply it once.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional

from server.database import DriverSessionRecord
from server.errors import IllegalTransitionError, UnknownDriverError
from server.input_validator import validator
from server.repository import RecordStore

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    NONE = "NONE"
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


class SessionTransition(str, Enum):
    START = "start"
    END = "end"
    FORCE_END_ON_START = "force_end_on_start"
    FORCE_END_STALE = "force_end_stale"


_CLOSING = (SessionTransition.END,
            SessionTransition.FORCE_END_ON_START,
            SessionTransition.FORCE_END_STALE)

_TRANSITIONS = {(SessionState.NONE, SessionTransition.START): SessionState.ACTIVE}
for _t in _CLOSING:
    _TRANSITIONS[(SessionState.ACTIVE, _t)] = SessionState.ENDED
    # closing twice is a no-op, not an error
    _TRANSITIONS[(SessionState.ENDED, _t)] = SessionState.ENDED


def next_state(state: SessionState, transition: SessionTransition) -> SessionState:
    """Resolve a transition, raising IllegalTransitionError if not allowed."""
    try:
        return _TRANSITIONS[(state, transition)]
    except KeyError:
        raise IllegalTransitionError(
            f"Cannot apply {transition.value} to a session in state {state.value}") from None


def state_of(record: Optional[DriverSessionRecord]) -> SessionState:
    if record is None:
        return SessionState.NONE
    return SessionState.ACTIVE if record.active else SessionState.ENDED


def driving_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds between start and end, never negative."""
    return max(0, int((end - start).total_seconds()))


class _DriverLock:
    """A per-driver lock and the number of callers holding or awaiting it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class SessionLifecycleManager:

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = datetime.now):
        self._sessions = store.sessions
        self._drivers = store.drivers
        self._clock = clock
        self._locks: Dict[str, _DriverLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _driver_lock(self, driver_id: str) -> Iterator[None]:
        """
        Hold the driver's lock. The entry is dropped once no caller holds
        or waits for it, so the registry only covers drivers in flight.
        """
        with self._locks_guard:
            entry = self._locks.get(driver_id)
            if entry is None:
                entry = self._locks[driver_id] = _DriverLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[driver_id]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start_session(self, driver_id: str) -> DriverSessionRecord:
        """
        Start a new session for a registered driver. Any session still
        active for the driver is force-ended first.
        """
        validator.require_driver_id(driver_id)
        if not self._drivers.exists(driver_id):
            raise UnknownDriverError(driver_id)

        with self._driver_lock(driver_id):
            for previous in self._sessions.find_active_by_driver(driver_id):
                logger.warning(f"Driver {driver_id} already has an active session "
                               f"({previous.session_id}). Ending it before starting a new one.")
                self._close(previous, SessionTransition.FORCE_END_ON_START)

            next_state(SessionState.NONE, SessionTransition.START)
            record = self._sessions.insert(DriverSessionRecord(
                driver_id=driver_id,
                start_time=self._clock(),
                active=True,
            ))
            logger.info(f"Started new session {record.session_id} for driver {driver_id}")
            return record

    def end_session(self, driver_id: str) -> Optional[DriverSessionRecord]:
        """Close the driver's active session, or return None if there is none."""
        validator.require_driver_id(driver_id)
        with self._driver_lock(driver_id):
            active = self._sessions.find_active_by_driver(driver_id)
            if not active:
                logger.warning(f"No active session found for driver {driver_id} to end.")
                return None
            latest, *extra = active
            for orphan in extra:
                logger.warning(f"Driver {driver_id} had more than one active session; "
                               f"closing session {orphan.session_id} as well")
                self._close(orphan, SessionTransition.END)
            return self._close(latest, SessionTransition.END)

    def force_end(self, record: DriverSessionRecord,
                  transition: SessionTransition = SessionTransition.FORCE_END_STALE
                  ) -> Optional[DriverSessionRecord]:
        """
        Close `record` outside the regular end flow. Returns the closed
        session, or None if it had already ended.
        """
        if transition not in _CLOSING:
            raise IllegalTransitionError(f"{transition.value} does not close a session")
        with self._driver_lock(record.driver_id):
            return self._close(record, transition)

    def _close(self, record: DriverSessionRecord,
               transition: SessionTransition) -> Optional[DriverSessionRecord]:
        if state_of(record) is SessionState.ENDED:
            next_state(SessionState.ENDED, transition)
            logger.debug(f"Session {record.session_id} already ended")
            return None

        next_state(SessionState.ACTIVE, transition)
        end_time = self._clock()
        total = driving_seconds(record.start_time, end_time)
        if not self._sessions.close_if_active(record.session_id, end_time, total):
            logger.debug(f"Session {record.session_id} was closed concurrently")
            return None

        closed = self._sessions.find_by_id(record.session_id)
        logger.info(f"Ended session {record.session_id} for driver {record.driver_id} "
                    f"({transition.value}). Duration: {total} seconds.")
        return closed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active_session(self, driver_id: str) -> Optional[DriverSessionRecord]:
        """Lock-free lookup of the driver's active session."""
        validator.require_driver_id(driver_id)
        active = self._sessions.find_active_by_driver(driver_id)
        return active[0] if active else None

    def get_all_active_sessions(self) -> List[DriverSessionRecord]:
        return self._sessions.find_all_active()

    def get_sessions_for_driver(self, driver_id: str) -> List[DriverSessionRecord]:
        validator.require_driver_id(driver_id)
        return self._sessions.find_all_by_driver(driver_id)

    def get_session_by_id(self, session_id: int) -> Optional[DriverSessionRecord]:
        return self._sessions.find_by_id(session_id)

    def get_stale_sessions(self, threshold: datetime) -> List[DriverSessionRecord]:
        return self._sessions.find_active_before(threshold)
