"""
Session Reaper Module

Periodic maintenance:
- stale-session sweep: force-ends sessions left active longer than
  12 hours (hourly)
- retention purge: deletes events older than 30 days (daily)

Both operations are idempotent and run alongside live traffic. The
MaintenanceScheduler runs each on its own daemon thread.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from server.database import DriverSessionRecord
from server.repository import EventRepository
from server.session_manager import SessionLifecycleManager, SessionTransition
from shared.config import Config

logger = logging.getLogger(__name__)


class SessionReaper:

    def __init__(self, sessions: SessionLifecycleManager, events: EventRepository,
                 clock: Callable[[], datetime] = datetime.now,
                 stale_after: timedelta = timedelta(hours=Config.STALE_SESSION_HOURS),
                 retention: timedelta = timedelta(days=Config.EVENT_RETENTION_DAYS)):
        self._sessions = sessions
        self._events = events
        self._clock = clock
        self.stale_after = stale_after
        self.retention = retention

    def sweep_stale_sessions(self) -> List[DriverSessionRecord]:
        """Force-end every session active since before now - stale_after."""
        threshold = self._clock() - self.stale_after
        closed = []
        for session in self._sessions.get_stale_sessions(threshold):
            logger.warning(f"Found stale session: {session.session_id} for driver: "
                           f"{session.driver_id}, active since: {session.start_time}")
            ended = self._sessions.force_end(session, SessionTransition.FORCE_END_STALE)
            if ended is not None:
                logger.info(f"Automatically closed stale session: {session.session_id}")
                closed.append(ended)
        return closed

    def purge_old_events(self) -> int:
        """Delete events older than the retention period. Returns the count removed."""
        threshold = self._clock() - self.retention
        expected = self._events.count_before(threshold)
        if expected == 0:
            logger.debug(f"No events to clean up before {threshold}")
            return 0
        removed = self._events.delete_before(threshold)
        logger.info(f"Cleaned up {removed} old events from before {threshold}")
        return removed


class MaintenanceScheduler:
    """
    Runs the reaper operations periodically, one daemon thread per job.
    A failing run is logged and the job waits for its next turn.
    """

    def __init__(self, reaper: SessionReaper,
                 sweep_interval: float = Config.STALE_SWEEP_INTERVAL_SECONDS,
                 purge_interval: float = Config.RETENTION_PURGE_INTERVAL_SECONDS):
        self._reaper = reaper
        self._jobs = [
            ("stale-session-sweep", reaper.sweep_stale_sessions, sweep_interval),
            ("retention-purge", reaper.purge_old_events, purge_interval),
        ]
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._run_job, args=job, name=job[0], daemon=True)
            for job in self._jobs
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Maintenance scheduler started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Maintenance scheduler stopped")

    def _run_job(self, name: str, job: Callable[[], object], interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                job()
            except Exception:
                logger.exception(f"Maintenance job {name} failed")
            if self._stop_event.wait(interval):
                break
