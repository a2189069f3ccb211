"""
Event Logger Module

Stores DROWSY and DISTRACTED occurrences against the driver's active
session. NORMAL is never stored: only deviations are events.

Missing preconditions are soft failures. With no active session the call
returns None and logs a warning, because the client may race ahead of a
session teardown. The active-session lookup and the insert are not under
the driver lock: an event can attach to a session that is being ended at
the same moment. It keeps its own timestamp, so this is tolerated.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from server.database import EventRecord
from server.input_validator import validator
from server.metadata import normalize_metadata
from server.repository import EventRepository
from server.session_manager import SessionLifecycleManager
from shared.models import DriverState

logger = logging.getLogger(__name__)

DEFAULT_EVENT_DURATION = 1.0  # seconds, for instantaneous detections


class EventLogger:

    def __init__(self, events: EventRepository, sessions: SessionLifecycleManager,
                 clock: Callable[[], datetime] = datetime.now):
        self._events = events
        self._sessions = sessions
        self._clock = clock

    def log_event(self, driver_id: str, state, duration: Optional[float] = None
                  ) -> Optional[EventRecord]:
        """Log an event without metadata. See log_event_with_metadata."""
        return self._log(driver_id, state, duration, metadata=None, with_metadata=False)

    def log_event_with_metadata(self, driver_id: str, state, duration: Optional[float] = None,
                                metadata: Optional[Dict[str, Any]] = None
                                ) -> Optional[EventRecord]:
        """
        Log an event in the driver's active session.

        Args:
            driver_id: 6-digit driver id.
            state: DriverState or its name (case-insensitive).
            duration: Seconds, >= 0. Defaults to one second.
            metadata: Free-form map from the perception client.

        Returns:
            The stored event, or None for NORMAL or when the driver has no
            active session.
        """
        return self._log(driver_id, state, duration, metadata=metadata, with_metadata=True)

    def _log(self, driver_id, state, duration, metadata, with_metadata) -> Optional[EventRecord]:
        validator.require_driver_id(driver_id)
        driver_state = validator.require_state(state)
        duration = DEFAULT_EVENT_DURATION if duration is None else validator.require_duration(duration)

        if driver_state is DriverState.NORMAL:
            logger.debug(f"Skipping NORMAL state event logging for driver {driver_id}")
            return None

        session = self._sessions.get_active_session(driver_id)
        if session is None:
            logger.warning(f"Cannot log event: No active session for driver {driver_id}")
            return None

        now = self._clock()
        event = EventRecord(
            session_id=session.session_id,
            driver_id=driver_id,
            start_time=now,
            end_time=now + timedelta(seconds=duration),
            duration=duration,
            event_type=driver_state.value,
        )

        if with_metadata:
            normalized = normalize_metadata(metadata, session.session_id, driver_state,
                                            now_millis=int(now.timestamp() * 1000))
            event.metadata_json = normalized.metadata_json
            event.ear_value = normalized.ear_value
            event.left_ear = normalized.left_ear
            event.right_ear = normalized.right_ear
            event.head_direction = normalized.head_direction
            event.face_detected = normalized.face_detected
            event.feature_source = normalized.feature_source

        saved = self._events.insert(event)
        source = saved.feature_source or ("metadata" if with_metadata else "plain")
        logger.info(f"Logged {driver_state.value} event from {source} for driver {driver_id}, "
                    f"duration: {duration}s, session: {session.session_id}")
        return saved

    def get_events_for_session(self, session_id: int) -> List[EventRecord]:
        if session_id is None:
            logger.warning("Cannot get events: sessionId is null")
            return []
        return self._events.find_by_session(session_id)

    def get_recent_events_for_driver(self, driver_id: str, limit: int) -> List[EventRecord]:
        """Latest `limit` events of the driver. limit <= 0 yields []."""
        validator.require_driver_id(driver_id)
        if limit <= 0:
            logger.warning(f"Invalid limit specified for recent events: {limit}")
            return []
        return self._events.find_by_driver(driver_id, limit=limit)
