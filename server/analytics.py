# server/analytics.py
"""
Analytics Module

Read-side aggregation over sessions and events:
- the real-time fatigue prediction for a driver's active session
- the long-term driver rating
- the per-driver statistics shown on a dispatcher view

Nothing here mutates state.
"""

import logging
from datetime import datetime
from typing import Callable

from server.errors import InvalidInputError
from server.feature_extractor import DEFAULT_WINDOW_MINUTES, FeatureWindowExtractor
from server.input_validator import validator
from server.metadata import parse_float_safe, parse_json
from server.repository import EventRepository
from server.risk_classifier import NO_ACTIVE_SESSION, PredictionModel
from server.session_manager import SessionLifecycleManager
from shared.models import DriverState, DriverStatistics, RiskAssessment

logger = logging.getLogger(__name__)

RELIABLE = "reliable"
NEEDS_ATTENTION = "needs attention"
RISKY = "risky"


class FatigueAnalytics:

    def __init__(self, sessions: SessionLifecycleManager, extractor: FeatureWindowExtractor,
                 model: PredictionModel, events: EventRepository,
                 clock: Callable[[], datetime] = datetime.now):
        self._sessions = sessions
        self._extractor = extractor
        self._model = model
        self._events = events
        self._clock = clock

    def get_fatigue_prediction(self, driver_id: str,
                               period_minutes: int = DEFAULT_WINDOW_MINUTES) -> RiskAssessment:
        """
        Assess the driver's current fatigue risk over the last
        `period_minutes`. Without an active session no features are
        extracted and the answer is LOW / "no active session".
        """
        validator.require_driver_id(driver_id)
        if period_minutes <= 0:
            raise InvalidInputError(f"Prediction period must be positive, got {period_minutes}")

        session = self._sessions.get_active_session(driver_id)
        if session is None:
            logger.debug(f"No active session for driver {driver_id}; defaulting to LOW risk")
            return NO_ACTIVE_SESSION

        features = self._extractor.extract(driver_id, session.start_time, self._clock(),
                                           period_minutes)
        return self._model.predict(features)

    def get_driver_rating(self, driver_id: str) -> str:
        """
        Share of DROWSY/DISTRACTED events among all of the driver's events:
        < 0.05 reliable, < 0.15 needs attention, otherwise risky.
        """
        validator.require_driver_id(driver_id)
        events = self._events.find_by_driver(driver_id)
        flagged = sum(1 for e in events
                      if e.event_type in (DriverState.DROWSY.value, DriverState.DISTRACTED.value))
        risk = flagged / max(1, len(events))
        if risk < 0.05:
            return RELIABLE
        if risk < 0.15:
            return NEEDS_ATTENTION
        return RISKY

    def get_driver_statistics(self, driver_id: str) -> DriverStatistics:
        validator.require_driver_id(driver_id)
        events = self._events.find_by_driver(driver_id)

        total_duration = drowsy_time = distracted_time = other_time = 0.0
        ear_values = []
        blink_rates = []
        for event in events:
            duration = event.duration or 0.0
            total_duration += duration
            if event.event_type == DriverState.DROWSY.value:
                drowsy_time += duration
            elif event.event_type == DriverState.DISTRACTED.value:
                distracted_time += duration
            else:
                other_time += duration
            if event.ear_value is not None:
                ear_values.append(event.ear_value)
            blink_rate = parse_float_safe(parse_json(event.metadata_json).get("blinkRate"))
            if blink_rate is not None:
                blink_rates.append(blink_rate)

        def percent(part: float) -> float:
            return part / total_duration * 100.0 if total_duration > 0 else 0.0

        session_count = len({e.session_id for e in events})
        return DriverStatistics(
            driver_id=driver_id,
            total_events=len(events),
            drowsy_percent=percent(drowsy_time),
            distracted_percent=percent(distracted_time),
            normal_percent=percent(other_time),
            avg_ear=sum(ear_values) / len(ear_values) if ear_values else 0.0,
            avg_blink_rate=sum(blink_rates) / len(blink_rates) if blink_rates else 0.0,
            session_count=session_count,
            avg_session_duration=total_duration / session_count if session_count else 0.0,
        )
