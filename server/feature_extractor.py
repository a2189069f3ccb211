"""
Feature Window Extractor Module

Reduces a driver's recently stored events into a fixed-shape numeric
feature vector over a lookback window (30 minutes by default).

Two normalizations coexist on purpose. Count-based features (event counts,
blink rate) are divided by a fixed 30 regardless of the window length,
while the time fractions divide by the actual window length in seconds.
The risk classifier thresholds assume exactly this scaling.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from server.database import EventRecord
from server.errors import InvalidInputError
from server.repository import EventRepository
from shared.config import Config
from shared.models import DriverState

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MINUTES = Config.FEATURE_WINDOW_MINUTES
NEUTRAL_EAR = 0.3                # open-eye baseline when no EAR was observed
COUNT_NORMALIZATION = 30.0       # fixed, independent of the window length
SHIFT_REFERENCE_MINUTES = 120.0  # driving duration is relative to a 2h shift
BLINK_MARKER = "blink"


@dataclass
class FeatureVector:
    """
    Features extracted from one window of events.
    Input to the risk classifier; never persisted.
    """
    ear_value: float = NEUTRAL_EAR          # Mean EAR in the window
    min_ear: float = NEUTRAL_EAR            # Lowest EAR in the window
    drowsy_events: float = 0.0              # DROWSY count / 30
    distraction_count: float = 0.0          # DISTRACTED count / 30
    drowsy_events_count: int = 0
    distraction_events_count: int = 0
    driving_duration: float = 0.0           # Session minutes / 120
    time_of_day: float = 0.1                # Circadian risk factor
    blink_rate: float = 0.0                 # Blink-marked events / 30 (per minute)
    drowsy_time_fraction: float = 0.0       # Share of the window spent drowsy
    distracted_time_fraction: float = 0.0   # Share of the window spent distracted
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None

    def as_dict(self) -> Dict[str, float]:
        """Numeric features only, keyed by name."""
        values = asdict(self)
        values.pop("window_start")
        values.pop("window_end")
        return values


def time_of_day_factor(moment: datetime) -> float:
    """
    Risk amplification by local wall-clock hour. Buckets are half-open;
    the evening bucket wraps midnight.
    """
    hour = moment.hour
    if 2 <= hour < 6:
        return 1.0
    if 14 <= hour < 16:
        return 0.7
    if hour >= 20 or hour < 2:
        return 0.5
    if 6 <= hour < 10:
        return 0.2
    return 0.1


class FeatureWindowExtractor:

    def __init__(self, events: EventRepository):
        self._events = events

    def extract(self, driver_id: str, session_start: Optional[datetime], now: datetime,
                period_minutes: int = DEFAULT_WINDOW_MINUTES) -> FeatureVector:
        """
        Compute the feature vector for events with
        now - period_minutes <= start_time <= now.
        """
        if period_minutes <= 0:
            raise InvalidInputError(f"Window length must be positive, got {period_minutes} minutes")

        window_start = now - timedelta(minutes=period_minutes)
        window_events = [e for e in self._events.find_by_driver(driver_id, since=window_start)
                         if e.start_time is not None and e.start_time <= now]
        logger.debug(f"Extracting features for driver {driver_id} from "
                     f"{len(window_events)} events in a {period_minutes} min window")
        return self.compute(window_events, session_start, now, period_minutes)

    def compute(self, window_events: List[EventRecord], session_start: Optional[datetime],
                now: datetime, period_minutes: int = DEFAULT_WINDOW_MINUTES) -> FeatureVector:
        """Reduce already-selected window events into a FeatureVector."""
        fv = FeatureVector()
        fv.window_end = now
        fv.window_start = now - timedelta(minutes=period_minutes)

        # --- Eye aspect ratio ---
        ear_values = [e.ear_value for e in window_events if e.ear_value is not None]
        if ear_values:
            fv.ear_value = sum(ear_values) / len(ear_values)
            fv.min_ear = min(ear_values)

        # --- Event counts ---
        drowsy = [e for e in window_events if e.event_type == DriverState.DROWSY.value]
        distracted = [e for e in window_events if e.event_type == DriverState.DISTRACTED.value]
        fv.drowsy_events_count = len(drowsy)
        fv.distraction_events_count = len(distracted)
        fv.drowsy_events = len(drowsy) / COUNT_NORMALIZATION
        fv.distraction_count = len(distracted) / COUNT_NORMALIZATION

        # --- Session length, whole minutes ---
        if session_start is not None:
            minutes = max(0, int((now - session_start).total_seconds() // 60))
            fv.driving_duration = minutes / SHIFT_REFERENCE_MINUTES

        fv.time_of_day = time_of_day_factor(now)

        # --- Blink rate ---
        blink_events = sum(1 for e in window_events
                           if e.metadata_json and BLINK_MARKER in e.metadata_json)
        fv.blink_rate = blink_events / COUNT_NORMALIZATION

        # --- Time fractions (window-length-correct) ---
        window_seconds = period_minutes * 60.0
        fv.drowsy_time_fraction = sum(e.duration or 0.0 for e in drowsy) / window_seconds
        fv.distracted_time_fraction = sum(e.duration or 0.0 for e in distracted) / window_seconds

        return fv
