"""
Event Metadata Module

Normalization of the free-form metadata map that arrives with a detection
event, plus read-side analytics over the stored metadata of a session.

Normalization promotes a few well-known keys to dedicated scalar fields
and strips them from the map. A value that cannot be parsed becomes None
for that field only; the rest of the event is still stored.
"""

import json
import logging
import math
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from server.repository import EventRepository
from shared.models import DriverState

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "MediaPipe"

PROMOTED_KEYS = ("earValue", "leftEar", "rightEar", "headDirection",
                 "faceDetected", "featureSource")

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


def parse_float_safe(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_bool_safe(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    return None


def parse_str_safe(value: Any) -> Optional[str]:
    """The value as text, whole; None for missing, blank or nested values."""
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


@dataclass
class NormalizedMetadata:
    """Promoted scalar fields plus the serialized remainder of the map."""
    ear_value: Optional[float] = None
    left_ear: Optional[float] = None
    right_ear: Optional[float] = None
    head_direction: Optional[str] = None
    face_detected: Optional[bool] = None
    feature_source: Optional[str] = None
    metadata_json: str = "{}"


def to_json(data: Dict[str, Any]) -> str:
    """
    Serialize a metadata map. Values json cannot encode are stored as
    their str(); a map that still fails (e.g. circular) becomes "{}".
    """
    try:
        return json.dumps(data, default=str)
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to convert metadata to JSON: {e}")
        return "{}"


def parse_json(text: Optional[str]) -> Dict[str, Any]:
    """Parse stored metadata; anything but a JSON object yields {}."""
    if not text or not text.strip():
        return {}
    try:
        data = json.loads(text)
    except ValueError as e:
        logger.warning(f"Failed to parse metadata JSON {text!r}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def normalize_metadata(metadata: Optional[Dict[str, Any]], session_id: int,
                       state: DriverState, now_millis: Optional[int] = None
                       ) -> NormalizedMetadata:
    """
    Promote well-known keys, fill defaults the caller did not supply
    (timestamp, sessionId, eventType, source) and serialize the rest.
    The caller's map is not modified.
    """
    remaining = dict(metadata) if metadata else {}

    normalized = NormalizedMetadata(
        ear_value=parse_float_safe(remaining.pop("earValue", None)),
        left_ear=parse_float_safe(remaining.pop("leftEar", None)),
        right_ear=parse_float_safe(remaining.pop("rightEar", None)),
        head_direction=parse_str_safe(remaining.pop("headDirection", None)),
        face_detected=parse_bool_safe(remaining.pop("faceDetected", None)),
        feature_source=parse_str_safe(remaining.pop("featureSource", None)),
    )

    if now_millis is None:
        now_millis = int(time.time() * 1000)
    remaining.setdefault("timestamp", now_millis)
    remaining.setdefault("sessionId", session_id)
    remaining.setdefault("eventType", state.value)
    remaining.setdefault("source", DEFAULT_SOURCE)

    normalized.metadata_json = to_json(remaining)
    return normalized


class EventMetadataAnalytics:
    """Per-session summaries over stored event metadata."""

    def __init__(self, events: EventRepository):
        self._events = events

    def average_ear_for_session(self, session_id: int) -> Optional[float]:
        """
        Mean EAR over the session's DROWSY events. Uses the promoted
        ear_value column and falls back to an "eyeAspectRatio" metadata key.
        """
        values = []
        for event in self._events.find_by_session_and_type(session_id, DriverState.DROWSY.value):
            ear = event.ear_value
            if ear is None:
                ear = parse_float_safe(parse_json(event.metadata_json).get("eyeAspectRatio"))
            if ear is not None:
                values.append(ear)
        if not values:
            logger.debug(f"No EAR values found for drowsy events in session {session_id}")
            return None
        return sum(values) / len(values)

    def metadata_fields_for_session(self, session_id: int) -> List[str]:
        keys = set()
        for event in self._events.find_by_session(session_id):
            keys.update(parse_json(event.metadata_json).keys())
        return sorted(keys)

    def source_distribution_for_session(self, session_id: int) -> Dict[str, int]:
        counts = Counter()
        for event in self._events.find_by_session(session_id):
            source = parse_json(event.metadata_json).get("source")
            counts[source if isinstance(source, str) else "unknown"] += 1
        return dict(counts)

    def event_type_distribution_for_session(self, session_id: int) -> Dict[str, int]:
        return dict(Counter(e.event_type for e in self._events.find_by_session(session_id)))
