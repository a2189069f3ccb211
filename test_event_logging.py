"""
Event logging tests: NORMAL filtering, soft failures, metadata promotion
and default filling, read accessors and per-session metadata analytics.
"""

import json

import pytest

from server.errors import InvalidInputError
from server.metadata import (
    normalize_metadata,
    parse_bool_safe,
    parse_float_safe,
    parse_json,
    to_json,
)
from shared.models import DriverState


@pytest.fixture
def active_session(core, driver):
    return core.sessions.start_session("123456")


def test_normal_state_is_never_stored(core, active_session):
    assert core.events.log_event("123456", DriverState.NORMAL, 3.0) is None
    assert core.events.log_event_with_metadata("123456", "normal", 3.0, {"earValue": 0.3}) is None
    assert core.events.get_events_for_session(active_session.session_id) == []


def test_event_without_active_session_is_soft_failure(core, driver):
    assert core.events.log_event("123456", DriverState.DROWSY, 2.0) is None
    assert core.events.log_event_with_metadata("123456", "DISTRACTED", 2.0, {}) is None


def test_unknown_state_is_invalid_input(core, active_session):
    with pytest.raises(InvalidInputError, match="Invalid driver state"):
        core.events.log_event("123456", "SLEEPY", 1.0)
    with pytest.raises(InvalidInputError, match="missing"):
        core.events.log_event_with_metadata("123456", None, 1.0, {})


def test_negative_duration_is_invalid_input(core, active_session):
    with pytest.raises(InvalidInputError):
        core.events.log_event("123456", DriverState.DROWSY, -1.0)


def test_log_event_attaches_to_active_session(core, active_session, clock):
    clock.advance(minutes=5)
    event = core.events.log_event("123456", DriverState.DROWSY, 4.5)

    assert event.event_id is not None
    assert event.session_id == active_session.session_id
    assert event.driver_id == "123456"
    assert event.event_type == "DROWSY"
    assert event.duration == 4.5
    assert event.start_time == clock.now
    assert (event.end_time - event.start_time).total_seconds() == 4.5
    assert event.metadata_json is None


def test_missing_duration_defaults_to_one_second(core, active_session):
    event = core.events.log_event("123456", "distracted")
    assert event.duration == 1.0
    assert event.event_type == "DISTRACTED"


def test_metadata_is_promoted_and_defaults_filled(core, active_session):
    metadata = {
        "earValue": "0.21",
        "leftEar": 0.2,
        "rightEar": 0.22,
        "headDirection": "DOWN",
        "faceDetected": "true",
        "featureSource": "MediaPipe FaceMesh",
        "blinkCount": 4,
    }
    event = core.events.log_event_with_metadata("123456", DriverState.DROWSY, 2.0, metadata)

    assert event.ear_value == pytest.approx(0.21)
    assert event.left_ear == pytest.approx(0.2)
    assert event.right_ear == pytest.approx(0.22)
    assert event.head_direction == "DOWN"
    assert event.face_detected is True
    assert event.feature_source == "MediaPipe FaceMesh"

    stored = json.loads(event.metadata_json)
    assert stored["blinkCount"] == 4
    assert stored["sessionId"] == active_session.session_id
    assert stored["eventType"] == "DROWSY"
    assert stored["source"] == "MediaPipe"
    assert isinstance(stored["timestamp"], int)
    for key in ("earValue", "leftEar", "rightEar", "headDirection", "faceDetected",
                "featureSource"):
        assert key not in stored
    # caller's map is left alone
    assert metadata["earValue"] == "0.21"


def test_long_promoted_strings_are_kept_whole(core, active_session):
    source = "MediaPipe FaceMesh v0.10 landmark-478 refine_landmarks"
    direction = "DOWN_LEFT (yaw -31.5, pitch 22.0, roll 3.1)"
    event = core.events.log_event_with_metadata(
        "123456", "DISTRACTED", 1.0, {"featureSource": source, "headDirection": direction})

    assert event.feature_source == source
    assert event.head_direction == direction
    stored = core.events.get_events_for_session(active_session.session_id)[0]
    assert stored.feature_source == source
    assert stored.head_direction == direction


def test_caller_values_are_not_overwritten(core, active_session):
    metadata = {"timestamp": 42, "sessionId": 7, "eventType": "custom", "source": "phone"}
    event = core.events.log_event_with_metadata("123456", "DROWSY", 1.0, metadata)
    assert json.loads(event.metadata_json) == metadata


def test_malformed_metadata_fields_resolve_to_none(core, active_session):
    metadata = {"earValue": "closed", "leftEar": [0.1], "rightEar": float("nan"),
                "faceDetected": "maybe", "headDirection": {"yaw": 10}, "extra": "kept"}
    event = core.events.log_event_with_metadata("123456", "DISTRACTED", 3.0, metadata)

    assert event.event_id is not None
    assert event.ear_value is None
    assert event.left_ear is None
    assert event.right_ear is None
    assert event.face_detected is None
    assert event.head_direction is None
    assert json.loads(event.metadata_json)["extra"] == "kept"


def test_get_recent_events_for_driver(core, active_session, clock):
    for _ in range(4):
        clock.advance(seconds=30)
        core.events.log_event("123456", DriverState.DISTRACTED, 1.0)

    recent = core.events.get_recent_events_for_driver("123456", 3)

    assert len(recent) == 3
    assert recent[0].start_time > recent[1].start_time > recent[2].start_time
    assert core.events.get_recent_events_for_driver("123456", 0) == []
    assert core.events.get_recent_events_for_driver("123456", -5) == []


def test_every_stored_event_belongs_to_an_active_session(core, driver, clock):
    core.sessions.start_session("123456")
    core.events.log_event("123456", "DROWSY", 1.0)
    clock.advance(minutes=3)
    core.sessions.start_session("123456")
    core.events.log_event("123456", "DISTRACTED", 1.0)
    clock.advance(minutes=3)
    core.sessions.end_session("123456")
    core.events.log_event("123456", "DROWSY", 1.0)

    events = core.store.events.find_by_driver("123456")
    assert len(events) == 2
    for event in events:
        session = core.sessions.get_session_by_id(event.session_id)
        assert session.start_time <= event.start_time
        assert session.end_time is None or event.start_time <= session.end_time


# ----------------------------------------------------------------------
# Metadata helpers
# ----------------------------------------------------------------------

@pytest.mark.parametrize("value, expected", [
    (0.25, 0.25), ("0.3", 0.3), (1, 1.0), (True, None), ("abc", None),
    (None, None), (float("inf"), None),
])
def test_parse_float_safe(value, expected):
    assert parse_float_safe(value) == expected


@pytest.mark.parametrize("value, expected", [
    (True, True), ("TRUE", True), ("no", False), (0, False), ("perhaps", None), (None, None),
])
def test_parse_bool_safe(value, expected):
    assert parse_bool_safe(value) is expected


def test_normalize_metadata_without_map():
    normalized = normalize_metadata(None, 5, DriverState.DISTRACTED, now_millis=1000)
    assert json.loads(normalized.metadata_json) == {
        "timestamp": 1000, "sessionId": 5, "eventType": "DISTRACTED", "source": "MediaPipe"}
    assert normalized.ear_value is None


def test_json_helpers_are_forgiving():
    assert parse_json(None) == {}
    assert parse_json("not json") == {}
    assert parse_json("[1, 2]") == {}
    circular = {}
    circular["self"] = circular
    assert to_json(circular) == "{}"
    assert json.loads(to_json({"when": object}))["when"].startswith("<class")


def test_session_metadata_analytics(core, active_session):
    sid = active_session.session_id
    core.events.log_event_with_metadata("123456", "DROWSY", 1.0, {"earValue": 0.2})
    core.events.log_event_with_metadata("123456", "DROWSY", 1.0, {"eyeAspectRatio": 0.1,
                                                                  "source": "webcam"})
    core.events.log_event_with_metadata("123456", "DISTRACTED", 1.0, {"earValue": 0.9})
    core.events.log_event("123456", "DISTRACTED", 1.0)

    assert core.metadata.average_ear_for_session(sid) == pytest.approx(0.15)
    assert core.metadata.metadata_fields_for_session(sid) == [
        "eventType", "eyeAspectRatio", "sessionId", "source", "timestamp"]
    assert core.metadata.source_distribution_for_session(sid) == {
        "MediaPipe": 2, "webcam": 1, "unknown": 1}
    assert core.metadata.event_type_distribution_for_session(sid) == {
        "DROWSY": 2, "DISTRACTED": 2}
    assert core.metadata.average_ear_for_session(9999) is None
