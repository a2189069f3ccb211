"""
Session lifecycle tests: start/end, the force-end-on-start transition,
driver registration and the state machine table.
"""

import pytest

from server.errors import (
    DriverNameConflictError,
    IllegalTransitionError,
    InvalidInputError,
    UnknownDriverError,
)
from server.session_manager import (
    SessionState,
    SessionTransition,
    driving_seconds,
    next_state,
    state_of,
)


def test_start_session_creates_active_session(core, driver, clock):
    session = core.sessions.start_session("123456")

    assert session.session_id is not None
    assert session.driver_id == "123456"
    assert session.active is True
    assert session.start_time == clock.now
    assert session.end_time is None
    assert core.sessions.get_active_session("123456").session_id == session.session_id


def test_end_session_computes_whole_second_duration(core, driver, clock):
    started = core.sessions.start_session("123456")
    clock.advance(minutes=42, seconds=7, microseconds=900000)

    ended = core.sessions.end_session("123456")

    assert ended.session_id == started.session_id
    assert ended.active is False
    assert ended.end_time == clock.now
    assert ended.total_driving_time_seconds == 42 * 60 + 7
    assert core.sessions.get_active_session("123456") is None


def test_end_session_without_active_session_returns_none(core, driver):
    assert core.sessions.end_session("123456") is None


def test_start_force_ends_previous_active_session(core, driver, clock):
    first = core.sessions.start_session("123456")
    clock.advance(minutes=10)

    second = core.sessions.start_session("123456")

    previous = core.sessions.get_session_by_id(first.session_id)
    assert previous.active is False
    assert previous.end_time == clock.now
    assert previous.total_driving_time_seconds == 600
    assert second.active is True
    assert [s.session_id for s in core.store.sessions.find_active_by_driver("123456")] == [
        second.session_id]


def test_end_session_closes_duplicate_active_sessions(core, driver, clock):
    # Simulate a store that already holds two active sessions for one driver
    from server.database import DriverSessionRecord
    for _ in range(2):
        core.store.sessions.insert(DriverSessionRecord(
            driver_id="123456", start_time=clock.now, active=True))

    assert core.sessions.end_session("123456") is not None
    assert core.store.sessions.find_active_by_driver("123456") == []


def test_force_end_is_a_no_op_on_ended_session(core, driver):
    session = core.sessions.start_session("123456")
    closed = core.sessions.end_session("123456")

    assert core.sessions.force_end(session) is None
    assert core.sessions.force_end(closed, SessionTransition.FORCE_END_STALE) is None
    assert core.sessions.get_session_by_id(session.session_id).end_time == closed.end_time


def test_force_end_rejects_non_closing_transition(core, driver):
    session = core.sessions.start_session("123456")
    with pytest.raises(IllegalTransitionError):
        core.sessions.force_end(session, SessionTransition.START)


def test_start_session_requires_registered_driver(core):
    with pytest.raises(UnknownDriverError):
        core.sessions.start_session("654321")


@pytest.mark.parametrize("bad_id", ["12345", "1234567", "abcdef", "12 456", "", None])
def test_malformed_driver_id_is_rejected(core, bad_id):
    with pytest.raises(InvalidInputError):
        core.sessions.start_session(bad_id)
    with pytest.raises(InvalidInputError):
        core.sessions.end_session(bad_id)


def test_session_queries(core, clock):
    core.drivers.login("111111", "First")
    core.drivers.login("222222", "Second")
    a = core.sessions.start_session("111111")
    clock.advance(minutes=1)
    core.sessions.end_session("111111")
    b = core.sessions.start_session("111111")
    c = core.sessions.start_session("222222")

    assert [s.session_id for s in core.sessions.get_sessions_for_driver("111111")] == [
        a.session_id, b.session_id]
    assert {s.session_id for s in core.sessions.get_all_active_sessions()} == {
        b.session_id, c.session_id}
    assert core.sessions.get_session_by_id(9999) is None


def test_state_machine_table():
    assert next_state(SessionState.NONE, SessionTransition.START) is SessionState.ACTIVE
    assert next_state(SessionState.ACTIVE, SessionTransition.END) is SessionState.ENDED
    assert next_state(SessionState.ACTIVE,
                      SessionTransition.FORCE_END_ON_START) is SessionState.ENDED
    assert next_state(SessionState.ENDED, SessionTransition.FORCE_END_STALE) is SessionState.ENDED
    with pytest.raises(IllegalTransitionError):
        next_state(SessionState.ENDED, SessionTransition.START)
    with pytest.raises(IllegalTransitionError):
        next_state(SessionState.NONE, SessionTransition.END)
    assert state_of(None) is SessionState.NONE


def test_driving_seconds_never_negative(clock):
    later = clock.advance(seconds=5)
    assert driving_seconds(later, later.replace(second=0)) == 0


# ----------------------------------------------------------------------
# Driver registry
# ----------------------------------------------------------------------

def test_login_registers_driver_once(core):
    created = core.drivers.login("123456", "Alex Driver")
    again = core.drivers.login("123456", "  alex driver ")

    assert created.driver_name == "Alex Driver"
    assert again.driver_name == "Alex Driver"
    assert [d.driver_id for d in core.drivers.list_drivers()] == ["123456"]


def test_login_rejects_name_change(core):
    core.drivers.login("123456", "Alex Driver")
    with pytest.raises(DriverNameConflictError):
        core.drivers.login("123456", "Someone Else")
    assert core.drivers.get_driver("123456").driver_name == "Alex Driver"


def test_login_validates_input(core):
    with pytest.raises(InvalidInputError):
        core.drivers.login("12a456", "Alex")
    with pytest.raises(InvalidInputError):
        core.drivers.login("123456", "   ")
