"""
Session reaper tests: stale-session sweep, retention purge and the
background maintenance scheduler.
"""

import threading
import time

from server.session_reaper import MaintenanceScheduler


def test_sweep_closes_only_stale_sessions(core, clock):
    core.drivers.login("111111", "Old Timer")
    core.drivers.login("222222", "Fresh Start")
    stale = core.sessions.start_session("111111")
    clock.advance(hours=11)
    fresh = core.sessions.start_session("222222")
    clock.advance(hours=1, seconds=1)

    closed = core.reaper.sweep_stale_sessions()

    assert [s.session_id for s in closed] == [stale.session_id]
    assert closed[0].total_driving_time_seconds == 12 * 3600 + 1
    assert core.sessions.get_active_session("111111") is None
    assert core.sessions.get_active_session("222222").session_id == fresh.session_id


def test_sweep_is_idempotent(core, driver, clock):
    core.sessions.start_session("123456")
    clock.advance(hours=13)

    assert len(core.reaper.sweep_stale_sessions()) == 1
    assert core.reaper.sweep_stale_sessions() == []


def test_sweep_and_end_session_do_not_double_apply(core, driver, clock):
    session = core.sessions.start_session("123456")
    clock.advance(hours=13)
    stale = core.sessions.get_stale_sessions(clock.now - core.reaper.stale_after)

    ended = core.sessions.end_session("123456")
    clock.advance(minutes=5)
    # reaper works from a stale read of the same session
    assert core.sessions.force_end(stale[0]) is None

    reread = core.sessions.get_session_by_id(session.session_id)
    assert reread.end_time == ended.end_time
    assert reread.total_driving_time_seconds == 13 * 3600


def test_purge_removes_old_events_once(core, driver, clock):
    core.sessions.start_session("123456")
    core.events.log_event("123456", "DROWSY", 1.0)
    core.events.log_event("123456", "DISTRACTED", 1.0)
    clock.advance(days=20)
    core.events.log_event("123456", "DROWSY", 1.0)
    clock.advance(days=11)

    assert core.reaper.purge_old_events() == 2
    assert core.reaper.purge_old_events() == 0
    assert len(core.store.events.find_by_driver("123456")) == 1


def test_purge_keeps_sessions(core, driver, clock):
    session = core.sessions.start_session("123456")
    core.events.log_event("123456", "DROWSY", 1.0)
    core.sessions.end_session("123456")
    clock.advance(days=40)

    core.reaper.purge_old_events()

    assert core.sessions.get_session_by_id(session.session_id) is not None


class _CountingReaper:
    def __init__(self):
        self.sweeps = 0
        self.purges = 0
        self.swept = threading.Event()

    def sweep_stale_sessions(self):
        self.sweeps += 1
        self.swept.set()
        raise RuntimeError("store down")

    def purge_old_events(self):
        self.purges += 1
        return 0


def test_scheduler_runs_jobs_and_survives_failures():
    reaper = _CountingReaper()
    scheduler = MaintenanceScheduler(reaper, sweep_interval=0.01, purge_interval=60)

    scheduler.start()
    assert reaper.swept.wait(2.0)
    time.sleep(0.1)
    scheduler.stop()

    assert reaper.sweeps >= 2
    assert reaper.purges == 1
    assert not scheduler.running
