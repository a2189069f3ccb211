"""
Shared pytest fixtures: a file-backed SQLite store in tmp_path, a clock
the tests move by hand, and the fully wired fatigue core.
"""

from datetime import datetime, timedelta

import pytest

from server.core import build_core
from server.database import build_engine, build_session_factory, init_db

T0 = datetime(2026, 3, 10, 12, 0, 0)


class FakeClock:
    """Callable clock; tests move it with advance() or set()."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, moment: datetime) -> datetime:
        self.now = moment
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'fatiguewatch-test.db'}", timeout=30)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def core(session_factory, clock):
    return build_core(session_factory, clock=clock)


@pytest.fixture
def driver(core):
    """A registered driver with id 123456."""
    return core.drivers.login("123456", "Alex Driver")
