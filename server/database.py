# server/database.py
"""
Database Module

Sets up the SQLite connection using SQLAlchemy ORM and defines the three
tables of the record store: drivers, driver_sessions and driver_events.

The module-level engine and SessionLocal point at Config.DATABASE_URL;
tests and tools build their own through build_engine().
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from shared.config import Config

Base = declarative_base()


class DriverRecord(Base):
    """A registered driver. The 6-digit id owns the name."""
    __tablename__ = "drivers"

    driver_id = Column(String(6), primary_key=True)
    driver_name = Column(String, nullable=False)

    def __repr__(self):
        return f"<DriverRecord id={self.driver_id} name={self.driver_name!r}>"


class DriverSessionRecord(Base):
    """
    One continuous driving period. end_time and total_driving_time_seconds
    stay NULL while the session is active.
    """
    __tablename__ = "driver_sessions"

    session_id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(String(6), ForeignKey("drivers.driver_id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=True)
    total_driving_time_seconds = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True, index=True)

    def __repr__(self):
        return (f"<DriverSessionRecord id={self.session_id} driver={self.driver_id} "
                f"active={self.active}>")


class EventRecord(Base):
    """
    A stored DROWSY or DISTRACTED occurrence. Well-known metadata keys are
    promoted to their own columns; the rest lives in metadata_json.
    """
    __tablename__ = "driver_events"

    event_id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("driver_sessions.session_id"), nullable=False, index=True)
    driver_id = Column(String(6), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=True)
    duration = Column(Float, nullable=False, default=0.0)
    event_type = Column(String(16), nullable=False, index=True)
    metadata_json = Column(Text, nullable=True)

    ear_value = Column(Float, nullable=True)
    left_ear = Column(Float, nullable=True)
    right_ear = Column(Float, nullable=True)
    head_direction = Column(String, nullable=True)
    face_detected = Column(Boolean, nullable=True)
    feature_source = Column(String, nullable=True)

    def __repr__(self):
        return (f"<EventRecord id={self.event_id} session={self.session_id} "
                f"type={self.event_type} duration={self.duration:.1f}>")


def build_engine(url: str, timeout: float = Config.DB_TIMEOUT_SECONDS):
    """
    Create an engine for the given URL. For SQLite the connection may be
    shared with FastAPI's worker threads and waits up to `timeout` seconds
    on a locked database.
    """
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout}
    return create_engine(url, connect_args=connect_args, echo=False)


def build_session_factory(bind):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine(Config.DATABASE_URL)

SessionLocal = build_session_factory(engine)


def init_db(bind=None):
    """Create database tables if they don't exist."""
    Base.metadata.create_all(bind=bind if bind is not None else engine)
