"""
Configuration Module

Central settings for FatigueWatch. Every value can be overridden through an
environment variable; main.py additionally writes command line flags back
onto the class before the server starts.
"""

import os

# Project root (one level above shared/)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Configuration settings for FatigueWatch."""

    # Server settings
    SERVER_HOST = os.environ.get("FATIGUEWATCH_HOST", "127.0.0.1")
    SERVER_PORT = int(os.environ.get("FATIGUEWATCH_PORT", "8000"))
    SERVER_URL = f"http://{SERVER_HOST}:{SERVER_PORT}"
    CORS_ORIGINS = ["http://localhost:8501"]

    # Persistence
    DATABASE_URL = os.environ.get(
        "FATIGUEWATCH_DATABASE_URL",
        f"sqlite:///{os.path.join(PROJECT_ROOT, 'fatiguewatch.db')}",
    )
    DB_TIMEOUT_SECONDS = float(os.environ.get("FATIGUEWATCH_DB_TIMEOUT", "5"))

    # Analytics
    FEATURE_WINDOW_MINUTES = 30

    # Maintenance thresholds
    STALE_SESSION_HOURS = 12
    EVENT_RETENTION_DAYS = 30
    STALE_SWEEP_INTERVAL_SECONDS = 3600       # hourly
    RETENTION_PURGE_INTERVAL_SECONDS = 86400  # daily
    ENABLE_MAINTENANCE = _env_flag("FATIGUEWATCH_MAINTENANCE", True)

    # Logging
    LOG_LEVEL = os.environ.get("FATIGUEWATCH_LOG_LEVEL", "INFO")

    # Demo client
    SIMULATION_INTERVAL = 2.0  # seconds between synthetic events
