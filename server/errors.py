"""
Error Types

Failure kinds raised by the fatigue analytics core. Soft failures (no active
session, nothing to end) are not exceptions: those operations return None or
an empty list and log a warning.
"""


class FatigueCoreError(Exception):
    """Base class for all core errors."""


class InvalidInputError(FatigueCoreError):
    """Caller supplied a malformed value (driver id, state, duration, ...)."""


class UnknownDriverError(InvalidInputError):
    """Driver id is well formed but was never registered."""

    def __init__(self, driver_id: str):
        super().__init__(f"Driver {driver_id} is not registered")
        self.driver_id = driver_id


class DriverNameConflictError(InvalidInputError):
    """Driver id already belongs to a driver with another name."""

    def __init__(self, driver_id: str):
        super().__init__(f"Driver ID {driver_id} exists but the name does not match")
        self.driver_id = driver_id


class PersistenceError(FatigueCoreError):
    """Record store unavailable or write rejected. Retryable."""


class IllegalTransitionError(FatigueCoreError):
    """A session state machine transition that is not allowed."""
