"""
Exception hierarchy for the oven monitor.

Session-command errors never cross the controller boundary: the
OvenController converts them into CommandResult values. Flush-path
errors are logged and swallowed by the FlushEngine.
"""

from typing import Optional


class OvenMonitorError(Exception):
    """Base exception for all oven monitor errors."""

    def __init__(self, message: str, oven_id: Optional[str] = None):
        self.message = message
        self.oven_id = oven_id
        super().__init__(message)


class MalformedFrameError(OvenMonitorError):
    """A transport line could not be decoded as a frame."""

    def __init__(self, message: str, line: str = ""):
        self.line = line
        super().__init__(f"Malformed frame: {message}")


class AlreadyRunningError(OvenMonitorError):
    """A session is already active (or starting) for the oven."""

    def __init__(self, oven_id: str):
        super().__init__(f"Session already running on {oven_id}", oven_id)


class NotRunningError(OvenMonitorError):
    """No session is active for the oven."""

    def __init__(self, oven_id: str):
        super().__init__(f"No session running on {oven_id}", oven_id)


class StorageUnavailableError(OvenMonitorError):
    """The durable document store is not initialized."""

    def __init__(self, message: str = "Document store is not ready", oven_id: Optional[str] = None):
        super().__init__(message, oven_id)


class PersistenceError(OvenMonitorError):
    """A durable write or read failed."""

    def __init__(self, message: str, oven_id: Optional[str] = None):
        super().__init__(f"Persistence failure: {message}", oven_id)


class SessionNotFoundError(OvenMonitorError):
    """A session record lookup found nothing."""

    def __init__(self, oven_id: str, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found on {oven_id}", oven_id)


__all__ = [
    "OvenMonitorError",
    "MalformedFrameError",
    "AlreadyRunningError",
    "NotRunningError",
    "StorageUnavailableError",
    "PersistenceError",
    "SessionNotFoundError",
]
