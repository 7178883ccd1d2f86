"""
Exception taxonomy for the consistency layer.
"""
from typing import Any, Optional


class BacklogSyncError(Exception):
    """Base class for errors raised by backlog_sync."""
    pass


class NetworkError(BacklogSyncError):
    """
    Raised when a backend call fails (transport error or non-2xx status).

    Never cached by the coalescer; every waiter on the key receives the
    same instance.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ReplayError(BacklogSyncError):
    """Raised (and logged) when a buffered mutation fails during replay."""

    def __init__(self, change: Any, cause: BaseException):
        super().__init__(f"Replay of {change.describe()} failed: {cause}")
        self.change = change
        self.cause = cause


class ConfigurationError(BacklogSyncError, ValueError):
    """Raised at construction time for invalid TTL/debounce/limit values."""
    pass
