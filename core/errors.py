"""Exception types raised by the synchronisation engine."""
from __future__ import annotations


class SyncError(Exception):
    """Base class for errors raised while synchronising with the server."""


class ConnectivityError(SyncError):
    """Raised when the server is unreachable or answers with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PayloadError(SyncError):
    """Raised when a server payload cannot be normalised."""


class LocalStoreError(SyncError):
    """Raised when a database failure aborts a pull or push phase."""


class SyncInProgressError(SyncError):
    """Raised when a sync session is requested while another one is running."""


class NotFound(LookupError):
    """Raised by the identity resolver when no local row matches."""


__all__ = [
    "ConnectivityError",
    "LocalStoreError",
    "NotFound",
    "PayloadError",
    "SyncError",
    "SyncInProgressError",
]
