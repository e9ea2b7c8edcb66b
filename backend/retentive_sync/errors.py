"""Error taxonomy shared by the queue, sync engine, cache and realtime channels."""

from __future__ import annotations

from typing import Any, Optional


class SyncError(Exception):
    """Base class for failures talking to the remote store."""

    retryable: bool = False

    def __init__(self, message: str, *, status_code: Optional[int] = None, details: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class NetworkError(SyncError):
    """No connectivity, timeouts, DNS failures and 5xx responses."""

    retryable = True


class RemoteValidationError(SyncError):
    """The remote store rejected the payload (malformed data, constraint violation)."""


class AuthError(SyncError):
    """The session is expired or invalid; a higher layer has to re-authenticate."""


class OperationValidationError(ValueError):
    """A queued mutation payload does not match its table's shape."""

    def __init__(self, table: str, message: str) -> None:
        super().__init__(f"{table}: {message}")
        self.table = table


class StorageQuotaExceeded(Exception):
    """Persisted key/value storage has no room for the write."""


class RecordNotFoundError(LookupError):
    def __init__(self, table: str, record_id: str) -> None:
        super().__init__(f"{table}/{record_id} does not exist locally")
        self.table = table
        self.record_id = record_id


def is_retryable(exc: BaseException) -> bool:
    """Return True when a failed remote call should be retried on a later cycle.

    Unknown exceptions count as retryable; the staleness threshold bounds how
    long such an operation stays queued.
    """
    if isinstance(exc, SyncError):
        return exc.retryable
    if isinstance(exc, OperationValidationError):
        return False
    return True


__all__ = [
    "AuthError",
    "NetworkError",
    "OperationValidationError",
    "RecordNotFoundError",
    "RemoteValidationError",
    "StorageQuotaExceeded",
    "SyncError",
    "is_retryable",
]
