"""Persisted key/value storage used by the offline queue and the long-lived cache tier."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from sqlalchemy import LargeBinary, cast, delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from .db.models import KeyValueEntryModel
from .db.session import session_scope
from .errors import StorageQuotaExceeded


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]:  # pragma: no cover - protocol definition
        ...

    def set(self, key: str, value: str) -> None:  # pragma: no cover - protocol definition
        ...

    def remove(self, key: str) -> None:  # pragma: no cover - protocol definition
        ...

    def keys(self, prefix: str = "") -> List[str]:  # pragma: no cover - protocol definition
        ...


def _size(value: str) -> int:
    return len(value.encode("utf-8"))


class MemoryKeyValueStorage:
    """Process-local storage with the same quota semantics as the SQL store."""

    def __init__(self, max_bytes: Optional[int] = None, quota_prefix: str = "") -> None:
        self._entries: Dict[str, str] = {}
        self._max_bytes = max_bytes
        self._quota_prefix = quota_prefix

    def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    def set(self, key: str, value: str) -> None:
        if self._max_bytes is not None and key.startswith(self._quota_prefix):
            used = sum(
                _size(v) for k, v in self._entries.items() if k != key and k.startswith(self._quota_prefix)
            )
            if used + _size(value) > self._max_bytes:
                raise StorageQuotaExceeded(f"Storing {key!r} would exceed {self._max_bytes} bytes")
        self._entries[key] = value

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._entries if key.startswith(prefix)]


class SqlKeyValueStorage:
    """Key/value rows in the local SQLite database (`kv_entries`).

    Writes commit immediately so state survives a crash right after the call.
    The quota caps the summed UTF-8 size of the values whose key starts with
    `quota_prefix`; writes under other keys are never limited.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        max_bytes: Optional[int] = None,
        quota_prefix: str = "",
    ) -> None:
        self._session_factory = session_factory
        self._max_bytes = max_bytes
        self._quota_prefix = quota_prefix

    def get(self, key: str) -> Optional[str]:
        with session_scope(self._session_factory, commit=False) as session:
            model = session.get(KeyValueEntryModel, key)
            return model.value if model is not None else None

    def set(self, key: str, value: str) -> None:
        with session_scope(self._session_factory) as session:
            if self._max_bytes is not None and key.startswith(self._quota_prefix):
                # length() of a BLOB counts bytes, matching `_size`.
                stored_bytes = func.length(cast(KeyValueEntryModel.value, LargeBinary))
                stmt = select(func.coalesce(func.sum(stored_bytes), 0)).where(KeyValueEntryModel.key != key)
                if self._quota_prefix:
                    stmt = stmt.where(KeyValueEntryModel.key.startswith(self._quota_prefix, autoescape=True))
                used = int(session.execute(stmt).scalar_one())
                if used + _size(value) > self._max_bytes:
                    raise StorageQuotaExceeded(f"Storing {key!r} would exceed {self._max_bytes} bytes")
            model = session.get(KeyValueEntryModel, key)
            if model is None:
                session.add(KeyValueEntryModel(key=key, value=value))
            else:
                model.value = value
                model.updated_at = datetime.now(timezone.utc)

    def remove(self, key: str) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(delete(KeyValueEntryModel).where(KeyValueEntryModel.key == key))

    def keys(self, prefix: str = "") -> List[str]:
        with session_scope(self._session_factory, commit=False) as session:
            stmt = select(KeyValueEntryModel.key).order_by(KeyValueEntryModel.key)
            if prefix:
                stmt = stmt.where(KeyValueEntryModel.key.startswith(prefix, autoescape=True))
            return list(session.execute(stmt).scalars().all())


__all__ = ["KeyValueStorage", "MemoryKeyValueStorage", "SqlKeyValueStorage"]
