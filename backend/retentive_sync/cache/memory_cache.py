"""Short-lived in-memory cache tier for hot read paths."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

from ..scheduling import Clock, SystemClock

T = TypeVar("T")

DEFAULT_MEMORY_TTL_MS = 5 * 60 * 1000


@dataclass
class CacheEntry(Generic[T]):
    data: T
    timestamp: int
    expires_at: Optional[int] = None

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at is not None and now_ms > self.expires_at


@dataclass(frozen=True)
class CacheLookup(Generic[T]):
    """Result of a stale-while-revalidate read."""

    data: Optional[T]
    is_stale: bool
    expires_at: Optional[int] = None


class MemoryCache:
    """Process-local entries with a default TTL of a few minutes."""

    def __init__(self, clock: Optional[Clock] = None, default_ttl_ms: int = DEFAULT_MEMORY_TTL_MS) -> None:
        self._clock = clock or SystemClock()
        self._default_ttl_ms = default_ttl_ms
        self._entries: Dict[str, CacheEntry[Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock.now_ms()):
            del self._entries[key]
            return None
        return entry.data

    def get_with_meta(self, key: str) -> CacheLookup[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return CacheLookup(data=None, is_stale=True)
        return CacheLookup(
            data=entry.data, is_stale=entry.is_expired(self._clock.now_ms()), expires_at=entry.expires_at
        )

    def set(self, key: str, value: Any, ttl_ms: Optional[int] = None, *, not_after: Optional[int] = None) -> None:
        """Store `value`; `not_after` caps the expiry at an absolute time in ms."""
        now = self._clock.now_ms()
        ttl = self._default_ttl_ms if ttl_ms is None else ttl_ms
        expires_at = now + ttl
        if not_after is not None:
            expires_at = min(expires_at, not_after)
        self._entries[key] = CacheEntry(data=value, timestamp=now, expires_at=expires_at)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate_pattern(self, pattern: str) -> int:
        regex = re.compile(pattern)
        doomed = [key for key in self._entries if regex.search(key)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear_expired(self) -> int:
        now = self._clock.now_ms()
        doomed = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
