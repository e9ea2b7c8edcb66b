"""Two-tier read cache: short-lived memory entries over a persisted fallback tier."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from ..errors import NetworkError
from .memory_cache import CacheLookup, MemoryCache
from .persisted_cache import PersistedCache

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]


class CacheLayer:
    """Reads check memory first, then the persisted tier; writes go to both.

    The persisted tier doubles as the "last known good" copy returned by
    `fetch` when the loader cannot reach the network.
    """

    def __init__(self, memory: MemoryCache, persisted: PersistedCache) -> None:
        self.memory = memory
        self.persisted = persisted

    def get(self, key: str) -> Optional[Any]:
        value = self.memory.get(key)
        if value is not None:
            return value
        entry = self.persisted.get_entry(key)
        if entry is None:
            return None
        # A promoted copy never outlives the persisted entry.
        self.memory.set(key, entry.data, not_after=entry.expires_at)
        return entry.data

    def get_with_meta(self, key: str) -> CacheLookup[Any]:
        lookup = self.memory.get_with_meta(key)
        if lookup.data is not None and not lookup.is_stale:
            return lookup
        persisted = self.persisted.get_with_meta(key)
        if persisted.data is not None and not persisted.is_stale:
            self.memory.set(key, persisted.data, not_after=persisted.expires_at)
            return persisted
        if lookup.data is not None:
            return lookup
        return persisted

    def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        self.memory.set(key, value, ttl_ms)
        self.persisted.set(key, value, ttl_ms)

    def delete(self, key: str) -> None:
        self.memory.delete(key)
        self.persisted.delete(key)

    def invalidate_pattern(self, pattern: str) -> int:
        removed = self.memory.invalidate_pattern(pattern)
        removed += self.persisted.invalidate_pattern(pattern)
        return removed

    def clear_expired(self) -> int:
        return self.memory.clear_expired() + self.persisted.clear_expired()

    def clear(self) -> None:
        self.memory.clear()
        self.persisted.clear()

    async def fetch(self, key: str, loader: Loader, ttl_ms: Optional[int] = None) -> Any:
        """Read-through: fresh cache hit, else load and store.

        A retryable NetworkError from the loader falls back to the last cached
        value, expired or not. Other errors, and network errors with nothing
        cached, propagate.
        """
        cached = self.get_with_meta(key)
        if cached.data is not None and not cached.is_stale:
            return cached.data
        try:
            value = await loader()
        except NetworkError as exc:
            if not exc.retryable or cached.data is None:
                raise
            logger.debug("Serving stale %s after network failure: %s", key, exc)
            return cached.data
        if value is not None:
            self.set(key, value, ttl_ms)
        return value


__all__ = ["CacheLayer", "Loader"]
