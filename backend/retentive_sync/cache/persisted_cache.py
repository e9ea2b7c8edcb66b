"""Long-lived cache tier persisted through KeyValueStorage."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from ..errors import StorageQuotaExceeded
from ..scheduling import Clock, SystemClock
from ..storage import KeyValueStorage
from .memory_cache import CacheEntry, CacheLookup

logger = logging.getLogger(__name__)

DEFAULT_PERSISTED_TTL_MS = 24 * 60 * 60 * 1000
CACHE_PREFIX = "retentive_cache_"


class PersistedCache:
    """Entries stored as `{data, timestamp, expiresAt}` JSON under a key prefix.

    Values must be JSON serialisable. Unreadable entries are removed on access.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Optional[Clock] = None,
        default_ttl_ms: Optional[int] = DEFAULT_PERSISTED_TTL_MS,
        prefix: str = CACHE_PREFIX,
    ) -> None:
        self._storage = storage
        self._clock = clock or SystemClock()
        self._default_ttl_ms = default_ttl_ms
        self._prefix = prefix

    def _read(self, key: str) -> Optional[CacheEntry[Any]]:
        raw = self._storage.get(self._prefix + key)
        if raw is None:
            return None
        try:
            item = json.loads(raw)
            return CacheEntry(data=item["data"], timestamp=int(item["timestamp"]), expires_at=item.get("expiresAt"))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.debug("Dropping unreadable cache entry %s", key)
            self._storage.remove(self._prefix + key)
            return None

    def get_entry(self, key: str) -> Optional[CacheEntry[Any]]:
        """The live entry for `key`; an expired one is removed and None returned."""
        entry = self._read(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock.now_ms()):
            self._storage.remove(self._prefix + key)
            return None
        return entry

    def get(self, key: str) -> Optional[Any]:
        entry = self.get_entry(key)
        return entry.data if entry is not None else None

    def get_with_meta(self, key: str) -> CacheLookup[Any]:
        entry = self._read(key)
        if entry is None:
            return CacheLookup(data=None, is_stale=True)
        return CacheLookup(
            data=entry.data, is_stale=entry.is_expired(self._clock.now_ms()), expires_at=entry.expires_at
        )

    def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> bool:
        """Persist an entry; returns False when storage stayed full after one sweep."""
        ttl = self._default_ttl_ms if ttl_ms is None else ttl_ms
        try:
            self._write(key, value, ttl)
            return True
        except StorageQuotaExceeded:
            logger.warning("Cache storage full while writing %s; sweeping expired entries", key)
        self.clear_expired()
        try:
            self._write(key, value, ttl)
            return True
        except StorageQuotaExceeded:
            logger.debug("Giving up on caching %s after sweep", key)
            return False

    def _write(self, key: str, value: Any, ttl_ms: Optional[int]) -> None:
        now = self._clock.now_ms()
        item = {
            "data": value,
            "timestamp": now,
            "expiresAt": now + ttl_ms if ttl_ms is not None else None,
        }
        self._storage.set(self._prefix + key, json.dumps(item, default=str))

    def delete(self, key: str) -> None:
        self._storage.remove(self._prefix + key)

    def invalidate_pattern(self, pattern: str) -> int:
        regex = re.compile(pattern)
        removed = 0
        for storage_key in self._storage.keys(self._prefix):
            if regex.search(storage_key[len(self._prefix):]):
                self._storage.remove(storage_key)
                removed += 1
        return removed

    def clear_expired(self) -> int:
        now = self._clock.now_ms()
        removed = 0
        for storage_key in self._storage.keys(self._prefix):
            entry = self._read(storage_key[len(self._prefix):])
            if entry is None:
                removed += 1
                continue
            if entry.is_expired(now):
                self._storage.remove(storage_key)
                removed += 1
        return removed

    def clear(self) -> None:
        for storage_key in self._storage.keys(self._prefix):
            self._storage.remove(storage_key)
