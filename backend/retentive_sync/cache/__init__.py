"""Read caches shared by the data service, sync engine and realtime manager."""

from .layer import CacheLayer
from .memory_cache import CacheEntry, CacheLookup, MemoryCache
from .persisted_cache import CACHE_PREFIX, PersistedCache

__all__ = ["CACHE_PREFIX", "CacheEntry", "CacheLayer", "CacheLookup", "MemoryCache", "PersistedCache"]
