"""Composition root: builds one instance of every sync component and wires them together."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from .cache.layer import CacheLayer
from .cache.memory_cache import MemoryCache
from .cache.persisted_cache import CACHE_PREFIX, PersistedCache
from .change_feed import ChangeFeed, HttpChangeFeed
from .config import Settings, get_settings
from .connectivity import ConnectivityMonitor
from .db.session import build_engine, build_session_factory, init_schema
from .offline_data import OfflineDataService
from .offline_queue import OfflineQueue
from .realtime import RealtimeManager
from .reconcile import RemoteChangeApplier
from .remote import HttpRemoteBackend, RemoteBackend
from .repositories.local_records import LocalStore
from .scheduling import AsyncioScheduler, Clock, Scheduler, SystemClock
from .storage import KeyValueStorage, SqlKeyValueStorage
from .sync_audit import install_audit_listener
from .sync_engine import SyncEngine
from .sync_handlers import SyncHandler, build_handlers

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    settings: Settings
    db_engine: Engine
    session_factory: sessionmaker[Session]
    clock: Clock
    scheduler: Scheduler
    connectivity: ConnectivityMonitor
    store: LocalStore
    queue: OfflineQueue
    cache: CacheLayer
    remote: RemoteBackend
    change_feed: ChangeFeed
    applier: RemoteChangeApplier
    handlers: Dict[str, SyncHandler]
    sync_engine: SyncEngine
    realtime: RealtimeManager
    data: OfflineDataService
    _cleanups: List[Callable[[], None]] = field(default_factory=list)

    async def aclose(self) -> None:
        self.realtime.unsubscribe_all()
        self.sync_engine.stop()
        while self._cleanups:
            self._cleanups.pop()()
        for adapter in (self.remote, self.change_feed):
            close = getattr(adapter, "aclose", None)
            if close is not None:
                await close()
        logger.info("Sync context closed")


def build_context(
    settings: Optional[Settings] = None,
    *,
    remote: Optional[RemoteBackend] = None,
    change_feed: Optional[ChangeFeed] = None,
    clock: Optional[Clock] = None,
    scheduler: Optional[Scheduler] = None,
    connectivity: Optional[ConnectivityMonitor] = None,
    db_engine: Optional[Engine] = None,
    queue_storage: Optional[KeyValueStorage] = None,
    cache_storage: Optional[KeyValueStorage] = None,
    audit: bool = True,
    start: bool = True,
) -> SyncContext:
    """Construct the sync core.

    Collaborators not passed in are built from `settings`; the HTTP adapters
    need RETENTIVE_REMOTE_URL.
    """
    settings = settings or get_settings()
    clock = clock or SystemClock()
    scheduler = scheduler or AsyncioScheduler()
    connectivity = connectivity or ConnectivityMonitor()

    if db_engine is None:
        db_engine = build_engine(settings.database_url, echo=settings.database_echo)
    init_schema(db_engine)
    session_factory = build_session_factory(db_engine)

    if remote is None or change_feed is None:
        if not settings.remote_url:
            raise RuntimeError("RETENTIVE_REMOTE_URL must be configured to reach the remote store.")
        if remote is None:
            remote = HttpRemoteBackend(
                settings.remote_url,
                api_key=settings.remote_api_key,
                timeout_seconds=settings.remote_timeout_seconds,
            )
        if change_feed is None:
            change_feed = HttpChangeFeed(settings.remote_url, api_key=settings.remote_api_key)

    queue_storage = queue_storage or SqlKeyValueStorage(session_factory)
    cache_storage = cache_storage or SqlKeyValueStorage(
        session_factory,
        max_bytes=settings.persisted_cache_max_bytes,
        quota_prefix=CACHE_PREFIX,
    )

    store = LocalStore(session_factory)
    queue = OfflineQueue(queue_storage, clock, storage_key=settings.offline_queue_key)
    cache = CacheLayer(
        MemoryCache(clock, default_ttl_ms=settings.memory_cache_ttl_seconds * 1000),
        PersistedCache(cache_storage, clock, default_ttl_ms=settings.persisted_cache_ttl_seconds * 1000),
    )
    applier = RemoteChangeApplier(store, clock)
    handlers = build_handlers(remote, store, clock)
    sync_engine = SyncEngine(
        queue,
        handlers,
        store,
        cache,
        connectivity,
        scheduler,
        remote=remote,
        applier=applier,
        clock=clock,
        stale_after_ms=settings.stale_operation_ms,
    )
    realtime = RealtimeManager(
        change_feed,
        cache,
        scheduler,
        applier=applier,
        base_delay_ms=settings.reconnect_base_delay_ms,
        max_attempts=settings.reconnect_max_attempts,
    )
    data = OfflineDataService(store, queue, cache, clock)

    context = SyncContext(
        settings=settings,
        db_engine=db_engine,
        session_factory=session_factory,
        clock=clock,
        scheduler=scheduler,
        connectivity=connectivity,
        store=store,
        queue=queue,
        cache=cache,
        remote=remote,
        change_feed=change_feed,
        applier=applier,
        handlers=handlers,
        sync_engine=sync_engine,
        realtime=realtime,
        data=data,
    )
    if audit:
        context._cleanups.append(install_audit_listener(session_factory))
    if start:
        sync_engine.start()
    logger.info("Sync context ready (%d queued operations)", queue.pending_count())
    return context


_context: Optional[SyncContext] = None


def get_context() -> SyncContext:
    """Process-wide context used by the HTTP bridge; built on first use."""
    global _context
    if _context is None:
        _context = build_context()
    return _context


async def close_context() -> None:
    global _context
    if _context is not None:
        await _context.aclose()
    _context = None


__all__ = ["SyncContext", "build_context", "close_context", "get_context"]
