from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Coroutine, Dict, List, Optional, Tuple

import pytest

os.environ.setdefault("RETENTIVE_DATABASE_URL", "sqlite://")

from retentive_sync import telemetry  # noqa: E402
from retentive_sync.cache import CACHE_PREFIX, CacheLayer, MemoryCache, PersistedCache  # noqa: E402
from retentive_sync.change_feed import ChangeEvent, ChannelSpec  # noqa: E402
from retentive_sync.connectivity import ConnectivityMonitor  # noqa: E402
from retentive_sync.db.session import build_engine, build_session_factory, init_schema  # noqa: E402
from retentive_sync.errors import RemoteValidationError  # noqa: E402
from retentive_sync.offline_data import OfflineDataService  # noqa: E402
from retentive_sync.offline_queue import OfflineQueue  # noqa: E402
from retentive_sync.reconcile import RemoteChangeApplier  # noqa: E402
from retentive_sync.repositories.local_records import LocalStore  # noqa: E402
from retentive_sync.storage import MemoryKeyValueStorage  # noqa: E402
from retentive_sync.sync_engine import SyncEngine  # noqa: E402
from retentive_sync.sync_handlers import build_handlers  # noqa: E402

START = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, start: datetime = START) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def now_ms(self) -> int:
        return int(self._now.timestamp() * 1000)

    def advance(self, **delta: float) -> None:
        self._now = self._now + timedelta(**delta)

    def set(self, value: datetime) -> None:
        self._now = value


@dataclass
class ManualTimer:
    delay: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Timers fire only when a test says so; spawned coroutines run on `run_spawned`."""

    def __init__(self) -> None:
        self.timers: List[ManualTimer] = []
        self.spawned: List[Coroutine[Any, Any, Any]] = []

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay_seconds, callback)
        self.timers.append(timer)
        return timer

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        self.spawned.append(coro)

    def pending_timers(self) -> List[ManualTimer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def fire_next(self) -> ManualTimer:
        timer = self.pending_timers()[0]
        self.timers.remove(timer)
        timer.callback()
        return timer

    async def run_spawned(self) -> None:
        while self.spawned:
            await self.spawned.pop(0)

    def close(self) -> None:
        for coro in self.spawned:
            coro.close()
        self.spawned.clear()


def _parse(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class FakeRemoteBackend:
    """In-memory remote store recording every call."""

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.failures: Dict[str, Exception] = {}
        self.gate: Optional[asyncio.Event] = None

    def seed(self, table: str, row: Dict[str, Any]) -> None:
        self.tables.setdefault(table, {})[row["id"]] = dict(row)

    def row(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self.tables.get(table, {}).get(record_id)

    async def _enter(self, method: str, table: str, record_id: Optional[str]) -> None:
        self.calls.append((method, table, record_id))
        if self.gate is not None:
            await self.gate.wait()
        if record_id is not None and record_id in self.failures:
            raise self.failures[record_id]

    async def insert(self, table: str, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        await self._enter("insert", table, record.get("id"))
        if self.row(table, record["id"]) is not None:
            raise RemoteValidationError("duplicate key", status_code=409)
        self.seed(table, record)
        return dict(record)

    async def update(self, table: str, record_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        await self._enter("update", table, record_id)
        row = self.row(table, record_id)
        if row is None:
            return None
        row.update(changes)
        return dict(row)

    async def delete(self, table: str, record_id: str) -> None:
        await self._enter("delete", table, record_id)
        self.tables.get(table, {}).pop(record_id, None)

    async def fetch_one(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        await self._enter("fetch_one", table, record_id)
        row = self.row(table, record_id)
        return dict(row) if row is not None else None

    async def fetch_changed(
        self,
        table: str,
        *,
        owner_column: str,
        owner_id: str,
        since: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        await self._enter("fetch_changed", table, None)
        rows = [
            dict(row)
            for row in self.tables.get(table, {}).values()
            if row.get(owner_column) == owner_id and (since is None or _parse(row["updated_at"]) >= since)
        ]
        return sorted(rows, key=lambda row: _parse(row["updated_at"]))

    def method_calls(self, method: str) -> List[Tuple[str, str, Optional[str]]]:
        return [call for call in self.calls if call[0] == method]


@dataclass
class FakeChannel:
    spec: ChannelSpec
    on_change: Callable[[ChangeEvent], None]
    on_error: Callable[[Exception], None]
    closed: bool = False

    def close(self) -> None:
        self.closed = True

    def push(self, event_type: str, new: Optional[Dict[str, Any]] = None, old: Optional[Dict[str, Any]] = None) -> None:
        self.on_change(ChangeEvent(event_type=event_type, table=self.spec.table, new=new, old=old))


@dataclass
class FakeChangeFeed:
    opened: List[FakeChannel] = field(default_factory=list)
    attempts: List[str] = field(default_factory=list)
    open_errors: List[Exception] = field(default_factory=list)
    gate: Optional[asyncio.Event] = None

    async def open_channel(self, spec, on_change, on_error) -> FakeChannel:
        self.attempts.append(spec.name)
        if self.gate is not None:
            await self.gate.wait()
        if self.open_errors:
            raise self.open_errors.pop(0)
        channel = FakeChannel(spec, on_change, on_error)
        self.opened.append(channel)
        return channel

    def live(self, name: str) -> List[FakeChannel]:
        return [channel for channel in self.opened if channel.spec.name == name and not channel.closed]


@pytest.fixture(autouse=True)
def _reset_telemetry():
    yield
    telemetry.clear_listeners()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def scheduler():
    manual = ManualScheduler()
    yield manual
    manual.close()


@pytest.fixture
def db_engine():
    engine = build_engine("sqlite://")
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def store(session_factory) -> LocalStore:
    return LocalStore(session_factory)


@pytest.fixture
def queue_storage() -> MemoryKeyValueStorage:
    return MemoryKeyValueStorage()


@pytest.fixture
def queue(queue_storage, clock) -> OfflineQueue:
    return OfflineQueue(queue_storage, clock)


@pytest.fixture
def cache(clock) -> CacheLayer:
    return CacheLayer(
        MemoryCache(clock),
        PersistedCache(MemoryKeyValueStorage(max_bytes=64 * 1024, quota_prefix=CACHE_PREFIX), clock),
    )


@pytest.fixture
def remote() -> FakeRemoteBackend:
    return FakeRemoteBackend()


@pytest.fixture
def feed() -> FakeChangeFeed:
    return FakeChangeFeed()


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor(online=True)


@pytest.fixture
def applier(store, clock) -> RemoteChangeApplier:
    return RemoteChangeApplier(store, clock)


@pytest.fixture
def sync_engine(queue, store, cache, connectivity, scheduler, remote, applier, clock) -> SyncEngine:
    return SyncEngine(
        queue,
        build_handlers(remote, store, clock),
        store,
        cache,
        connectivity,
        scheduler,
        remote=remote,
        applier=applier,
        clock=clock,
    )


@pytest.fixture
def data(store, queue, cache, clock) -> OfflineDataService:
    counter = iter(range(1, 10_000))
    return OfflineDataService(store, queue, cache, clock, id_factory=lambda: f"rec-{next(counter)}")
