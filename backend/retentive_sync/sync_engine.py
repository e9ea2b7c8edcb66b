"""Sequential drain of the offline queue against the remote store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock
from typing import Callable, Dict, List, Literal, Optional, Set, Tuple

from .backoff import DEFAULT_STALE_AFTER_MS, is_stale_operation
from .cache.keys import patterns_for_table
from .cache.layer import CacheLayer
from .connectivity import ConnectivityObserver, ConnectivitySignal
from .errors import AuthError, NetworkError, SyncError, is_retryable
from .offline_queue import OfflineQueue
from .operations import QueuedOperation
from .reconcile import RemoteChangeApplier
from .remote import RemoteBackend
from .repositories.local_records import LocalStore
from .scheduling import Clock, Scheduler, SystemClock
from .sync_handlers import SyncHandler
from .telemetry import emit_event

logger = logging.getLogger(__name__)

StatusListener = Callable[[bool], None]
IssueKind = Literal["dropped", "rejected", "auth_required"]

# (table, owner column) in dependency order: parents before children.
PULL_TABLES: Tuple[Tuple[str, str], ...] = (
    ("users", "id"),
    ("subjects", "user_id"),
    ("topics", "user_id"),
    ("learning_items", "user_id"),
    ("review_sessions", "user_id"),
    ("user_gamification_stats", "user_id"),
    ("daily_stats", "user_id"),
)


@dataclass(frozen=True)
class DrainResult:
    succeeded: int = 0
    failed: int = 0

    @property
    def success(self) -> int:
        return self.succeeded


@dataclass(frozen=True)
class SyncIssue:
    """A queued operation that left the queue without reaching the remote store, or an auth stop."""

    kind: IssueKind
    error: str
    operation: Optional[QueuedOperation] = None


@dataclass(frozen=True)
class PullResult:
    applied: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.applied.values())


@dataclass(frozen=True)
class SyncAllResult:
    pulled: PullResult
    drained: DrainResult


IssueListener = Callable[[SyncIssue], None]


class SyncEngine:
    """Replays queued operations in order through the per-table handler registry.

    Only one drain runs at a time; a drain requested while one is running, or
    while offline, returns an empty result. Failures never escape `drain`.
    """

    def __init__(
        self,
        queue: OfflineQueue,
        handlers: Dict[str, SyncHandler],
        store: LocalStore,
        cache: CacheLayer,
        connectivity: ConnectivityObserver,
        scheduler: Scheduler,
        *,
        remote: Optional[RemoteBackend] = None,
        applier: Optional[RemoteChangeApplier] = None,
        clock: Optional[Clock] = None,
        stale_after_ms: int = DEFAULT_STALE_AFTER_MS,
    ) -> None:
        self._queue = queue
        self._handlers = handlers
        self._store = store
        self._cache = cache
        self._connectivity = connectivity
        self._scheduler = scheduler
        self._remote = remote
        self._applier = applier
        self._clock = clock or SystemClock()
        self._stale_after_ms = stale_after_ms
        self._is_syncing = False
        self._status_listeners: List[StatusListener] = []
        self._issue_listeners: List[IssueListener] = []
        self._lock = RLock()
        self._unsubscribe_connectivity: Optional[Callable[[], None]] = None

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    def get_is_syncing(self) -> bool:
        return self._is_syncing

    def pending_operations_count(self) -> int:
        return self._queue.pending_count()

    get_pending_operations_count = pending_operations_count

    # listeners -----------------------------------------------------------

    def on_sync_status_change(self, listener: StatusListener) -> Callable[[], None]:
        return self._add_listener(self._status_listeners, listener)

    def on_sync_issue(self, listener: IssueListener) -> Callable[[], None]:
        return self._add_listener(self._issue_listeners, listener)

    def _add_listener(self, listeners: list, listener: Callable) -> Callable[[], None]:
        with self._lock:
            listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in listeners:
                    listeners.remove(listener)

        return _unsubscribe

    def _notify_status(self, syncing: bool) -> None:
        with self._lock:
            listeners = list(self._status_listeners)
        for listener in listeners:
            try:
                listener(syncing)
            except Exception:  # noqa: BLE001
                logger.exception("Sync status listener failed")

    def _report(self, issue: SyncIssue) -> None:
        with self._lock:
            listeners = list(self._issue_listeners)
        for listener in listeners:
            try:
                listener(issue)
            except Exception:  # noqa: BLE001
                logger.exception("Sync issue listener failed")

    # connectivity wiring -------------------------------------------------

    def start(self) -> None:
        """Drain on reconnect, and on focus when operations are waiting."""
        if self._unsubscribe_connectivity is not None:
            return
        self._unsubscribe_connectivity = self._connectivity.subscribe(self._on_signal)

    def stop(self) -> None:
        if self._unsubscribe_connectivity is not None:
            self._unsubscribe_connectivity()
            self._unsubscribe_connectivity = None

    def _on_signal(self, signal: ConnectivitySignal) -> None:
        if signal is ConnectivitySignal.ONLINE:
            logger.info("Connection restored; draining %d queued operations", self._queue.pending_count())
            self._scheduler.spawn(self.drain())
        elif signal is ConnectivitySignal.FOCUS:
            if self._connectivity.is_online and self._queue.has_pending():
                self._scheduler.spawn(self.drain())
        else:
            logger.info("Connection lost; writes will be queued")

    # drain ---------------------------------------------------------------

    async def drain(self) -> DrainResult:
        if self._is_syncing:
            logger.debug("Drain already in progress; skipping")
            return DrainResult()
        if not self._connectivity.is_online:
            logger.debug("Offline; skipping drain")
            return DrainResult()

        self._is_syncing = True
        self._notify_status(True)
        succeeded = 0
        failed = 0
        # records whose earlier operation is still queued; later ones wait
        blocked: Set[Tuple[str, str]] = set()
        try:
            for operation in self._queue.list():
                if operation.record_key in blocked:
                    failed += 1
                    continue
                try:
                    await self._dispatch(operation)
                except AuthError as exc:
                    failed += 1
                    self._stop_for_auth(operation, exc)
                    break
                except Exception as exc:  # noqa: BLE001
                    failed += 1
                    if is_retryable(exc):
                        self._handle_retryable(operation, exc, blocked)
                    else:
                        self._reject(operation, exc)
                    continue
                succeeded += 1
                self._settle(operation)
        finally:
            try:
                self._cache.clear_expired()
            except Exception:  # noqa: BLE001
                logger.exception("Cache expiry pass failed")
            self._is_syncing = False
            self._notify_status(False)

        emit_event(
            "sync_drain_completed",
            succeeded=succeeded,
            failed=failed,
            remaining=self._queue.pending_count(),
        )
        return DrainResult(succeeded=succeeded, failed=failed)

    sync_pending_operations = drain

    async def _dispatch(self, operation: QueuedOperation) -> None:
        handler = self._handlers.get(operation.table)
        if handler is None:
            raise ValueError(f"No sync handler registered for {operation.table}")
        if operation.type == "create":
            await handler.apply_create(operation)
        elif operation.type == "update":
            await handler.apply_update(operation)
        else:
            await handler.apply_delete(operation)

    def _settle(self, operation: QueuedOperation) -> None:
        """Remove the operation and flip the record to synced once nothing else references it."""
        self._queue.remove(operation.id)
        if not self._queue.has_pending_for(operation.table, operation.record_id):
            self._store.set_sync_status(operation.table, operation.record_id, "synced")

    def _handle_retryable(self, operation: QueuedOperation, exc: Exception, blocked: Set[Tuple[str, str]]) -> None:
        if isinstance(exc, NetworkError):
            logger.debug("Operation %s failed, will retry: %s", operation.id, exc)
        else:
            logger.warning("Operation %s failed, will retry", operation.id, exc_info=exc)

        if is_stale_operation(operation.timestamp, self._clock.now_ms(), self._stale_after_ms):
            self._settle(operation)
            logger.warning(
                "Dropped stale %s on %s/%s after %d retries: %s",
                operation.type,
                operation.table,
                operation.record_id,
                operation.retry_count,
                exc,
            )
            emit_event(
                "sync_operation_dropped",
                operation_id=operation.id,
                table=operation.table,
                record_id=operation.record_id,
                operation_type=operation.type,
                retry_count=operation.retry_count,
                error=str(exc),
                operation=operation.to_storage(),
            )
            self._report(SyncIssue(kind="dropped", error=str(exc), operation=operation))
            return

        self._queue.increment_retry(operation.id, str(exc))
        blocked.add(operation.record_key)

    def _reject(self, operation: QueuedOperation, exc: Exception) -> None:
        self._settle(operation)
        logger.warning(
            "Rejected %s on %s/%s: %s", operation.type, operation.table, operation.record_id, exc
        )
        emit_event(
            "sync_operation_rejected",
            operation_id=operation.id,
            table=operation.table,
            record_id=operation.record_id,
            operation_type=operation.type,
            error=str(exc),
            status_code=getattr(exc, "status_code", None),
            operation=operation.to_storage(),
        )
        self._report(SyncIssue(kind="rejected", error=str(exc), operation=operation))

    def _stop_for_auth(self, operation: QueuedOperation, exc: AuthError) -> None:
        logger.warning("Remote rejected credentials; stopping drain at %s", operation.id)
        emit_event(
            "sync_auth_required",
            operation_id=operation.id,
            status_code=exc.status_code,
            remaining=self._queue.pending_count(),
        )
        self._report(SyncIssue(kind="auth_required", error=str(exc), operation=operation))

    # pull ----------------------------------------------------------------

    async def pull_changes(self, user_id: str, *, since: Optional[datetime] = None) -> PullResult:
        """Fetch records changed remotely since the user's last sync and reconcile them locally.

        Remote errors propagate; nothing is stamped here.
        """
        if self._remote is None or self._applier is None:
            raise RuntimeError("pull_changes needs a remote backend and a change applier")
        if since is None:
            user = self._store.get_user(user_id)
            since = user.last_sync_at if user is not None else None

        applied: Dict[str, int] = {}
        for table, owner_column in PULL_TABLES:
            rows = await self._remote.fetch_changed(table, owner_column=owner_column, owner_id=user_id, since=since)
            count = 0
            for row in rows:
                if self._applier.apply_payload(table, row) != "ignored":
                    count += 1
            if count:
                for pattern in patterns_for_table(table):
                    self._cache.invalidate_pattern(pattern)
            applied[table] = count
        logger.info("Pulled %d remote changes for %s", sum(applied.values()), user_id)
        return PullResult(applied=applied)

    async def sync_all(self, user_id: str) -> SyncAllResult:
        """Pull then drain; `last_sync_at` is stamped only when both completed cleanly."""
        if not self._connectivity.is_online:
            return SyncAllResult(pulled=PullResult(), drained=DrainResult())
        started_at = self._clock.now()
        try:
            pulled = await self.pull_changes(user_id)
        except SyncError as exc:
            logger.debug("Pull for %s failed: %s", user_id, exc)
            return SyncAllResult(pulled=PullResult(), drained=await self.drain())
        drained = await self.drain()
        if drained.failed == 0 and not self._queue.has_pending():
            self._store.stamp_last_sync(user_id, started_at)
        return SyncAllResult(pulled=pulled, drained=drained)


__all__ = [
    "DrainResult",
    "IssueKind",
    "PULL_TABLES",
    "PullResult",
    "SyncAllResult",
    "SyncEngine",
    "SyncIssue",
]
