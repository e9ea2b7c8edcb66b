"""Per-table handlers that apply one queued operation to the remote store."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from .conflict_resolver import RESOLVERS, resolve
from .operations import QueuedOperation
from .records import TABLE_SCHEMAS, SyncedRecord, TableSchema
from .remote import RemoteBackend
from .repositories.local_records import LocalStore
from .scheduling import Clock, SystemClock
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class SyncHandler(Protocol):
    async def apply_create(self, operation: QueuedOperation) -> None:  # pragma: no cover - protocol definition
        ...

    async def apply_update(self, operation: QueuedOperation) -> None:  # pragma: no cover - protocol definition
        ...

    async def apply_delete(self, operation: QueuedOperation) -> None:  # pragma: no cover - protocol definition
        ...


class TableSyncHandler:
    """Default handler: insert for create, conflict-checked update, soft delete for delete."""

    def __init__(self, schema: TableSchema, remote: RemoteBackend, store: LocalStore, clock: Optional[Clock] = None) -> None:
        self.schema = schema
        self._remote = remote
        self._store = store
        self._clock = clock or SystemClock()

    @property
    def table(self) -> str:
        return self.schema.table

    async def apply_create(self, operation: QueuedOperation) -> None:
        await self._remote.insert(self.table, dict(operation.data))

    async def apply_update(self, operation: QueuedOperation) -> None:
        changes = {key: value for key, value in operation.data.items() if key != "id"}
        merged = await self._resolve_conflict(operation)
        if merged is not None:
            changes = {key: value for key, value in merged.remote_payload().items() if key != "id"}
        await self._remote.update(self.table, operation.record_id, changes)

    async def apply_delete(self, operation: QueuedOperation) -> None:
        rule = self.schema.soft_delete
        if rule is None:
            raise ValueError(f"{self.table} records cannot be deleted")
        now = self._clock.now()
        changes: Dict[str, Any] = rule.changes(now)
        local = self._store.get(self.table, operation.record_id)
        if local is not None and getattr(local, rule.field, None) is not None and rule.value is None:
            changes[rule.field] = getattr(local, rule.field).isoformat()
        changes["updated_at"] = (local.updated_at if local is not None else now).isoformat()
        await self._remote.update(self.table, operation.record_id, changes)

    async def _resolve_conflict(self, operation: QueuedOperation) -> Optional[SyncedRecord]:
        """Return the record to send when someone else wrote remotely since our base version.

        A remote version the local row already took in (merged by a change event
        or pull, or by an earlier operation in this drain) is not merged again;
        the local row is sent as it stands.
        """
        if operation.base_updated_at is None or self.table not in RESOLVERS:
            return None
        payload = await self._remote.fetch_one(self.table, operation.record_id)
        if payload is None:
            return None
        remote = self.schema.record.model_validate(payload)
        if remote.updated_at == operation.base_updated_at:
            return None
        local = self._store.get(self.table, operation.record_id)
        if local is None:
            return None
        now = self._clock.now()
        if local.already_reflects(remote):
            return self._store.upsert(self.table, local.model_copy(update={"updated_at": max(local.updated_at, now)}))

        merged = resolve(self.table, local, remote, now)
        stamped = merged.model_copy(
            update={
                **local.local_fields(),
                "updated_at": max(merged.updated_at, now),
                "remote_updated_at": remote.updated_at,
            }
        )
        stored = self._store.upsert(self.table, stamped)
        logger.info("Resolved conflict on %s/%s", self.table, operation.record_id)
        emit_event(
            "sync_conflict_resolved",
            table=self.table,
            record_id=operation.record_id,
            operation_id=operation.id,
            source="drain",
            base_updated_at=operation.base_updated_at,
            remote_updated_at=remote.updated_at,
        )
        return stored


def build_handlers(remote: RemoteBackend, store: LocalStore, clock: Optional[Clock] = None) -> Dict[str, SyncHandler]:
    """One default handler per synced table."""
    return {table: TableSyncHandler(schema, remote, store, clock) for table, schema in TABLE_SCHEMAS.items()}


__all__ = ["SyncHandler", "TableSyncHandler", "build_handlers"]
