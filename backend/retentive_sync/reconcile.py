"""Apply remote records and change events to the local store."""

from __future__ import annotations

import logging
from typing import Any, Dict, Literal, Optional

from .change_feed import ChangeEvent
from .conflict_resolver import resolve
from .records import SyncedRecord, get_schema
from .repositories.local_records import LocalStore
from .scheduling import Clock, SystemClock
from .telemetry import emit_event

logger = logging.getLogger(__name__)

ApplyOutcome = Literal["inserted", "replaced", "merged", "removed", "ignored"]


class RemoteChangeApplier:
    """Reconciles one remote version of a record with the local copy.

    * absent locally, or local copy synced: take the remote version as synced.
    * local copy pending: merge through the conflict resolver and keep it pending
      so the queued operation still carries the local intent.
    * a version the row already reflects (the echo of our own write, or a
      remote version merged or copied earlier): ignored, so re-delivery never
      merges the same remote change twice.
    * append-only tables never overwrite an existing local row.
    """

    def __init__(self, store: LocalStore, clock: Optional[Clock] = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()

    def apply_record(self, table: str, remote: SyncedRecord) -> ApplyOutcome:
        schema = get_schema(table)
        local = self._store.get(table, remote.id)
        if local is None:
            self._store.upsert(
                table, remote.model_copy(update={"sync_status": "synced", "remote_updated_at": remote.updated_at})
            )
            return "inserted"
        if schema.append_only or local.already_reflects(remote):
            return "ignored"
        kept = {**local.local_fields(), "remote_updated_at": remote.updated_at}
        if local.sync_status == "synced":
            self._store.upsert(table, remote.model_copy(update={**kept, "sync_status": "synced"}))
            return "replaced"

        merged = resolve(table, local, remote, self._clock.now())
        self._store.upsert(table, merged.model_copy(update={**kept, "sync_status": "pending"}))
        emit_event(
            "sync_conflict_resolved",
            table=table,
            record_id=remote.id,
            source="remote_change",
            local_updated_at=local.updated_at,
            remote_updated_at=remote.updated_at,
        )
        return "merged"

    def apply_payload(self, table: str, payload: Dict[str, Any]) -> ApplyOutcome:
        record = get_schema(table).record.model_validate({**payload, "sync_status": "synced"})
        return self.apply_record(table, record)

    def apply_delete(self, table: str, record_id: str) -> ApplyOutcome:
        """A hard delete upstream; a pending local copy is kept so its queued write can recreate it."""
        local = self._store.get(table, record_id)
        if local is None or local.sync_status == "pending":
            return "ignored"
        self._store.remove(table, record_id)
        return "removed"

    def apply_event(self, table: str, event: ChangeEvent) -> ApplyOutcome:
        if event.event_type == "delete":
            record_id = event.record_id
            if record_id is None:
                logger.warning("Delete event on %s without an id", table)
                return "ignored"
            return self.apply_delete(table, record_id)
        if not event.new:
            logger.warning("%s event on %s without a record", event.event_type, table)
            return "ignored"
        return self.apply_payload(table, event.new)


__all__ = ["ApplyOutcome", "RemoteChangeApplier"]
