"""Durable FIFO of local mutations waiting to reach the remote store."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .operations import QueuedOperation, normalize_base, validate_payload
from .scheduling import Clock, SystemClock
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "retentive_offline_queue"


def _operation_id(now_ms: int) -> str:
    return f"{now_ms}_{uuid.uuid4().hex[:9]}"


class OfflineQueue:
    """Ordered list of QueuedOperation persisted under one storage key.

    Every mutating call rewrites the whole serialized array before returning.
    Repeated updates to the same record are kept as separate entries.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Optional[Clock] = None,
        storage_key: str = DEFAULT_STORAGE_KEY,
    ) -> None:
        self._storage = storage
        self._clock = clock or SystemClock()
        self._storage_key = storage_key
        self._queue: List[QueuedOperation] = self._load()

    def _load(self) -> List[QueuedOperation]:
        raw = self._storage.get(self._storage_key)
        if not raw:
            return []
        try:
            items = json.loads(raw)
            return [QueuedOperation.model_validate(item) for item in items]
        except (json.JSONDecodeError, TypeError, ValidationError):
            logger.exception("Failed to load offline queue; starting empty")
            return []

    def _save(self) -> None:
        payload = json.dumps([op.to_storage() for op in self._queue])
        self._storage.set(self._storage_key, payload)

    def enqueue(
        self,
        op_type: str,
        table: str,
        data: Dict[str, Any],
        *,
        base_updated_at: Optional[datetime] = None,
    ) -> str:
        """Validate and append a mutation; returns the new operation id."""
        payload = validate_payload(op_type, table, data)
        now_ms = self._clock.now_ms()
        if self._queue:
            now_ms = max(now_ms, self._queue[-1].timestamp)
        operation = QueuedOperation(
            id=_operation_id(now_ms),
            type=op_type,  # type: ignore[arg-type]
            table=table,
            data=payload,
            timestamp=now_ms,
            base_updated_at=normalize_base(base_updated_at),
        )
        self._queue.append(operation)
        self._save()
        logger.debug("Queued %s on %s (%s); %d pending", op_type, table, operation.record_id, len(self._queue))
        return operation.id

    def list(self) -> List[QueuedOperation]:
        return list(self._queue)

    def get(self, operation_id: str) -> Optional[QueuedOperation]:
        return next((op for op in self._queue if op.id == operation_id), None)

    def remove(self, operation_id: str) -> None:
        remaining = [op for op in self._queue if op.id != operation_id]
        if len(remaining) == len(self._queue):
            return
        self._queue = remaining
        self._save()

    def increment_retry(self, operation_id: str, error_message: str) -> None:
        updated: List[QueuedOperation] = []
        changed = False
        for op in self._queue:
            if op.id == operation_id:
                op = op.model_copy(update={"retry_count": op.retry_count + 1, "last_error": error_message})
                changed = True
            updated.append(op)
        if changed:
            self._queue = updated
            self._save()

    def clear(self) -> None:
        self._queue = []
        self._save()

    def has_pending(self) -> bool:
        return bool(self._queue)

    def pending_count(self) -> int:
        return len(self._queue)

    def has_pending_for(self, table: str, record_id: str, *, excluding: Optional[str] = None) -> bool:
        return any(
            op.table == table and op.record_id == record_id and op.id != excluding
            for op in self._queue
        )

    def oldest(self) -> Optional[QueuedOperation]:
        return self._queue[0] if self._queue else None

    add_operation = enqueue
    get_queue = list
    remove_operation = remove
    has_pending_operations = has_pending
    get_pending_count = pending_count


__all__ = ["DEFAULT_STORAGE_KEY", "OfflineQueue"]
