"""Queued mutation model and enqueue-time payload validation."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import OperationValidationError
from .records import TABLE_SCHEMAS, ensure_utc

OperationType = Literal["create", "update", "delete"]


class QueuedOperation(BaseModel):
    """One pending write, persisted with the camelCase keys of the stored queue layout."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    type: OperationType
    table: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int
    retry_count: int = Field(default=0, alias="retryCount", ge=0)
    last_error: Optional[str] = Field(default=None, alias="lastError")
    base_updated_at: Optional[datetime] = Field(default=None, alias="baseUpdatedAt")

    @property
    def record_id(self) -> str:
        return str(self.data.get("id", ""))

    @property
    def record_key(self) -> tuple[str, str]:
        return (self.table, self.record_id)

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.timestamp

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def validate_payload(op_type: str, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Check `data` against the table's shape and return the JSON-ready payload.

    create carries the full record, update a partial record plus id, delete only
    the id. Append-only tables accept creates exclusively.
    """
    schema = TABLE_SCHEMAS.get(table)
    if schema is None:
        raise OperationValidationError(table, "unknown table")
    if not isinstance(data, dict):
        raise OperationValidationError(table, "payload must be an object")

    try:
        if op_type == "create":
            record = schema.record.model_validate(data)
            return record.remote_payload()
        if op_type == "update":
            if schema.update is None:
                raise OperationValidationError(table, "records are append-only and cannot be updated")
            update = schema.update.model_validate(data)
            payload = update.model_dump(mode="json", exclude_unset=True)
            if len(payload) <= 1:
                raise OperationValidationError(table, "update carries no changes")
            return payload
        if op_type == "delete":
            if schema.soft_delete is None:
                raise OperationValidationError(table, "records cannot be deleted")
            record_id = data.get("id")
            if not isinstance(record_id, str) or not record_id:
                raise OperationValidationError(table, "delete requires an id")
            return {"id": record_id}
    except ValidationError as exc:
        raise OperationValidationError(table, str(exc)) from exc
    raise OperationValidationError(table, f"unsupported operation type {op_type!r}")


def normalize_base(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


__all__ = ["OperationType", "QueuedOperation", "normalize_base", "validate_payload"]
