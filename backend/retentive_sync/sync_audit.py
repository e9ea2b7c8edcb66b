"""Telemetry listener that persists dropped and rejected operations to `sync_audit_events`."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Set

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .db.models import SyncAuditEventModel
from .db.session import session_scope
from .telemetry import TelemetryEvent, register_listener

logger = logging.getLogger(__name__)

AUDITED_EVENTS: Set[str] = {
    "sync_operation_dropped",
    "sync_operation_rejected",
    "sync_auth_required",
}


class AuditEvent(BaseModel):
    id: int
    event_type: str
    operation_id: str | None = None
    table_name: str | None = None
    payload: Dict[str, Any]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


def _persist_event(session_factory: sessionmaker[Session], event: TelemetryEvent) -> None:
    if event.name not in AUDITED_EVENTS:
        return
    try:
        with session_scope(session_factory) as session:
            session.add(
                SyncAuditEventModel(
                    event_type=event.name,
                    operation_id=event.payload.get("operation_id"),
                    table_name=event.payload.get("table"),
                    payload=dict(event.payload),
                )
            )
    except Exception:  # noqa: BLE001
        logger.exception("Failed to persist sync audit event %s", event.name)


def install_audit_listener(session_factory: sessionmaker[Session]) -> Callable[[], None]:
    """Start persisting audited events; returns the unregister callable."""

    def _listener(event: TelemetryEvent) -> None:
        _persist_event(session_factory, event)

    return register_listener(_listener)


def recent_audit_events(session_factory: sessionmaker[Session], limit: int = 50) -> List[AuditEvent]:
    with session_scope(session_factory, commit=False) as session:
        stmt = (
            select(SyncAuditEventModel)
            .order_by(SyncAuditEventModel.created_at.desc(), SyncAuditEventModel.id.desc())
            .limit(limit)
        )
        return [AuditEvent.model_validate(model) for model in session.execute(stmt).scalars()]


__all__ = ["AUDITED_EVENTS", "AuditEvent", "install_audit_listener", "recent_audit_events"]
