from __future__ import annotations

from retentive_sync.sync_audit import AUDITED_EVENTS, install_audit_listener, recent_audit_events
from retentive_sync.telemetry import emit_event


def test_audited_events_are_persisted(session_factory) -> None:
    install_audit_listener(session_factory)

    emit_event(
        "sync_operation_rejected",
        operation_id="1717243200000_abc123def",
        table="topics",
        record_id="t1",
        error="violates check constraint",
        status_code=422,
    )

    events = recent_audit_events(session_factory)
    assert events, "Expected the rejection to be persisted"
    assert events[0].event_type == "sync_operation_rejected"
    assert events[0].operation_id == "1717243200000_abc123def"
    assert events[0].table_name == "topics"
    assert events[0].payload["status_code"] == 422


def test_unaudited_events_are_not_persisted(session_factory) -> None:
    install_audit_listener(session_factory)

    emit_event("sync_drain_completed", succeeded=1, failed=0, remaining=0)

    assert "sync_drain_completed" not in AUDITED_EVENTS
    assert recent_audit_events(session_factory) == []


def test_unregister_stops_persisting(session_factory) -> None:
    unregister = install_audit_listener(session_factory)
    unregister()

    emit_event("sync_auth_required", operation_id="op-1", status_code=401, remaining=3)

    assert recent_audit_events(session_factory) == []


def test_recent_events_are_newest_first_and_limited(session_factory) -> None:
    install_audit_listener(session_factory)
    for index in range(3):
        emit_event("sync_operation_dropped", operation_id=f"op-{index}", table="topics")

    events = recent_audit_events(session_factory, limit=2)

    assert [event.operation_id for event in events] == ["op-2", "op-1"]
