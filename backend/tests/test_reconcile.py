from __future__ import annotations

from datetime import datetime, timedelta, timezone

from retentive_sync import telemetry
from retentive_sync.change_feed import ChangeEvent
from retentive_sync.records import LearningItem, ReviewSession, Topic, User

T0 = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)


def _topic(name: str, updated_at: datetime, **fields) -> Topic:
    return Topic(id="t1", user_id="u1", name=name, updated_at=updated_at, **fields)


def test_unknown_record_is_inserted_as_synced(applier, store) -> None:
    outcome = applier.apply_payload("topics", _topic("Biology", T0).remote_payload())

    assert outcome == "inserted"
    assert store.get("topics", "t1").sync_status == "synced"


def test_synced_local_copy_is_replaced(applier, store) -> None:
    store.upsert("topics", _topic("Biology", T0))

    outcome = applier.apply_record("topics", _topic("Cell biology", T0 + timedelta(minutes=1)))

    assert outcome == "replaced"
    assert store.get("topics", "t1").name == "Cell biology"


def test_echo_of_own_write_is_ignored(applier, store) -> None:
    store.upsert("topics", _topic("Biology", T0, sync_status="pending"))

    outcome = applier.apply_record("topics", _topic("Biology", T0))

    assert outcome == "ignored"
    assert store.get("topics", "t1").sync_status == "pending"


def test_pending_local_copy_is_merged_and_stays_pending(applier, store) -> None:
    events = []
    telemetry.register_listener(events.append)
    local = LearningItem(
        id="i1",
        topic_id="t1",
        user_id="u1",
        content="local wording",
        review_count=4,
        updated_at=T0 + timedelta(minutes=10),
        sync_status="pending",
    )
    store.upsert("learning_items", local)
    remote = local.model_copy(
        update={"content": "remote wording", "review_count": 6, "updated_at": T0, "sync_status": "synced"}
    )

    outcome = applier.apply_record("learning_items", remote)

    assert outcome == "merged"
    merged = store.get("learning_items", "i1")
    assert merged.content == "local wording"
    assert merged.review_count == 6
    assert merged.sync_status == "pending"
    assert [event.payload["source"] for event in events if event.name == "sync_conflict_resolved"] == [
        "remote_change"
    ]


def test_append_only_rows_are_never_overwritten(applier, store) -> None:
    session = ReviewSession(
        id="r1",
        user_id="u1",
        learning_item_id="i1",
        difficulty="good",
        next_review_at=T0 + timedelta(days=2),
        interval_days=2,
        updated_at=T0,
    )
    store.upsert("review_sessions", session)

    outcome = applier.apply_record(
        "review_sessions", session.model_copy(update={"difficulty": "hard", "updated_at": T0 + timedelta(hours=1)})
    )

    assert outcome == "ignored"
    assert store.get("review_sessions", "r1").difficulty == "good"


def test_local_sync_bookkeeping_survives_remote_versions(applier, store) -> None:
    store.upsert("users", User(id="u1", email="ana@example.com", updated_at=T0, last_sync_at=T0))

    applier.apply_payload(
        "users",
        User(id="u1", email="ana@example.org", updated_at=T0 + timedelta(hours=1)).remote_payload(),
    )

    user = store.get_user("u1")
    assert user.email == "ana@example.org"
    assert user.last_sync_at == T0


def test_delete_removes_synced_rows_only(applier, store) -> None:
    store.upsert("topics", _topic("Biology", T0))
    assert applier.apply_delete("topics", "t1") == "removed"
    assert store.get("topics", "t1") is None

    store.upsert("topics", _topic("Biology", T0, sync_status="pending"))
    assert applier.apply_delete("topics", "t1") == "ignored"
    assert store.get("topics", "t1") is not None


def test_apply_event_routes_by_type(applier, store) -> None:
    insert = ChangeEvent.model_validate({"eventType": "INSERT", "new": _topic("Biology", T0).remote_payload()})
    assert applier.apply_event("topics", insert) == "inserted"

    delete = ChangeEvent(event_type="delete", old={"id": "t1"})
    assert applier.apply_event("topics", delete) == "removed"

    assert applier.apply_event("topics", ChangeEvent(event_type="delete", old={})) == "ignored"
    assert applier.apply_event("topics", ChangeEvent(event_type="update")) == "ignored"
