from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone

from retentive_sync import telemetry
from retentive_sync.connectivity import ConnectivitySignal
from retentive_sync.errors import AuthError, NetworkError, RemoteValidationError
from retentive_sync.records import DailyStats, LearningItem, Topic, User
from retentive_sync.sync_audit import install_audit_listener, recent_audit_events

START = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _record_events():
    events = []
    telemetry.register_listener(events.append)
    return events


def test_drain_pushes_creates_in_order_and_marks_records_synced(data, sync_engine, remote, store) -> None:
    for name in ("Biology", "Chemistry", "Physics"):
        data.create_topic("u1", name)
    statuses = []
    sync_engine.on_sync_status_change(statuses.append)

    result = asyncio.run(sync_engine.drain())

    assert (result.succeeded, result.failed) == (3, 0)
    assert sync_engine.pending_operations_count() == 0
    assert statuses == [True, False]
    assert [call[2] for call in remote.method_calls("insert")] == ["rec-1", "rec-2", "rec-3"]
    assert all(store.get("topics", f"rec-{i}").sync_status == "synced" for i in (1, 2, 3))
    assert not sync_engine.is_syncing


def test_drain_on_empty_queue_is_a_no_op(sync_engine, remote) -> None:
    result = asyncio.run(sync_engine.sync_pending_operations())
    assert (result.succeeded, result.failed) == (0, 0)
    assert remote.calls == []


def test_drain_while_offline_leaves_queue_untouched(data, sync_engine, connectivity, remote) -> None:
    data.create_topic("u1", "Biology")
    connectivity.set_online(False)

    result = asyncio.run(sync_engine.drain())

    assert (result.succeeded, result.failed) == (0, 0)
    assert sync_engine.get_pending_operations_count() == 1
    assert remote.calls == []


def test_concurrent_drain_returns_empty_result(data, sync_engine, remote) -> None:
    data.create_topic("u1", "Biology")

    async def scenario():
        remote.gate = asyncio.Event()
        first = asyncio.create_task(sync_engine.drain())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert sync_engine.is_syncing
        second = await sync_engine.drain()
        remote.gate.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert (first.succeeded, first.failed) == (1, 0)
    assert (second.succeeded, second.failed) == (0, 0)
    assert len(remote.method_calls("insert")) == 1


def test_retryable_failure_keeps_operation_and_blocks_later_writes_to_same_record(
    data, sync_engine, remote, queue, store
) -> None:
    data.create_topic("u1", "Biology")
    data.update_topic("rec-1", {"name": "Cell biology"})
    data.create_topic("u1", "Chemistry")
    remote.failures["rec-1"] = NetworkError("connection reset")

    result = asyncio.run(sync_engine.drain())

    assert (result.succeeded, result.failed) == (1, 2)
    remaining = queue.list()
    assert [(op.type, op.record_id) for op in remaining] == [("create", "rec-1"), ("update", "rec-1")]
    assert remaining[0].retry_count == 1
    assert remaining[0].last_error == "connection reset"
    assert remaining[1].retry_count == 0
    assert store.get("topics", "rec-1").sync_status == "pending"
    assert store.get("topics", "rec-2").sync_status == "synced"
    assert remote.method_calls("update") == []


def test_retry_succeeds_on_next_cycle(data, sync_engine, remote) -> None:
    data.create_topic("u1", "Biology")
    remote.failures["rec-1"] = NetworkError("timeout")
    asyncio.run(sync_engine.drain())

    del remote.failures["rec-1"]
    result = asyncio.run(sync_engine.drain())

    assert (result.succeeded, result.failed) == (1, 0)
    assert remote.row("topics", "rec-1")["name"] == "Biology"


def test_stale_operation_is_dropped_and_reported(
    data, sync_engine, remote, queue, store, clock, session_factory
) -> None:
    install_audit_listener(session_factory)
    events = _record_events()
    issues = []
    sync_engine.on_sync_issue(issues.append)
    data.create_topic("u1", "Biology")
    clock.advance(days=8)
    remote.failures["rec-1"] = NetworkError("still unreachable")

    result = asyncio.run(sync_engine.drain())

    assert (result.succeeded, result.failed) == (0, 1)
    assert queue.pending_count() == 0
    assert store.get("topics", "rec-1").sync_status == "synced"
    assert [issue.kind for issue in issues] == ["dropped"]
    assert issues[0].operation.record_id == "rec-1"
    dropped = [event for event in events if event.name == "sync_operation_dropped"]
    assert dropped and dropped[0].payload["table"] == "topics"
    audit = recent_audit_events(session_factory)
    assert [row.event_type for row in audit] == ["sync_operation_dropped"]
    assert audit[0].payload["operation"]["data"]["name"] == "Biology"


def test_operation_under_seven_days_is_retried_not_dropped(data, sync_engine, remote, queue, clock) -> None:
    data.create_topic("u1", "Biology")
    clock.advance(days=6, hours=23)
    remote.failures["rec-1"] = NetworkError("unreachable")

    asyncio.run(sync_engine.drain())

    assert queue.pending_count() == 1
    assert queue.list()[0].retry_count == 1


def test_validation_rejection_removes_operation(data, sync_engine, remote, queue) -> None:
    issues = []
    sync_engine.on_sync_issue(issues.append)
    data.create_topic("u1", "Biology")
    data.create_topic("u1", "Chemistry")
    remote.failures["rec-1"] = RemoteValidationError("violates check constraint", status_code=422)

    result = asyncio.run(sync_engine.drain())

    assert (result.succeeded, result.failed) == (1, 1)
    assert queue.pending_count() == 0
    assert [(issue.kind, issue.operation.record_id) for issue in issues] == [("rejected", "rec-1")]


def test_auth_error_stops_the_drain(data, sync_engine, remote, queue) -> None:
    issues = []
    sync_engine.on_sync_issue(issues.append)
    data.create_topic("u1", "Biology")
    data.create_topic("u1", "Chemistry")
    remote.failures["rec-1"] = AuthError("jwt expired", status_code=401)

    result = asyncio.run(sync_engine.drain())

    assert (result.succeeded, result.failed) == (0, 1)
    assert queue.pending_count() == 2
    assert queue.list()[0].retry_count == 0
    assert len(remote.method_calls("insert")) == 1
    assert [issue.kind for issue in issues] == ["auth_required"]


def test_listener_failure_does_not_break_drain(data, sync_engine) -> None:
    def _broken(_syncing: bool) -> None:
        raise RuntimeError("listener bug")

    sync_engine.on_sync_status_change(_broken)
    data.create_topic("u1", "Biology")

    assert asyncio.run(sync_engine.drain()).succeeded == 1


def test_unsubscribed_status_listener_is_not_called(sync_engine) -> None:
    statuses = []
    unsubscribe = sync_engine.on_sync_status_change(statuses.append)
    unsubscribe()

    asyncio.run(sync_engine.drain())

    assert statuses == []


def test_update_conflict_merges_learning_item_before_sending(data, sync_engine, remote, store, clock) -> None:
    base = START - timedelta(hours=1)
    item = LearningItem(
        id="i1",
        topic_id="t1",
        user_id="u1",
        content="Krebs cycle",
        review_count=2,
        updated_at=base,
    )
    store.upsert("learning_items", item)
    remote.seed("learning_items", item.remote_payload())

    data.update_item("i1", {"review_count": 3, "content": "Krebs cycle steps"})
    remote.row("learning_items", "i1").update(
        {
            "review_count": 5,
            "ease_factor": 2.8,
            "updated_at": (START - timedelta(minutes=30)).isoformat(),
        }
    )
    clock.advance(minutes=5)

    result = asyncio.run(sync_engine.drain())

    assert (result.succeeded, result.failed) == (1, 0)
    assert len(remote.method_calls("fetch_one")) == 1
    sent = remote.row("learning_items", "i1")
    assert sent["review_count"] == 5
    assert sent["content"] == "Krebs cycle steps"
    assert sent["ease_factor"] == 2.8
    local = store.get("learning_items", "i1")
    assert local.review_count == 5
    assert local.sync_status == "synced"


def test_update_without_remote_change_sends_partial_payload(data, sync_engine, remote, store) -> None:
    topic = Topic(id="t1", user_id="u1", name="Biology", updated_at=START - timedelta(days=1))
    store.upsert("topics", topic)
    remote.seed("topics", topic.remote_payload())

    data.update_topic("t1", {"priority": 8})
    asyncio.run(sync_engine.drain())

    assert remote.row("topics", "t1")["priority"] == 8
    assert remote.row("topics", "t1")["name"] == "Biology"


def _diverged_daily_stats(data, remote, store) -> DailyStats:
    """Both devices start at 5 points; another device writes 7, this one adds 1."""
    day = date(2024, 6, 1)
    stats = DailyStats(id="d1", user_id="u1", date=day, points_earned=5, updated_at=START - timedelta(hours=1))
    store.upsert("daily_stats", stats)
    other_device = stats.model_copy(update={"points_earned": 7, "updated_at": START - timedelta(minutes=30)})
    remote.seed("daily_stats", other_device.remote_payload())
    data.increment_daily_stats("u1", day, points_earned=1)
    return other_device


def test_redelivered_remote_stats_are_merged_once(data, sync_engine, applier, remote, store, clock) -> None:
    other_device = _diverged_daily_stats(data, remote, store)

    assert applier.apply_record("daily_stats", other_device) == "merged"
    assert applier.apply_record("daily_stats", other_device) == "ignored"
    assert store.get("daily_stats", "d1").points_earned == 13

    clock.advance(minutes=5)
    result = asyncio.run(sync_engine.drain())

    assert (result.succeeded, result.failed) == (1, 0)
    assert remote.row("daily_stats", "d1")["points_earned"] == 13
    local = store.get("daily_stats", "d1")
    assert local.points_earned == 13
    assert local.sync_status == "synced"


def test_late_delivery_of_version_merged_by_drain_is_ignored(data, sync_engine, applier, remote, store, clock) -> None:
    other_device = _diverged_daily_stats(data, remote, store)
    clock.advance(minutes=5)

    asyncio.run(sync_engine.drain())
    assert remote.row("daily_stats", "d1")["points_earned"] == 13

    assert applier.apply_record("daily_stats", other_device) == "ignored"
    assert store.get("daily_stats", "d1").points_earned == 13


def test_delete_sends_soft_delete_update(data, sync_engine, remote) -> None:
    data.create_topic("u1", "Biology")
    asyncio.run(sync_engine.drain())

    data.delete_topic("rec-1")
    asyncio.run(sync_engine.drain())

    assert remote.method_calls("delete") == []
    assert remote.row("topics", "rec-1")["deleted_at"] is not None


def test_reconnect_spawns_a_drain(data, sync_engine, connectivity, scheduler, queue) -> None:
    connectivity.set_online(False)
    sync_engine.start()
    data.create_topic("u1", "Biology")

    connectivity.handle_signal(ConnectivitySignal.ONLINE)
    assert len(scheduler.spawned) == 1
    asyncio.run(scheduler.run_spawned())

    assert queue.pending_count() == 0


def test_focus_drains_only_when_operations_wait(data, sync_engine, connectivity, scheduler) -> None:
    sync_engine.start()

    connectivity.notify_focus()
    assert scheduler.spawned == []

    data.create_topic("u1", "Biology")
    connectivity.notify_focus()
    assert len(scheduler.spawned) == 1


def test_stop_detaches_from_connectivity(sync_engine, connectivity, scheduler) -> None:
    sync_engine.start()
    sync_engine.stop()
    connectivity.set_online(False)
    connectivity.set_online(True)
    assert scheduler.spawned == []


def test_pull_changes_applies_remote_rows_since_last_sync(sync_engine, remote, store, cache) -> None:
    remote.seed("topics", Topic(id="t1", user_id="u1", name="Old", updated_at=START - timedelta(days=3)).remote_payload())
    remote.seed("topics", Topic(id="t2", user_id="u1", name="New", updated_at=START - timedelta(hours=1)).remote_payload())
    remote.seed("topics", Topic(id="t3", user_id="u2", name="Other", updated_at=START).remote_payload())
    cache.set("topics:u1", [])

    result = asyncio.run(sync_engine.pull_changes("u1", since=START - timedelta(days=1)))

    assert result.applied["topics"] == 1
    assert result.total == 1
    assert store.get("topics", "t1") is None
    assert store.get("topics", "t2").sync_status == "synced"
    assert store.get("topics", "t3") is None
    assert cache.get("topics:u1") is None


def test_sync_all_stamps_last_sync_after_clean_run(sync_engine, remote, store) -> None:
    remote.seed("users", User(id="u1", email="ana@example.com", updated_at=START - timedelta(days=2)).remote_payload())

    result = asyncio.run(sync_engine.sync_all("u1"))

    assert result.pulled.applied["users"] == 1
    assert store.get_user("u1").last_sync_at == START


def test_sync_all_does_not_stamp_when_drain_fails(data, sync_engine, remote, store) -> None:
    store.upsert("users", User(id="u1", email="ana@example.com"))
    data.create_topic("u1", "Biology")
    remote.failures["rec-1"] = NetworkError("timeout")

    result = asyncio.run(sync_engine.sync_all("u1"))

    assert result.drained.failed == 1
    assert store.get_user("u1").last_sync_at is None
