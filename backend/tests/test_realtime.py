from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from retentive_sync.errors import NetworkError
from retentive_sync.realtime import ChannelHandlers, RealtimeManager
from retentive_sync.records import Topic

CHANNEL = "topics:u1"


@pytest.fixture
def realtime(feed, cache, scheduler, applier) -> RealtimeManager:
    return RealtimeManager(feed, cache, scheduler, applier=applier)


def _topic_row(name: str = "Biology", minute: int = 0) -> dict:
    stamp = datetime(2024, 6, 1, 12, minute, tzinfo=timezone.utc)
    return Topic(id="t1", user_id="u1", name=name, updated_at=stamp).remote_payload()


def test_reconnect_backs_off_exponentially_then_gives_up(realtime, feed, scheduler) -> None:
    errors = []

    async def scenario():
        await realtime.subscribe_to_topics("u1", ChannelHandlers(on_error=errors.append))
        feed.open_errors = [NetworkError(f"refused {attempt}") for attempt in range(5)]
        feed.opened[0].on_error(NetworkError("socket closed"))
        delays = []
        while scheduler.pending_timers():
            delays.append(scheduler.fire_next().delay)
            await scheduler.run_spawned()
        return delays

    delays = asyncio.run(scenario())

    assert delays == [5, 10, 20, 40, 80]
    assert len(feed.attempts) == 6
    assert [str(error) for error in errors] == ["refused 4"]
    state = realtime.channel_state(CHANNEL)
    assert state.exhausted
    assert state.attempts == 5
    assert feed.opened[0].closed
    assert realtime.active_channels() == []


def test_successful_reconnect_resets_backoff(realtime, feed, scheduler) -> None:
    async def scenario():
        await realtime.subscribe_to_topics("u1")
        feed.opened[0].on_error(NetworkError("socket closed"))
        assert realtime.channel_state(CHANNEL).attempts == 1
        assert realtime.has_pending_reconnect(CHANNEL)
        scheduler.fire_next()
        await scheduler.run_spawned()

    asyncio.run(scenario())

    assert realtime.channel_state(CHANNEL).attempts == 0
    assert realtime.active_channels() == [CHANNEL]
    assert len(feed.live(CHANNEL)) == 1
    assert not realtime.has_pending_reconnect(CHANNEL)


def test_initial_open_failure_schedules_reconnect(realtime, feed, scheduler) -> None:
    feed.open_errors = [NetworkError("refused")]

    asyncio.run(realtime.subscribe_to_topics("u1"))

    assert [timer.delay for timer in scheduler.pending_timers()] == [5]
    assert realtime.active_channels() == []


def test_unsubscribe_cancels_pending_reconnect(realtime, feed, scheduler) -> None:
    async def scenario():
        unsubscribe = await realtime.subscribe_to_topics("u1")
        feed.opened[0].on_error(NetworkError("socket closed"))
        unsubscribe()

    asyncio.run(scenario())

    assert scheduler.pending_timers() == []
    assert not realtime.has_pending_reconnect(CHANNEL)
    assert realtime.channel_state(CHANNEL) is None


def test_duplicate_subscribe_while_opening_is_dropped(realtime, feed) -> None:
    async def scenario():
        feed.gate = asyncio.Event()
        first = asyncio.create_task(realtime.subscribe_to_topics("u1"))
        await asyncio.sleep(0)
        assert CHANNEL in realtime.subscription_locks
        await realtime.subscribe_to_topics("u1")
        feed.gate.set()
        await first

    asyncio.run(scenario())

    assert feed.attempts == [CHANNEL]
    assert len(feed.live(CHANNEL)) == 1
    assert realtime.subscription_locks == set()


def test_resubscribe_replaces_the_live_channel(realtime, feed) -> None:
    async def scenario():
        await realtime.subscribe_to_topics("u1")
        await realtime.subscribe_to_topics("u1")

    asyncio.run(scenario())

    assert len(feed.opened) == 2
    assert feed.opened[0].closed
    assert len(feed.live(CHANNEL)) == 1


def test_unsubscribe_during_open_closes_channel_when_it_arrives(realtime, feed) -> None:
    async def scenario():
        feed.gate = asyncio.Event()
        pending = asyncio.create_task(realtime.subscribe_to_topics("u1"))
        await asyncio.sleep(0)
        realtime.unsubscribe(CHANNEL)
        feed.gate.set()
        await pending

    asyncio.run(scenario())

    assert feed.opened[0].closed
    assert realtime.active_channels() == []


def test_change_event_updates_store_cache_and_handler(realtime, feed, store, cache) -> None:
    inserted = []
    cache.set("topics:u1", [{"id": "stale"}])
    asyncio.run(realtime.subscribe_to_topics("u1", ChannelHandlers(on_insert=inserted.append)))

    feed.opened[0].push("INSERT", new=_topic_row())

    assert store.get("topics", "t1").name == "Biology"
    assert store.get("topics", "t1").sync_status == "synced"
    assert cache.get("topics:u1") is None
    assert [row["id"] for row in inserted] == ["t1"]


def test_delete_event_passes_old_record(realtime, feed, store) -> None:
    deleted = []
    asyncio.run(realtime.subscribe_to_topics("u1", ChannelHandlers(on_delete=deleted.append)))
    channel = feed.opened[0]
    channel.push("insert", new=_topic_row())

    channel.push("delete", old={"id": "t1"})

    assert store.get("topics", "t1") is None
    assert deleted == [{"id": "t1"}]


def test_handler_failure_is_contained(realtime, feed, store) -> None:
    def _broken(_record):
        raise RuntimeError("ui bug")

    asyncio.run(realtime.subscribe_to_topics("u1", ChannelHandlers(on_update=_broken)))
    channel = feed.opened[0]
    channel.push("insert", new=_topic_row())

    channel.push("update", new=_topic_row(name="Cell biology", minute=5))

    assert store.get("topics", "t1").name == "Cell biology"


def test_events_from_replaced_channel_are_ignored(realtime, feed, scheduler) -> None:
    received = []

    async def scenario():
        await realtime.subscribe_to_topics("u1", ChannelHandlers(on_insert=received.append))
        feed.opened[0].on_error(NetworkError("socket closed"))
        scheduler.fire_next()
        await scheduler.run_spawned()

    asyncio.run(scenario())
    feed.opened[0].push("insert", new=_topic_row())
    assert received == []

    feed.opened[1].push("insert", new=_topic_row())
    assert len(received) == 1


def test_unsubscribe_all_closes_every_channel(realtime, feed) -> None:
    async def scenario():
        await realtime.subscribe_to_topics("u1")
        await realtime.subscribe_to_subjects("u1")
        await realtime.subscribe_to_topic_items("t1")

    asyncio.run(scenario())
    assert realtime.active_channels() == ["subjects:u1", "topic_items:t1", CHANNEL]

    realtime.unsubscribe_all()

    assert realtime.active_channels() == []
    assert all(channel.closed for channel in feed.opened)
