from __future__ import annotations

import asyncio

import pytest

from retentive_sync.backoff import ChannelState, is_stale_operation, reconnect_delay_ms
from retentive_sync.scheduling import AsyncioScheduler

DAY_MS = 24 * 60 * 60 * 1000


def test_reconnect_delay_doubles_per_attempt() -> None:
    assert [reconnect_delay_ms(attempt) for attempt in range(5)] == [5000, 10000, 20000, 40000, 80000]
    assert reconnect_delay_ms(2, base_delay_ms=100) == 400
    with pytest.raises(ValueError):
        reconnect_delay_ms(-1)


def test_staleness_threshold_is_exclusive() -> None:
    assert not is_stale_operation(0, 7 * DAY_MS)
    assert is_stale_operation(0, 7 * DAY_MS + 1)
    assert is_stale_operation(0, 2000, stale_after_ms=1000)


def test_channel_state_transitions_are_copies() -> None:
    state = ChannelState(name="topics:u1")

    failed = state.record_failure("socket closed")

    assert state.attempts == 0
    assert failed.attempts == 1
    assert failed.last_error == "socket closed"
    assert failed.next_delay_ms() == 10000
    assert failed.reset() == ChannelState(name="topics:u1")


def test_channel_state_stops_retrying_at_the_limit() -> None:
    state = ChannelState(name="topics:u1")
    for _ in range(5):
        state = state.record_failure("refused")

    assert not state.can_retry()
    assert state.can_retry(max_attempts=6)
    assert state.mark_exhausted("refused").exhausted


def test_asyncio_scheduler_runs_spawned_work_and_timers() -> None:
    fired = []

    async def work(label: str) -> None:
        await asyncio.sleep(0)
        fired.append(label)

    async def failing() -> None:
        raise RuntimeError("background failure")

    async def scenario():
        scheduler = AsyncioScheduler()
        scheduler.spawn(work("spawned"))
        scheduler.spawn(failing())
        scheduler.call_later(0, lambda: fired.append("timer"))
        cancelled = scheduler.call_later(0, lambda: fired.append("cancelled"))
        cancelled.cancel()
        await scheduler.wait_idle()
        await asyncio.sleep(0.01)

    asyncio.run(scenario())

    assert sorted(fired) == ["spawned", "timer"]
