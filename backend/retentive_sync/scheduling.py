"""Clock and timer abstractions injected into the sync components."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Optional, Protocol, Set

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime:  # pragma: no cover - protocol definition
        ...

    def now_ms(self) -> int:  # pragma: no cover - protocol definition
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def now_ms(self) -> int:
        return int(self.now().timestamp() * 1000)


class TimerHandle(Protocol):
    def cancel(self) -> None:  # pragma: no cover - protocol definition
        ...


class Scheduler(Protocol):
    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:  # pragma: no cover
        ...

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:  # pragma: no cover
        ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop.

    Spawned tasks are referenced until they finish so they are not garbage
    collected mid-flight; their exceptions are logged.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._tasks: Set[asyncio.Task[Any]] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._get_loop().call_later(max(delay_seconds, 0.0), callback)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = self._get_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed", exc_info=exc)

    async def wait_idle(self) -> None:
        """Wait for every spawned task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = [
    "AsyncioScheduler",
    "Clock",
    "Scheduler",
    "SystemClock",
    "TimerHandle",
]
