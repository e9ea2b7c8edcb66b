"""Realtime push channels with per-channel reconnect backoff."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .backoff import DEFAULT_BASE_DELAY_MS, DEFAULT_MAX_ATTEMPTS, ChannelState
from .cache.keys import patterns_for_table
from .cache.layer import CacheLayer
from .change_feed import ChangeEvent, ChangeFeed, ChannelHandle, ChannelSpec
from .errors import NetworkError
from .reconcile import RemoteChangeApplier
from .scheduling import Scheduler, TimerHandle
from .telemetry import emit_event

logger = logging.getLogger(__name__)

RecordCallback = Callable[[Dict[str, Any]], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class ChannelHandlers:
    on_insert: Optional[RecordCallback] = None
    on_update: Optional[RecordCallback] = None
    on_delete: Optional[RecordCallback] = None
    on_error: Optional[Callable[[Exception], None]] = None


class RealtimeManager:
    """Keeps at most one live channel per channel name.

    A subscribe for a name that is already being opened is dropped and only
    gets an unsubscribe for the first call. Channel errors schedule a
    resubscribe after `base_delay_ms * 2**attempts`; once `max_attempts`
    reconnects have failed the last error goes to `on_error` and the channel
    stays closed. Every change event is applied to the local store when an
    applier is configured, invalidates the table's cache keys and is then
    handed to the matching handler.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        cache: CacheLayer,
        scheduler: Scheduler,
        *,
        applier: Optional[RemoteChangeApplier] = None,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self._feed = feed
        self._cache = cache
        self._scheduler = scheduler
        self._applier = applier
        self._base_delay_ms = base_delay_ms
        self._max_attempts = max_attempts
        self._channels: Dict[str, ChannelHandle] = {}
        self._subscriptions: Dict[str, Tuple[ChannelSpec, ChannelHandlers]] = {}
        self._states: Dict[str, ChannelState] = {}
        self._timers: Dict[str, TimerHandle] = {}
        self._generations: Dict[str, int] = {}
        self.subscription_locks: Set[str] = set()
        self._aborted: Set[str] = set()

    # public subscribe surface ------------------------------------------

    async def subscribe_to_topics(self, user_id: str, handlers: Optional[ChannelHandlers] = None) -> Unsubscribe:
        return await self.subscribe(ChannelSpec(f"topics:{user_id}", "topics", "user_id", user_id), handlers)

    async def subscribe_to_subjects(self, user_id: str, handlers: Optional[ChannelHandlers] = None) -> Unsubscribe:
        return await self.subscribe(ChannelSpec(f"subjects:{user_id}", "subjects", "user_id", user_id), handlers)

    async def subscribe_topic(self, topic_id: str, handlers: Optional[ChannelHandlers] = None) -> Unsubscribe:
        return await self.subscribe(ChannelSpec(f"topic:{topic_id}", "topics", "id", topic_id), handlers)

    async def subscribe_to_topic_items(self, topic_id: str, handlers: Optional[ChannelHandlers] = None) -> Unsubscribe:
        spec = ChannelSpec(f"topic_items:{topic_id}", "learning_items", "topic_id", topic_id)
        return await self.subscribe(spec, handlers)

    async def subscribe_to_user_items(self, user_id: str, handlers: Optional[ChannelHandlers] = None) -> Unsubscribe:
        spec = ChannelSpec(f"user_items:{user_id}", "learning_items", "user_id", user_id)
        return await self.subscribe(spec, handlers)

    async def subscribe(self, spec: ChannelSpec, handlers: Optional[ChannelHandlers] = None) -> Unsubscribe:
        name = spec.name
        unsubscribe = partial(self.unsubscribe, name)
        if name in self.subscription_locks:
            logger.debug("Subscribe for %s already in flight; dropping duplicate", name)
            return unsubscribe
        self._cancel_timer(name)
        self._states.pop(name, None)
        self._subscriptions[name] = (spec, handlers or ChannelHandlers())
        await self._open(name)
        return unsubscribe

    def unsubscribe(self, name: str) -> None:
        self._cancel_timer(name)
        self._subscriptions.pop(name, None)
        self._states.pop(name, None)
        self._bump_generation(name)
        if name in self.subscription_locks:
            self._aborted.add(name)
        handle = self._channels.pop(name, None)
        if handle is not None:
            self._close(name, handle)
            logger.debug("Unsubscribed from %s", name)

    def unsubscribe_all(self) -> None:
        names = set(self._channels) | set(self._subscriptions) | set(self._timers) | self.subscription_locks
        for name in names:
            self.unsubscribe(name)
        self._states.clear()
        self.subscription_locks.clear()

    def active_channels(self) -> List[str]:
        return sorted(self._channels)

    def channel_state(self, name: str) -> Optional[ChannelState]:
        return self._states.get(name)

    def has_pending_reconnect(self, name: str) -> bool:
        return name in self._timers

    # channel lifecycle ---------------------------------------------------

    async def _open(self, name: str) -> None:
        subscription = self._subscriptions.get(name)
        if subscription is None or name in self.subscription_locks:
            return
        spec, _ = subscription
        self.subscription_locks.add(name)
        try:
            existing = self._channels.pop(name, None)
            if existing is not None:
                self._close(name, existing)
            generation = self._bump_generation(name)
            try:
                handle = await self._feed.open_channel(
                    spec,
                    partial(self._on_change, name, generation),
                    partial(self._on_channel_error, name, generation),
                )
            except Exception as exc:  # noqa: BLE001
                if name in self._aborted:
                    return
                self._on_channel_error(name, generation, exc)
                return
            if name in self._aborted or self._generations.get(name) != generation:
                self._close(name, handle)
                return
            self._channels[name] = handle
            self._states[name] = self._state(name).reset()
            logger.info("Subscribed to %s", name)
        finally:
            self.subscription_locks.discard(name)
            self._aborted.discard(name)

    def _reconnect(self, name: str) -> None:
        self._timers.pop(name, None)
        if name not in self._subscriptions:
            return
        self._scheduler.spawn(self._open(name))

    def _on_channel_error(self, name: str, generation: int, exc: Exception) -> None:
        if self._generations.get(name) != generation or name not in self._subscriptions:
            return
        self._bump_generation(name)
        handle = self._channels.pop(name, None)
        if handle is not None:
            self._close(name, handle)

        state = self._state(name)
        if state.can_retry(self._max_attempts):
            delay_ms = state.next_delay_ms(self._base_delay_ms)
            self._states[name] = state.record_failure(str(exc))
            self._timers[name] = self._scheduler.call_later(delay_ms / 1000, partial(self._reconnect, name))
            log = logger.debug if isinstance(exc, NetworkError) else logger.warning
            log("Channel %s failed (%s); reconnect %d in %d ms", name, exc, state.attempts + 1, delay_ms)
            emit_event("realtime_reconnect_scheduled", channel=name, attempt=state.attempts + 1, delay_ms=delay_ms)
            return

        self._states[name] = state.mark_exhausted(str(exc))
        logger.warning("Channel %s gave up after %d reconnect attempts: %s", name, state.attempts, exc)
        emit_event("realtime_channel_exhausted", channel=name, attempts=state.attempts, error=str(exc))
        _, handlers = self._subscriptions[name]
        if handlers.on_error is not None:
            try:
                handlers.on_error(exc)
            except Exception:  # noqa: BLE001
                logger.exception("Realtime error handler failed for %s", name)

    def _on_change(self, name: str, generation: int, event: ChangeEvent) -> None:
        if self._generations.get(name) != generation:
            return
        subscription = self._subscriptions.get(name)
        if subscription is None:
            return
        spec, handlers = subscription
        table = event.table or spec.table

        if self._applier is not None:
            try:
                self._applier.apply_event(table, event)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to apply %s event on %s", event.event_type, name)
        # invalidated for every event, including echoes of our own writes
        for pattern in patterns_for_table(table):
            self._cache.invalidate_pattern(pattern)

        callback: Optional[RecordCallback]
        if event.event_type == "insert":
            callback, record = handlers.on_insert, event.new
        elif event.event_type == "update":
            callback, record = handlers.on_update, event.new
        else:
            callback, record = handlers.on_delete, event.old
        if callback is None:
            return
        try:
            callback(record or {})
        except Exception:  # noqa: BLE001
            logger.exception("Realtime %s handler failed for %s", event.event_type, name)

    # helpers -------------------------------------------------------------

    def _state(self, name: str) -> ChannelState:
        return self._states.get(name) or ChannelState(name=name)

    def _bump_generation(self, name: str) -> int:
        generation = self._generations.get(name, 0) + 1
        self._generations[name] = generation
        return generation

    def _cancel_timer(self, name: str) -> None:
        timer = self._timers.pop(name, None)
        if timer is not None:
            timer.cancel()

    def _close(self, name: str, handle: ChannelHandle) -> None:
        try:
            handle.close()
        except Exception:  # noqa: BLE001
            logger.exception("Failed to close channel %s", name)


__all__ = ["ChannelHandlers", "RealtimeManager", "RecordCallback", "Unsubscribe"]
