"""Connectivity and focus signals consumed by the sync engine."""

from __future__ import annotations

import asyncio
import enum
import logging
from threading import RLock
from typing import Awaitable, Callable, List, Protocol

logger = logging.getLogger(__name__)


class ConnectivitySignal(str, enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    FOCUS = "focus"


SignalListener = Callable[[ConnectivitySignal], None]
Probe = Callable[[], Awaitable[bool]]


class ConnectivityObserver(Protocol):
    @property
    def is_online(self) -> bool:  # pragma: no cover - protocol definition
        ...

    def subscribe(self, listener: SignalListener) -> Callable[[], None]:  # pragma: no cover
        ...


class ConnectivityMonitor:
    """Tracks the online flag and fans signals out to subscribers.

    ONLINE and OFFLINE are only emitted on transitions; FOCUS is always emitted.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: List[SignalListener] = []
        self._lock = RLock()

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: SignalListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        self._emit(ConnectivitySignal.ONLINE if online else ConnectivitySignal.OFFLINE)

    def notify_focus(self) -> None:
        self._emit(ConnectivitySignal.FOCUS)

    def handle_signal(self, signal: ConnectivitySignal) -> None:
        if signal is ConnectivitySignal.FOCUS:
            self.notify_focus()
        else:
            self.set_online(signal is ConnectivitySignal.ONLINE)

    def _emit(self, signal: ConnectivitySignal) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(signal)
            except Exception:  # noqa: BLE001
                logger.exception("Connectivity listener failed for %s", signal.value)

    async def watch(self, probe: Probe, interval_seconds: float = 15.0) -> None:
        """Poll `probe` until cancelled, flipping state on transitions."""
        while True:
            try:
                reachable = await probe()
            except Exception as exc:  # noqa: BLE001
                logger.debug("Connectivity probe failed: %s", exc)
                reachable = False
            self.set_online(bool(reachable))
            await asyncio.sleep(interval_seconds)


__all__ = [
    "ConnectivityMonitor",
    "ConnectivityObserver",
    "ConnectivitySignal",
    "Probe",
    "SignalListener",
]
