"""Pure backoff and staleness arithmetic for reconnects and queued operations."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

DEFAULT_BASE_DELAY_MS = 5000
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_STALE_AFTER_MS = 7 * 24 * 60 * 60 * 1000


def reconnect_delay_ms(attempt: int, base_delay_ms: int = DEFAULT_BASE_DELAY_MS) -> int:
    """Delay before reconnect attempt number `attempt` (0-based): base * 2**attempt."""
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    return base_delay_ms * (2 ** attempt)


def is_stale_operation(timestamp_ms: int, now_ms: int, stale_after_ms: int = DEFAULT_STALE_AFTER_MS) -> bool:
    return now_ms - timestamp_ms > stale_after_ms


@dataclass(frozen=True)
class ChannelState:
    """Reconnect bookkeeping for one realtime channel name."""

    name: str
    attempts: int = 0
    last_error: Optional[str] = None
    exhausted: bool = False

    def can_retry(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> bool:
        return self.attempts < max_attempts

    def next_delay_ms(self, base_delay_ms: int = DEFAULT_BASE_DELAY_MS) -> int:
        return reconnect_delay_ms(self.attempts, base_delay_ms)

    def record_failure(self, error: str) -> "ChannelState":
        return replace(self, attempts=self.attempts + 1, last_error=error)

    def mark_exhausted(self, error: str) -> "ChannelState":
        return replace(self, last_error=error, exhausted=True)

    def reset(self) -> "ChannelState":
        return ChannelState(name=self.name)


__all__ = [
    "ChannelState",
    "DEFAULT_BASE_DELAY_MS",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_STALE_AFTER_MS",
    "is_stale_operation",
    "reconnect_delay_ms",
]
