"""Deterministic merge policies for records that diverged between devices.

Each resolver takes the local and remote version of one record and returns the
merged record. None of them perform I/O or read the clock; `resolve_learning_item`
receives the merge time explicitly so identical inputs give identical output.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Dict, Optional, TypeVar

from .records import (
    DailyStats,
    GamificationStats,
    LearningItem,
    Subject,
    SyncedRecord,
    Topic,
    User,
    ensure_utc,
)

R = TypeVar("R", bound=SyncedRecord)
D = TypeVar("D", date, datetime)

Resolver = Callable[[SyncedRecord, SyncedRecord, datetime], SyncedRecord]

STATS_COUNTERS = ("total_points", "current_level", "current_streak", "longest_streak")
DAILY_COUNTERS = ("points_earned", "reviews_completed", "perfect_timing_count", "items_mastered")


def _latest(left: Optional[D], right: Optional[D]) -> Optional[D]:
    if left is None:
        return right
    if right is None:
        return left
    return max(left, right)


def last_write_wins(local: R, remote: R) -> R:
    """The record with the later `updated_at` wins in full; ties go to remote."""
    if local.updated_at > remote.updated_at:
        return local
    return remote


def resolve_topic(local: Topic, remote: Topic) -> Topic:
    return last_write_wins(local, remote)


def resolve_subject(local: Subject, remote: Subject) -> Subject:
    return last_write_wins(local, remote)


def resolve_user(local: User, remote: User) -> User:
    return last_write_wins(local, remote)


def _merge_next_review(local: Optional[datetime], remote: Optional[datetime], now: datetime) -> Optional[datetime]:
    if local is None or remote is None:
        return local or remote
    if local > now and remote > now:
        # Soonest due wins so neither device misses a review.
        return min(local, remote)
    return max(local, remote)


def resolve_learning_item(local: LearningItem, remote: LearningItem, now: datetime) -> LearningItem:
    """Field-level merge of two versions of one learning item.

    * content and the other descriptive fields follow last-write-wins.
    * review_count never regresses.
    * last_reviewed_at takes the later value.
    * next_review_at takes the earlier value when both are still ahead of
      `now`, otherwise the later one.
    * ease_factor and interval_days come from the remote record.
    * a soft delete on either side survives the merge.
    """
    now = ensure_utc(now)
    winner = last_write_wins(local, remote)
    return winner.model_copy(
        update={
            "review_count": max(local.review_count, remote.review_count),
            "last_reviewed_at": _latest(local.last_reviewed_at, remote.last_reviewed_at),
            "next_review_at": _merge_next_review(local.next_review_at, remote.next_review_at, now),
            "ease_factor": remote.ease_factor,
            "interval_days": remote.interval_days,
            "deleted_at": _latest(local.deleted_at, remote.deleted_at),
            "updated_at": now,
            "sync_status": local.sync_status,
        }
    )


def resolve_gamification_stats(local: GamificationStats, remote: GamificationStats) -> GamificationStats:
    merged = {field: max(getattr(local, field), getattr(remote, field)) for field in STATS_COUNTERS}
    merged["last_review_date"] = _latest(local.last_review_date, remote.last_review_date)
    merged["updated_at"] = max(local.updated_at, remote.updated_at)
    return local.model_copy(update=merged)


def resolve_daily_stats(local: DailyStats, remote: DailyStats) -> DailyStats:
    """Counters are summed: both devices may have done work on the same day."""
    merged = {field: getattr(local, field) + getattr(remote, field) for field in DAILY_COUNTERS}
    merged["updated_at"] = max(local.updated_at, remote.updated_at)
    return local.model_copy(update=merged)


def _ignore_now(func: Callable[[R, R], R]) -> Resolver:
    def resolver(local: SyncedRecord, remote: SyncedRecord, now: datetime) -> SyncedRecord:
        return func(local, remote)  # type: ignore[arg-type]

    resolver.__name__ = func.__name__
    return resolver


# review_sessions is append-only and has no resolver.
RESOLVERS: Dict[str, Resolver] = {
    "users": _ignore_now(resolve_user),
    "subjects": _ignore_now(resolve_subject),
    "topics": _ignore_now(resolve_topic),
    "learning_items": resolve_learning_item,  # type: ignore[dict-item]
    "user_gamification_stats": _ignore_now(resolve_gamification_stats),
    "daily_stats": _ignore_now(resolve_daily_stats),
}


def resolve(table: str, local: SyncedRecord, remote: SyncedRecord, now: datetime) -> SyncedRecord:
    try:
        resolver = RESOLVERS[table]
    except KeyError:
        raise KeyError(f"No conflict resolver registered for {table}") from None
    return resolver(local, remote, now)


__all__ = [
    "DAILY_COUNTERS",
    "RESOLVERS",
    "Resolver",
    "STATS_COUNTERS",
    "last_write_wins",
    "resolve",
    "resolve_daily_stats",
    "resolve_gamification_stats",
    "resolve_learning_item",
    "resolve_subject",
    "resolve_topic",
    "resolve_user",
]
