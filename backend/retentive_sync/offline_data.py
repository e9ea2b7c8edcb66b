"""Local-first write path: every mutation lands locally, queues once, invalidates the cache."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from .cache import keys
from .cache.layer import CacheLayer
from .conflict_resolver import DAILY_COUNTERS
from .errors import RecordNotFoundError
from .offline_queue import OfflineQueue
from .operations import validate_payload
from .records import (
    DailyStats,
    GamificationStats,
    LearningItem,
    ReviewSession,
    Subject,
    SyncedRecord,
    Topic,
    User,
)
from .repositories.local_records import LocalStore
from .scheduling import Clock, SystemClock

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=SyncedRecord)


def _new_id() -> str:
    return str(uuid.uuid4())


class OfflineDataService:
    """The data API the rest of the application writes through.

    Writes mark the local record `pending` and enqueue exactly one operation.
    Reads of lists go through the cache layer.
    """

    def __init__(
        self,
        store: LocalStore,
        queue: OfflineQueue,
        cache: CacheLayer,
        clock: Optional[Clock] = None,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._store = store
        self._queue = queue
        self._cache = cache
        self._clock = clock or SystemClock()
        self._new_id = id_factory

    # generic write helpers -----------------------------------------------

    def _invalidate(self, table: str) -> None:
        for pattern in keys.patterns_for_table(table):
            self._cache.invalidate_pattern(pattern)

    def _create(self, table: str, record: R) -> R:
        record = record.model_copy(update={"sync_status": "pending", "updated_at": self._clock.now()})
        payload = validate_payload("create", table, record.remote_payload())
        stored = self._store.upsert(table, record)
        self._queue.enqueue("create", table, payload)
        self._invalidate(table)
        return stored  # type: ignore[return-value]

    def _update(self, table: str, record_id: str, changes: Dict[str, Any]) -> SyncedRecord:
        current = self._store.get(table, record_id)
        if current is None:
            raise RecordNotFoundError(table, record_id)
        payload = validate_payload("update", table, {**changes, "id": record_id, "updated_at": self._clock.now()})
        updated = self._store.patch(table, record_id, payload, sync_status="pending")
        if updated is None:
            raise RecordNotFoundError(table, record_id)
        self._queue.enqueue("update", table, payload, base_updated_at=current.updated_at)
        self._invalidate(table)
        return updated

    def _delete(self, table: str, record_id: str) -> SyncedRecord:
        validate_payload("delete", table, {"id": record_id})
        deleted = self._store.soft_delete(table, record_id, self._clock.now())
        if deleted is None:
            raise RecordNotFoundError(table, record_id)
        self._queue.enqueue("delete", table, {"id": record_id})
        self._invalidate(table)
        return deleted

    def _cached_list(self, key: str, model: Type[R], loader: Callable[[], List[R]]) -> List[R]:
        cached = self._cache.get(key)
        if cached is not None:
            return [model.model_validate(item) for item in cached]
        records = loader()
        self._cache.set(key, [record.model_dump(mode="json") for record in records])
        return records

    # users ---------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[User]:
        return self._store.get_user(user_id)

    def upsert_user(self, user_id: str, email: str, display_name: Optional[str] = None) -> User:
        if self._store.get_user(user_id) is None:
            return self._create("users", User(id=user_id, email=email, display_name=display_name))
        return self._update("users", user_id, {"email": email, "display_name": display_name})  # type: ignore[return-value]

    # subjects ------------------------------------------------------------

    def list_subjects(self, user_id: str) -> List[Subject]:
        return self._cached_list(keys.subjects_key(user_id), Subject, lambda: self._store.list_subjects(user_id))

    def create_subject(self, user_id: str, name: str, **fields: Any) -> Subject:
        return self._create("subjects", Subject(id=self._new_id(), user_id=user_id, name=name, **fields))

    def update_subject(self, subject_id: str, changes: Dict[str, Any]) -> Subject:
        return self._update("subjects", subject_id, changes)  # type: ignore[return-value]

    def archive_subject(self, subject_id: str) -> Subject:
        return self._delete("subjects", subject_id)  # type: ignore[return-value]

    # topics --------------------------------------------------------------

    def list_topics(self, user_id: str) -> List[Topic]:
        return self._cached_list(keys.topics_key(user_id), Topic, lambda: self._store.list_topics(user_id))

    def get_topic(self, topic_id: str) -> Optional[Topic]:
        return self._store.get("topics", topic_id)  # type: ignore[return-value]

    def create_topic(self, user_id: str, name: str, **fields: Any) -> Topic:
        return self._create("topics", Topic(id=self._new_id(), user_id=user_id, name=name, **fields))

    def update_topic(self, topic_id: str, changes: Dict[str, Any]) -> Topic:
        return self._update("topics", topic_id, changes)  # type: ignore[return-value]

    def delete_topic(self, topic_id: str) -> Topic:
        """Soft-delete the topic and every live item under it, one queued delete each."""
        if self.get_topic(topic_id) is None:
            raise RecordNotFoundError("topics", topic_id)
        for item in self._store.list_items(topic_id=topic_id):
            self._delete("learning_items", item.id)
        return self._delete("topics", topic_id)  # type: ignore[return-value]

    # learning items ------------------------------------------------------

    def list_items(self, *, topic_id: Optional[str] = None, user_id: Optional[str] = None) -> List[LearningItem]:
        if topic_id is not None:
            key = keys.topic_items_key(topic_id)
        elif user_id is not None:
            key = keys.user_items_key(user_id)
        else:
            raise ValueError("list_items needs a topic_id or a user_id")
        return self._cached_list(
            key,
            LearningItem,
            lambda: self._store.list_items(topic_id=topic_id, user_id=user_id),
        )

    def get_item(self, item_id: str) -> Optional[LearningItem]:
        return self._store.get("learning_items", item_id)  # type: ignore[return-value]

    def create_item(self, topic_id: str, user_id: str, content: str, **fields: Any) -> LearningItem:
        item = LearningItem(id=self._new_id(), topic_id=topic_id, user_id=user_id, content=content, **fields)
        return self._create("learning_items", item)

    def update_item(self, item_id: str, changes: Dict[str, Any]) -> LearningItem:
        return self._update("learning_items", item_id, changes)  # type: ignore[return-value]

    def delete_item(self, item_id: str) -> LearningItem:
        return self._delete("learning_items", item_id)  # type: ignore[return-value]

    # reviews -------------------------------------------------------------

    def list_reviews(self, user_id: str) -> List[ReviewSession]:
        return self._cached_list(keys.reviews_key(user_id), ReviewSession, lambda: self._store.list_reviews(user_id))

    def record_review(
        self,
        user_id: str,
        item_id: str,
        difficulty: str,
        *,
        next_review_at: datetime,
        interval_days: float,
        ease_factor: Optional[float] = None,
        points_earned: int = 0,
        timing_bonus: float = 1.0,
        combo_count: int = 0,
    ) -> ReviewSession:
        """Append a review session and move the item's schedule forward.

        The schedule values are produced by the caller's spaced-repetition
        algorithm and stored as given.
        """
        item = self.get_item(item_id)
        if item is None:
            raise RecordNotFoundError("learning_items", item_id)
        now = self._clock.now()
        session = self._create(
            "review_sessions",
            ReviewSession(
                id=self._new_id(),
                user_id=user_id,
                learning_item_id=item_id,
                difficulty=difficulty,  # type: ignore[arg-type]
                reviewed_at=now,
                next_review_at=next_review_at,
                interval_days=interval_days,
                points_earned=points_earned,
                timing_bonus=timing_bonus,
                combo_count=combo_count,
            ),
        )
        changes: Dict[str, Any] = {
            "review_count": item.review_count + 1,
            "last_reviewed_at": now,
            "next_review_at": next_review_at,
            "interval_days": interval_days,
        }
        if ease_factor is not None:
            changes["ease_factor"] = ease_factor
        self.update_item(item_id, changes)
        return session

    # gamification --------------------------------------------------------

    def get_gamification_stats(self, user_id: str) -> Optional[GamificationStats]:
        return self._store.get_gamification_stats(user_id)

    def save_gamification_stats(self, user_id: str, **values: Any) -> GamificationStats:
        current = self._store.get_gamification_stats(user_id)
        if current is None:
            return self._create(
                "user_gamification_stats",
                GamificationStats(id=self._new_id(), user_id=user_id, **values),
            )
        return self._update("user_gamification_stats", current.id, values)  # type: ignore[return-value]

    # daily stats ---------------------------------------------------------

    def get_daily_stats(self, user_id: str, day: date) -> Optional[DailyStats]:
        return self._store.get_daily_stats(user_id, day)

    def increment_daily_stats(self, user_id: str, day: date, **increments: int) -> DailyStats:
        unknown = set(increments) - set(DAILY_COUNTERS)
        if unknown:
            raise ValueError(f"Unknown daily counters: {', '.join(sorted(unknown))}")
        current = self._store.get_daily_stats(user_id, day)
        if current is None:
            return self._create(
                "daily_stats",
                DailyStats(id=self._new_id(), user_id=user_id, date=day, **increments),
            )
        totals = {name: getattr(current, name) + amount for name, amount in increments.items()}
        return self._update("daily_stats", current.id, totals)  # type: ignore[return-value]

    def pending_count(self) -> int:
        return self._queue.pending_count()


__all__ = ["OfflineDataService"]
