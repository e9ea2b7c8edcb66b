"""Entity records mirrored between the local store and the remote store."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator

SyncStatus = Literal["pending", "synced"]
LearningMode = Literal["ultracram", "cram", "extended", "steady", "test"]
ReviewDifficulty = Literal["again", "hard", "good", "easy"]
ArchiveStatus = Literal["active", "archived"]

# Device bookkeeping that never leaves the local store.
LOCAL_ONLY_FIELDS = frozenset({"sync_status", "last_sync_at", "remote_updated_at"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every timestamp is compared in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _UtcModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    @field_validator("*", mode="after")
    @classmethod
    def _normalize_datetimes(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value


class SyncedRecord(_UtcModel):
    id: str = Field(..., min_length=1)
    updated_at: datetime = Field(default_factory=utcnow)
    sync_status: SyncStatus = "synced"
    remote_updated_at: Optional[datetime] = None

    def already_reflects(self, remote: "SyncedRecord") -> bool:
        """True when `remote` is a version this row has already taken in, by copy or merge."""
        return remote.updated_at in (self.updated_at, self.remote_updated_at)

    def remote_payload(self) -> Dict[str, Any]:
        """JSON-ready fields for the remote store; local bookkeeping is stripped."""
        return self.model_dump(mode="json", exclude=set(LOCAL_ONLY_FIELDS))

    def local_fields(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in LOCAL_ONLY_FIELDS if name in type(self).model_fields}


class User(SyncedRecord):
    email: str
    display_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_sync_at: Optional[datetime] = None


class Subject(SyncedRecord):
    user_id: str
    name: str = Field(..., min_length=1)
    icon: Optional[str] = None
    color: Optional[str] = None
    archive_status: ArchiveStatus = "active"
    created_at: datetime = Field(default_factory=utcnow)


class Topic(SyncedRecord):
    user_id: str
    subject_id: Optional[str] = None
    name: str = Field(..., min_length=1)
    learning_mode: LearningMode = "steady"
    priority: int = Field(default=5, ge=1, le=10)
    created_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


class LearningItem(SyncedRecord):
    topic_id: str
    user_id: str
    content: str
    priority: int = Field(default=5, ge=1, le=10)
    learning_mode: LearningMode = "steady"
    review_count: int = Field(default=0, ge=0)
    last_reviewed_at: Optional[datetime] = None
    next_review_at: Optional[datetime] = None
    ease_factor: float = 2.5
    interval_days: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


class ReviewSession(SyncedRecord):
    user_id: str
    learning_item_id: str
    difficulty: ReviewDifficulty
    reviewed_at: datetime = Field(default_factory=utcnow)
    next_review_at: datetime
    interval_days: float
    points_earned: int = 0
    timing_bonus: float = 1.0
    combo_count: int = 0


class GamificationStats(SyncedRecord):
    user_id: str
    total_points: int = Field(default=0, ge=0)
    current_level: int = Field(default=1, ge=1)
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_review_date: Optional[date] = None


class DailyStats(SyncedRecord):
    user_id: str
    date: dt.date
    points_earned: int = Field(default=0, ge=0)
    reviews_completed: int = Field(default=0, ge=0)
    perfect_timing_count: int = Field(default=0, ge=0)
    items_mastered: int = Field(default=0, ge=0)


# Partial updates: the id is required, every other field is optional and
# unknown keys are rejected so typos never reach the remote store.


class _RecordUpdate(_UtcModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    updated_at: Optional[datetime] = None


class UserUpdate(_RecordUpdate):
    email: Optional[str] = None
    display_name: Optional[str] = None


class SubjectUpdate(_RecordUpdate):
    name: Optional[str] = Field(default=None, min_length=1)
    icon: Optional[str] = None
    color: Optional[str] = None
    archive_status: Optional[ArchiveStatus] = None


class TopicUpdate(_RecordUpdate):
    subject_id: Optional[str] = None
    name: Optional[str] = Field(default=None, min_length=1)
    learning_mode: Optional[LearningMode] = None
    priority: Optional[int] = Field(default=None, ge=1, le=10)
    deleted_at: Optional[datetime] = None


class LearningItemUpdate(_RecordUpdate):
    content: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=10)
    learning_mode: Optional[LearningMode] = None
    review_count: Optional[int] = Field(default=None, ge=0)
    last_reviewed_at: Optional[datetime] = None
    next_review_at: Optional[datetime] = None
    ease_factor: Optional[float] = None
    interval_days: Optional[float] = None
    deleted_at: Optional[datetime] = None


class GamificationStatsUpdate(_RecordUpdate):
    total_points: Optional[int] = Field(default=None, ge=0)
    current_level: Optional[int] = Field(default=None, ge=1)
    current_streak: Optional[int] = Field(default=None, ge=0)
    longest_streak: Optional[int] = Field(default=None, ge=0)
    last_review_date: Optional[date] = None


class DailyStatsUpdate(_RecordUpdate):
    points_earned: Optional[int] = Field(default=None, ge=0)
    reviews_completed: Optional[int] = Field(default=None, ge=0)
    perfect_timing_count: Optional[int] = Field(default=None, ge=0)
    items_mastered: Optional[int] = Field(default=None, ge=0)


@dataclass(frozen=True)
class SoftDelete:
    """How a delete is expressed for a table: a field set to a timestamp or a fixed value."""

    field: str
    value: Optional[str] = None

    def changes(self, now: datetime) -> Dict[str, Any]:
        if self.value is not None:
            return {self.field: self.value}
        return {self.field: now.isoformat()}


@dataclass(frozen=True)
class TableSchema:
    table: str
    record: Type[SyncedRecord]
    update: Optional[Type[_RecordUpdate]]
    soft_delete: Optional[SoftDelete] = None

    @property
    def append_only(self) -> bool:
        return self.update is None


TABLE_SCHEMAS: Dict[str, TableSchema] = {
    "users": TableSchema("users", User, UserUpdate),
    "subjects": TableSchema("subjects", Subject, SubjectUpdate, SoftDelete("archive_status", "archived")),
    "topics": TableSchema("topics", Topic, TopicUpdate, SoftDelete("deleted_at")),
    "learning_items": TableSchema("learning_items", LearningItem, LearningItemUpdate, SoftDelete("deleted_at")),
    "review_sessions": TableSchema("review_sessions", ReviewSession, None),
    "user_gamification_stats": TableSchema("user_gamification_stats", GamificationStats, GamificationStatsUpdate),
    "daily_stats": TableSchema("daily_stats", DailyStats, DailyStatsUpdate),
}


def get_schema(table: str) -> TableSchema:
    try:
        return TABLE_SCHEMAS[table]
    except KeyError:
        raise KeyError(f"Unknown synced table: {table}") from None


__all__ = [
    "DailyStats",
    "GamificationStats",
    "LearningItem",
    "ReviewSession",
    "SoftDelete",
    "Subject",
    "SyncStatus",
    "SyncedRecord",
    "TABLE_SCHEMAS",
    "TableSchema",
    "Topic",
    "User",
    "ensure_utc",
    "get_schema",
    "utcnow",
]
