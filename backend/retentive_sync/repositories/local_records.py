"""Local store repository mirroring the remote tables."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from ..db.models import (
    ENTITY_MODELS,
    DailyStatsModel,
    GamificationStatsModel,
    LearningItemModel,
    ReviewSessionModel,
    SubjectModel,
    TopicModel,
    UserModel,
)
from ..db.session import session_scope
from ..records import (
    DailyStats,
    GamificationStats,
    LearningItem,
    ReviewSession,
    Subject,
    SyncedRecord,
    SyncStatus,
    Topic,
    User,
    get_schema,
)


class LocalStore:
    """Reads and writes entity records through short-lived sessions.

    Every call commits before returning. Records cross the boundary as the
    pydantic models from `records`, never as ORM instances.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def _to_record(self, table: str, model: Any) -> SyncedRecord:
        return get_schema(table).record.model_validate(model)

    def get(self, table: str, record_id: str) -> Optional[SyncedRecord]:
        model_cls = ENTITY_MODELS[table]
        with session_scope(self._session_factory, commit=False) as session:
            model = session.get(model_cls, record_id)
            return self._to_record(table, model) if model is not None else None

    def upsert(self, table: str, record: SyncedRecord) -> SyncedRecord:
        model_cls = ENTITY_MODELS[table]
        values = record.model_dump()
        with session_scope(self._session_factory) as session:
            model = session.get(model_cls, record.id)
            if model is None:
                model = model_cls(**values)
                session.add(model)
            else:
                for field, value in values.items():
                    setattr(model, field, value)
            session.flush()
            return self._to_record(table, model)

    def patch(
        self,
        table: str,
        record_id: str,
        changes: Dict[str, Any],
        *,
        sync_status: Optional[SyncStatus] = None,
    ) -> Optional[SyncedRecord]:
        """Apply a partial update; returns None when the record does not exist."""
        schema = get_schema(table)
        if schema.update is None:
            raise ValueError(f"{table} records are append-only")
        update = schema.update.model_validate({**changes, "id": record_id})
        values = update.model_dump(exclude_unset=True, exclude={"id"})
        with session_scope(self._session_factory) as session:
            model = session.get(ENTITY_MODELS[table], record_id)
            if model is None:
                return None
            for field, value in values.items():
                setattr(model, field, value)
            if sync_status is not None:
                model.sync_status = sync_status
            session.flush()
            return self._to_record(table, model)

    def soft_delete(self, table: str, record_id: str, now: datetime) -> Optional[SyncedRecord]:
        rule = get_schema(table).soft_delete
        if rule is None:
            raise ValueError(f"{table} records cannot be deleted")
        return self.patch(table, record_id, {**rule.changes(now), "updated_at": now}, sync_status="pending")

    def remove(self, table: str, record_id: str) -> bool:
        model_cls = ENTITY_MODELS[table]
        with session_scope(self._session_factory) as session:
            result = session.execute(delete(model_cls).where(model_cls.id == record_id))
            return bool(result.rowcount)

    def set_sync_status(self, table: str, record_id: str, status: SyncStatus) -> bool:
        with session_scope(self._session_factory) as session:
            model = session.get(ENTITY_MODELS[table], record_id)
            if model is None:
                return False
            model.sync_status = status
            return True

    def list_subjects(self, user_id: str, *, include_archived: bool = False) -> List[Subject]:
        with session_scope(self._session_factory, commit=False) as session:
            stmt = select(SubjectModel).where(SubjectModel.user_id == user_id).order_by(SubjectModel.name)
            if not include_archived:
                stmt = stmt.where(SubjectModel.archive_status == "active")
            return [Subject.model_validate(model) for model in session.execute(stmt).scalars()]

    def list_topics(self, user_id: str, *, include_deleted: bool = False) -> List[Topic]:
        with session_scope(self._session_factory, commit=False) as session:
            stmt = select(TopicModel).where(TopicModel.user_id == user_id).order_by(TopicModel.created_at)
            if not include_deleted:
                stmt = stmt.where(TopicModel.deleted_at.is_(None))
            return [Topic.model_validate(model) for model in session.execute(stmt).scalars()]

    def list_items(
        self,
        *,
        topic_id: Optional[str] = None,
        user_id: Optional[str] = None,
        include_deleted: bool = False,
    ) -> List[LearningItem]:
        if topic_id is None and user_id is None:
            raise ValueError("list_items needs a topic_id or a user_id")
        with session_scope(self._session_factory, commit=False) as session:
            stmt = select(LearningItemModel).order_by(LearningItemModel.created_at)
            if topic_id is not None:
                stmt = stmt.where(LearningItemModel.topic_id == topic_id)
            if user_id is not None:
                stmt = stmt.where(LearningItemModel.user_id == user_id)
            if not include_deleted:
                stmt = stmt.where(LearningItemModel.deleted_at.is_(None))
            return [LearningItem.model_validate(model) for model in session.execute(stmt).scalars()]

    def list_reviews(self, user_id: str, *, learning_item_id: Optional[str] = None) -> List[ReviewSession]:
        with session_scope(self._session_factory, commit=False) as session:
            stmt = (
                select(ReviewSessionModel)
                .where(ReviewSessionModel.user_id == user_id)
                .order_by(ReviewSessionModel.reviewed_at)
            )
            if learning_item_id is not None:
                stmt = stmt.where(ReviewSessionModel.learning_item_id == learning_item_id)
            return [ReviewSession.model_validate(model) for model in session.execute(stmt).scalars()]

    def get_gamification_stats(self, user_id: str) -> Optional[GamificationStats]:
        with session_scope(self._session_factory, commit=False) as session:
            stmt = select(GamificationStatsModel).where(GamificationStatsModel.user_id == user_id)
            model = session.execute(stmt).scalar_one_or_none()
            return GamificationStats.model_validate(model) if model is not None else None

    def get_daily_stats(self, user_id: str, day: date) -> Optional[DailyStats]:
        with session_scope(self._session_factory, commit=False) as session:
            stmt = select(DailyStatsModel).where(DailyStatsModel.user_id == user_id, DailyStatsModel.date == day)
            model = session.execute(stmt).scalar_one_or_none()
            return DailyStats.model_validate(model) if model is not None else None

    def get_user(self, user_id: str) -> Optional[User]:
        with session_scope(self._session_factory, commit=False) as session:
            model = session.get(UserModel, user_id)
            return User.model_validate(model) if model is not None else None

    def stamp_last_sync(self, user_id: str, when: datetime) -> bool:
        """Record a completed sync; local bookkeeping only, never queued."""
        with session_scope(self._session_factory) as session:
            model = session.get(UserModel, user_id)
            if model is None:
                return False
            model.last_sync_at = when
            return True


__all__ = ["LocalStore"]
