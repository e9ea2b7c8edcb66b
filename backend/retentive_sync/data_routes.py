"""Local-first data endpoints: reads come from the local store, writes are queued for sync."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, ValidationError

from .context import SyncContext, get_context
from .errors import OperationValidationError, RecordNotFoundError
from .records import LearningItem, LearningMode, ReviewDifficulty, ReviewSession, Topic

router = APIRouter(prefix="/api/data", tags=["data"])
logger = logging.getLogger(__name__)


class TopicCreateRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    subject_id: Optional[str] = None
    learning_mode: LearningMode = "steady"
    priority: int = Field(default=5, ge=1, le=10)


class ItemCreateRequest(BaseModel):
    topic_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    priority: int = Field(default=5, ge=1, le=10)
    learning_mode: LearningMode = "steady"


class ReviewCreateRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    learning_item_id: str = Field(..., min_length=1)
    difficulty: ReviewDifficulty
    next_review_at: datetime
    interval_days: float = Field(..., ge=0)
    ease_factor: Optional[float] = None
    points_earned: int = Field(default=0, ge=0)
    timing_bonus: float = 1.0
    combo_count: int = Field(default=0, ge=0)


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (OperationValidationError, ValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc


@router.get("/topics", response_model=List[Topic])
def list_topics(user_id: str = Query(..., min_length=1), context: SyncContext = Depends(get_context)) -> List[Topic]:
    return context.data.list_topics(user_id)


@router.post("/topics", response_model=Topic, status_code=status.HTTP_201_CREATED)
def create_topic(payload: TopicCreateRequest, context: SyncContext = Depends(get_context)) -> Topic:
    with _translate_errors():
        fields = payload.model_dump(exclude={"user_id", "name"})
        return context.data.create_topic(payload.user_id, payload.name, **fields)


@router.patch("/topics/{topic_id}", response_model=Topic)
def update_topic(
    topic_id: str,
    changes: Dict[str, Any] = Body(...),
    context: SyncContext = Depends(get_context),
) -> Topic:
    with _translate_errors():
        return context.data.update_topic(topic_id, changes)


@router.delete("/topics/{topic_id}", response_model=Topic)
def delete_topic(topic_id: str, context: SyncContext = Depends(get_context)) -> Topic:
    with _translate_errors():
        return context.data.delete_topic(topic_id)


@router.get("/items", response_model=List[LearningItem])
def list_items(
    topic_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    context: SyncContext = Depends(get_context),
) -> List[LearningItem]:
    if topic_id is None and user_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="topic_id or user_id is required.")
    return context.data.list_items(topic_id=topic_id, user_id=user_id)


@router.post("/items", response_model=LearningItem, status_code=status.HTTP_201_CREATED)
def create_item(payload: ItemCreateRequest, context: SyncContext = Depends(get_context)) -> LearningItem:
    with _translate_errors():
        if context.data.get_topic(payload.topic_id) is None:
            raise RecordNotFoundError("topics", payload.topic_id)
        return context.data.create_item(
            payload.topic_id,
            payload.user_id,
            payload.content,
            priority=payload.priority,
            learning_mode=payload.learning_mode,
        )


@router.patch("/items/{item_id}", response_model=LearningItem)
def update_item(
    item_id: str,
    changes: Dict[str, Any] = Body(...),
    context: SyncContext = Depends(get_context),
) -> LearningItem:
    with _translate_errors():
        return context.data.update_item(item_id, changes)


@router.delete("/items/{item_id}", response_model=LearningItem)
def delete_item(item_id: str, context: SyncContext = Depends(get_context)) -> LearningItem:
    with _translate_errors():
        return context.data.delete_item(item_id)


@router.post("/reviews", response_model=ReviewSession, status_code=status.HTTP_201_CREATED)
def record_review(payload: ReviewCreateRequest, context: SyncContext = Depends(get_context)) -> ReviewSession:
    with _translate_errors():
        return context.data.record_review(
            payload.user_id,
            payload.learning_item_id,
            payload.difficulty,
            next_review_at=payload.next_review_at,
            interval_days=payload.interval_days,
            ease_factor=payload.ease_factor,
            points_earned=payload.points_earned,
            timing_bonus=payload.timing_bonus,
            combo_count=payload.combo_count,
        )


__all__ = ["router"]
