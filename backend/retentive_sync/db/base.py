"""Declarative base and shared columns for the local store."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SyncTrackedMixin:
    """Columns every synced entity table carries."""

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    sync_status: Mapped[str] = mapped_column(String(16), default="synced", nullable=False)
    # Remote `updated_at` already reflected in this row.
    remote_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
