"""Local store schema: mirrored entity tables, key/value entries and the sync audit trail."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20260901_01_local_store"
down_revision = None
branch_labels = None
depends_on = None


def _sync_columns() -> list[sa.Column]:
    return [
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("sync_status", sa.String(length=16), nullable=False, server_default="synced"),
    ]


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=True),
        _created_at(),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        *_sync_columns(),
    )

    op.create_table(
        "subjects",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("icon", sa.String(length=64), nullable=True),
        sa.Column("color", sa.String(length=32), nullable=True),
        sa.Column("archive_status", sa.String(length=16), nullable=False, server_default="active"),
        _created_at(),
        *_sync_columns(),
    )
    op.create_index("ix_subjects_user_id", "subjects", ["user_id"])

    op.create_table(
        "topics",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("subject_id", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("learning_mode", sa.String(length=32), nullable=False, server_default="steady"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        _created_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_sync_columns(),
    )
    op.create_index("ix_topics_user_id", "topics", ["user_id"])

    op.create_table(
        "learning_items",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("topic_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("learning_mode", sa.String(length=32), nullable=False, server_default="steady"),
        sa.Column("review_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_review_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ease_factor", sa.Float(), nullable=False, server_default="2.5"),
        sa.Column("interval_days", sa.Float(), nullable=False, server_default="0"),
        _created_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_sync_columns(),
    )
    op.create_index("ix_learning_items_user_id", "learning_items", ["user_id"])
    op.create_index("ix_learning_items_topic_id", "learning_items", ["topic_id"])
    op.create_index("ix_learning_items_next_review", "learning_items", ["user_id", "next_review_at"])

    op.create_table(
        "review_sessions",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("learning_item_id", sa.String(length=64), nullable=False),
        sa.Column("difficulty", sa.String(length=16), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_review_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("interval_days", sa.Float(), nullable=False),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("timing_bonus", sa.Float(), nullable=False, server_default="1"),
        sa.Column("combo_count", sa.Integer(), nullable=False, server_default="0"),
        *_sync_columns(),
    )
    op.create_index("ix_review_sessions_user_id", "review_sessions", ["user_id"])
    op.create_index("ix_review_sessions_item_id", "review_sessions", ["learning_item_id"])

    op.create_table(
        "user_gamification_stats",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_review_date", sa.Date(), nullable=True),
        *_sync_columns(),
    )

    op.create_table(
        "daily_stats",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reviews_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("perfect_timing_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_mastered", sa.Integer(), nullable=False, server_default="0"),
        *_sync_columns(),
        sa.UniqueConstraint("user_id", "date", name="uq_daily_stats_user_date"),
    )

    op.create_table(
        "kv_entries",
        sa.Column("key", sa.String(length=255), primary_key=True, nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )

    op.create_table(
        "sync_audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("operation_id", sa.String(length=64), nullable=True),
        sa.Column("table_name", sa.String(length=64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_sync_audit_events_created_at", "sync_audit_events", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_sync_audit_events_created_at", table_name="sync_audit_events")
    op.drop_table("sync_audit_events")
    op.drop_table("kv_entries")
    op.drop_table("daily_stats")
    op.drop_table("user_gamification_stats")
    op.drop_index("ix_review_sessions_item_id", table_name="review_sessions")
    op.drop_index("ix_review_sessions_user_id", table_name="review_sessions")
    op.drop_table("review_sessions")
    op.drop_index("ix_learning_items_next_review", table_name="learning_items")
    op.drop_index("ix_learning_items_topic_id", table_name="learning_items")
    op.drop_index("ix_learning_items_user_id", table_name="learning_items")
    op.drop_table("learning_items")
    op.drop_index("ix_topics_user_id", table_name="topics")
    op.drop_table("topics")
    op.drop_index("ix_subjects_user_id", table_name="subjects")
    op.drop_table("subjects")
    op.drop_table("users")
