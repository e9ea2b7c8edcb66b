"""Track the remote version folded into each synced row.

Revision ID: 20261019_01_remote_version
Revises: 20260901_01_local_store
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision = "20261019_01_remote_version"
down_revision = "20260901_01_local_store"
branch_labels = None
depends_on = None

SYNCED_TABLES = (
    "users",
    "subjects",
    "topics",
    "learning_items",
    "review_sessions",
    "user_gamification_stats",
    "daily_stats",
)


def upgrade() -> None:
    for table in SYNCED_TABLES:
        with op.batch_alter_table(table) as batch_op:
            batch_op.add_column(sa.Column("remote_updated_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    for table in reversed(SYNCED_TABLES):
        with op.batch_alter_table(table) as batch_op:
            batch_op.drop_column("remote_updated_at")
