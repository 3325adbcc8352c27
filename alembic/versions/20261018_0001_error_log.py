"""Create error log table."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "error_log",
        sa.Column("record_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("context_json", sa.Text(), server_default="{}", nullable=False),
        sa.PrimaryKeyConstraint("record_id"),
    )
    op.create_index("ix_error_log_source", "error_log", ["source"])
    op.create_index("idx_error_log_category_created", "error_log", ["category", "created_at"])


def downgrade() -> None:
    op.drop_table("error_log")
