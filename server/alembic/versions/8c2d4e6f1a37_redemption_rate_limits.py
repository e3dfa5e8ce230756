"""redemption_rate_limits

Revision ID: 8c2d4e6f1a37
Revises: 3f1c9a7e2b10
Create Date: 2026-10-18 12:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "8c2d4e6f1a37"
down_revision = "3f1c9a7e2b10"
branch_labels = None
depends_on = None


def upgrade() -> None:
    _ = op.create_table(
        "redemption_rate_limits",
        sa.Column("key", sa.String(length=512), nullable=False),
        sa.Column("failures", sa.Integer(), nullable=False),
        sa.Column("reset_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "failures >= 0", name="ck_redemption_rate_limits_failures_non_negative"
        ),
        sa.PrimaryKeyConstraint("key", name="pk_redemption_rate_limits"),
    )
    op.create_index(
        "ix_redemption_rate_limits_reset_at", "redemption_rate_limits", ["reset_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_redemption_rate_limits_reset_at", table_name="redemption_rate_limits")
    op.drop_table("redemption_rate_limits")
