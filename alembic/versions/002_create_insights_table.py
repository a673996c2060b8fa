"""Create insights table.

Revision ID: 002_create_insights
Revises: 001_create_raw_signals
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

revision: str = "002_create_insights"
down_revision: str | None = "001_create_raw_signals"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "insights",
        sa.Column(
            "id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("kind", sa.Text(), nullable=False),
        sa.Column("topic", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("priority", sa.Text(), nullable=False, server_default=sa.text("'p2'")),
        sa.Column("sources", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("claimed_priority", sa.Text(), nullable=True),
        sa.Column("claimed_tiers", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("pattern", sa.Text(), nullable=True),
        sa.Column("remap_note", sa.Text(), nullable=True),
        sa.Column("convergence", JSONB(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("analyzed_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "kind IN ('trend','consensus','divergence','tool_mention','gap')",
            name="ck_insight_kind",
        ),
        sa.CheckConstraint("priority IN ('p0','p1','p2')", name="ck_insight_priority"),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_insight_confidence"),
    )
    op.create_index("idx_insights_analyzed_at", "insights", ["analyzed_at"])
    op.create_index("idx_insights_topic", "insights", ["topic"])


def downgrade() -> None:
    op.drop_index("idx_insights_topic", table_name="insights")
    op.drop_index("idx_insights_analyzed_at", table_name="insights")
    op.drop_table("insights")
