"""Insight model - one row per synthesized insight, grouped by analyzed_at."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, DateTime, Float, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from deeptrend.models.base import Base, JSONType


class InsightRecord(Base):
    __tablename__ = "insights"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    topic: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    priority: Mapped[str] = mapped_column(Text, nullable=False, default="p2")
    sources: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    claimed_priority: Mapped[str | None] = mapped_column(Text)
    claimed_tiers: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    pattern: Mapped[str | None] = mapped_column(Text)
    remap_note: Mapped[str | None] = mapped_column(Text)
    convergence: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    # Validator output order within one run.
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    analyzed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "kind IN ('trend','consensus','divergence','tool_mention','gap')",
            name="ck_insight_kind",
        ),
        CheckConstraint("priority IN ('p0','p1','p2')", name="ck_insight_priority"),
        CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_insight_confidence"
        ),
        Index("idx_insights_analyzed_at", "analyzed_at"),
        Index("idx_insights_topic", "topic"),
    )
