"""Raw signal model - one observation per (source, natural_id)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from deeptrend.models.base import Base, JSONType


class RawSignal(Base):
    __tablename__ = "raw_signals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    source: Mapped[str] = mapped_column(Text, nullable=False)
    natural_id: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    author: Mapped[str] = mapped_column(Text, nullable=False, default="")
    author_kind: Mapped[str] = mapped_column(Text, nullable=False, default="human")
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tags: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    observed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("source", "natural_id", name="uq_raw_signals_source_natural_id"),
        CheckConstraint("author_kind IN ('human','agent')", name="ck_raw_signal_author_kind"),
        CheckConstraint("weight >= 0", name="ck_raw_signal_weight"),
        Index("idx_raw_signals_source", "source"),
        Index("idx_raw_signals_observed_at", "observed_at"),
    )
