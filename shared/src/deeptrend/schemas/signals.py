"""Pydantic schemas for raw signals."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Signal(BaseModel):
    """One raw, timestamped observation from a source.

    ``(source, natural_id)`` is the identity key; re-ingesting the same key is
    a no-op at the store.
    """

    source: str
    natural_id: str
    title: str = ""
    body: str = ""
    url: str = ""
    author: str = ""
    author_kind: Literal["human", "agent"] = "human"
    weight: int = Field(default=0, ge=0)
    tags: list[str] = Field(default_factory=list)
    observed_at: datetime | None = None
    published_at: datetime | None = None

    @field_validator("source", "natural_id")
    @classmethod
    def _require_key(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("title", "body", "url", "author", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("author_kind", mode="before")
    @classmethod
    def _coerce_author_kind(cls, value: Any) -> str:
        kind = str(value or "human").strip().lower()
        return kind if kind in {"human", "agent"} else "human"

    @field_validator("weight", mode="before")
    @classmethod
    def _coerce_weight(cls, value: Any) -> int:
        try:
            return max(int(value), 0)
        except (TypeError, ValueError):
            return 0

    @field_validator("tags", mode="before")
    @classmethod
    def _dedupe_tags(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        seen: set[str] = set()
        tags: list[str] = []
        for item in value:
            tag = str(item).strip()
            if not tag or tag.lower() in seen:
                continue
            seen.add(tag.lower())
            tags.append(tag)
        return tags

    @field_validator("observed_at", "published_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def primary_tag(self) -> str:
        return self.tags[0] if self.tags else "general"


class ScraperResult(BaseModel):
    """Signals produced by one source, plus per-source error strings."""

    source: str
    signals: list[Signal] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class UpsertResult(BaseModel):
    inserted: int = 0
    errors: list[str] = Field(default_factory=list)


class VelocityScore(BaseModel):
    """Per-topic growth between two adjacent windows."""

    model_config = ConfigDict(frozen=True)

    topic: str
    current_count: int
    previous_count: int
    velocity_pct: float
    is_hot: bool
