"""Pydantic schemas for pipeline operations."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from deeptrend.schemas.insights import Insight


class IngestionReport(BaseModel):
    """Result of one ingest command."""

    scraped: int = 0
    inserted: int = 0
    per_source: dict[str, int] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    elapsed_seconds: float = 0.0


class AnalysisReport(BaseModel):
    """Result of one analysis or research run."""

    insights: list[Insight] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    signal_count: int = 0
    source_count: int = 0
    hot_topic_count: int = 0
    stored: int = 0
    prompt_hash: str | None = None
    analyzed_at: datetime | None = None
    elapsed_seconds: float = 0.0


class PublishResult(BaseModel):
    files: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class StoreStatus(BaseModel):
    signal_count: int = 0
    insight_count: int = 0
    last_analysis: datetime | None = None
