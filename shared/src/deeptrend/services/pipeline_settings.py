"""Pipeline settings service -- typed Pydantic models backed by an optional JSON overrides file."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from deeptrend.errors import ConfigurationError

logger = logging.getLogger(__name__)

ALL_INSIGHT_KINDS = ["trend", "consensus", "divergence", "tool_mention", "gap"]


class VelocitySettings(BaseModel):
    window_hours: float = Field(default=4.0, gt=0)
    hot_threshold: float = 50.0
    hot_display_limit: int = Field(default=10, ge=1)


class CompilerSettings(BaseModel):
    top_tags: int = Field(default=3, ge=1)
    target_insights_min: int = 8
    target_insights_max: int = 12
    max_per_topic_area: int = 2
    max_p0: int = 3


class ValidationSettings(BaseModel):
    supported_kinds: list[str] = Field(default_factory=lambda: list(ALL_INSIGHT_KINDS))
    summary_max_chars: int = 1200


class ConvergenceSettings(BaseModel):
    min_sources: int = 3
    min_tiers: int = 3
    p0_policy: Literal["downgrade", "flag"] = "downgrade"


class IngestionSettings(BaseModel):
    rss_timeout: float = 15.0
    max_per_feed: int = 50
    user_agent: str = "deeptrend/0.3.0"


class AnalysisSettings(BaseModel):
    lookback_hours: float = 24.0
    signal_limit: int = Field(default=500, ge=1)
    use_llm_knowledge: bool = True


class PipelineSettings(BaseModel):
    velocity: VelocitySettings = Field(default_factory=VelocitySettings)
    compiler: CompilerSettings = Field(default_factory=CompilerSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    convergence: ConvergenceSettings = Field(default_factory=ConvergenceSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)


def merge_overrides(overrides: dict[str, Any]) -> PipelineSettings:
    """Merge flat or nested overrides into the defaults.

    Keys use dotted paths like ``pipeline.velocity.window_hours``; nested
    dicts such as ``{"velocity": {"window_hours": 2}}`` are accepted too.
    """
    grouped: dict[str, Any] = {}
    for raw_key, value in overrides.items():
        key = raw_key
        if key.startswith("pipeline."):
            key = key[len("pipeline."):]
        parts = key.split(".")
        if len(parts) == 2:
            group, field = parts
            grouped.setdefault(group, {})[field] = value
        elif len(parts) == 1 and isinstance(value, dict):
            grouped.setdefault(parts[0], {}).update(value)
        else:
            logger.warning("Ignoring unrecognized pipeline setting key: %s", raw_key)

    merged = PipelineSettings().model_dump()
    for group, fields in grouped.items():
        if group in merged and isinstance(fields, dict):
            merged[group].update(fields)
        else:
            logger.warning("Ignoring unknown pipeline settings group: %s", group)

    try:
        return PipelineSettings(**merged)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid pipeline settings: {exc}") from exc


def load_pipeline_settings(path: str | Path | None = None) -> PipelineSettings:
    """Load pipeline settings from a JSON overrides file, merged with defaults."""
    if not path:
        return PipelineSettings()
    settings_path = Path(path)
    if not settings_path.exists():
        raise ConfigurationError(f"Pipeline settings file not found: {settings_path}")
    try:
        data = json.loads(settings_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid pipeline settings file {settings_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Pipeline settings file {settings_path} must contain an object")
    return merge_overrides(data)

