"""Velocity stage - per-tag growth between two adjacent time windows."""
from __future__ import annotations

import asyncio
import logging
import math
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Protocol

from deeptrend.schemas.signals import VelocityScore
from deeptrend.services.pipeline_settings import VelocitySettings

logger = logging.getLogger(__name__)

HOT_TOPICS_HEADING = "### Hot Topics (velocity >50% vs previous window)"


class TagSource(Protocol):
    async def tags_in_range(self, start: datetime, end: datetime) -> list[list[str]]: ...


def count_tags(tag_lists: Iterable[Iterable[str]]) -> Counter[str]:
    counts: Counter[str] = Counter()
    for tags in tag_lists:
        for tag in tags:
            normalized = str(tag).strip().lower()
            if normalized:
                counts[normalized] += 1
    return counts


def _round_one_decimal(value: float) -> float:
    # Half-up rounding, matching the published velocity figures.
    return math.floor(value * 10 + 0.5) / 10


def score_velocity(
    current: Counter[str],
    previous: Counter[str],
    hot_threshold: float = 50.0,
) -> list[VelocityScore]:
    """Compare two window counts; topics absent from both never appear."""
    scores: list[VelocityScore] = []
    for topic in set(current) | set(previous):
        cur = current.get(topic, 0)
        prev = previous.get(topic, 0)
        if cur == 0 and prev == 0:
            continue
        if prev == 0:
            velocity = 100.0
        else:
            velocity = _round_one_decimal((cur - prev) / prev * 100)
        scores.append(
            VelocityScore(
                topic=topic,
                current_count=cur,
                previous_count=prev,
                velocity_pct=velocity,
                is_hot=velocity > hot_threshold,
            )
        )
    scores.sort(key=lambda s: (-s.velocity_pct, s.topic))
    return scores


async def compute_velocity(
    store: TagSource,
    window: timedelta | None = None,
    reference_time: datetime | None = None,
    settings: VelocitySettings | None = None,
) -> list[VelocityScore]:
    vs = settings or VelocitySettings()
    size = window or timedelta(hours=vs.window_hours)
    reference = reference_time or datetime.now(UTC)
    current_start = reference - size
    previous_start = current_start - size

    current_tags, previous_tags = await asyncio.gather(
        store.tags_in_range(current_start, reference),
        store.tags_in_range(previous_start, current_start),
    )
    scores = score_velocity(count_tags(current_tags), count_tags(previous_tags), vs.hot_threshold)
    logger.info(
        "Velocity: %d topics, %d hot (window=%s)",
        len(scores),
        sum(1 for s in scores if s.is_hot),
        size,
    )
    return scores


def _format_pct(value: float) -> str:
    text = f"{value:.1f}"
    return text[:-2] if text.endswith(".0") else text


def format_hot_topics(scores: list[VelocityScore], limit: int = 10) -> str:
    hot = [s for s in scores if s.is_hot]
    if not hot:
        return ""
    lines = [
        f'- "{s.topic}" velocity +{_format_pct(s.velocity_pct)}% ({s.previous_count} → {s.current_count} signals)'
        for s in hot[:limit]
    ]
    return f"{HOT_TOPICS_HEADING}\n" + "\n".join(lines) + "\n"
