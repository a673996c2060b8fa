"""Convergence stage - recompute cross-tier diversity for each insight.

The synthesis step's priority and tier claims are advisory. This stage
recomputes them from the cited sources and applies the p0 floor.
"""
from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable

from deeptrend.schemas.insights import Convergence, Insight, Priority
from deeptrend.services.pipeline_settings import ConvergenceSettings
from deeptrend.services.trust import TIER_DISPLAY_ORDER, TrustRegistry

logger = logging.getLogger(__name__)


def compute_convergence(
    sources: Iterable[str],
    registry: TrustRegistry,
    settings: ConvergenceSettings | None = None,
) -> Convergence:
    cs = settings or ConvergenceSettings()
    unique_sources = tuple(dict.fromkeys(sources))
    counts = Counter(registry.tier_of(source) for source in unique_sources)
    trust_tiers = {tier.value: counts[tier] for tier in TIER_DISPLAY_ORDER if counts[tier]}
    distinct = len(trust_tiers)
    return Convergence(
        source_count=len(unique_sources),
        sources=unique_sources,
        trust_tiers=trust_tiers,
        distinct_tiers=distinct,
        floor_met=len(unique_sources) >= cs.min_sources and distinct >= cs.min_tiers,
    )


def enrich(
    insight: Insight,
    registry: TrustRegistry,
    settings: ConvergenceSettings | None = None,
) -> Insight:
    """Attach the recomputed convergence block; already-enriched insights are returned as-is."""
    if insight.convergence is not None:
        return insight
    cs = settings or ConvergenceSettings()
    convergence = compute_convergence(insight.sources, registry, cs)

    notes: list[str] = []
    claimed_tiers = set(insight.claimed_tiers)
    if claimed_tiers and claimed_tiers != set(convergence.trust_tiers):
        notes.append(
            "claimed tiers [" + ", ".join(sorted(claimed_tiers)) + "] differ from recomputed ["
            + ", ".join(convergence.trust_tiers) + "]"
        )

    priority = insight.priority
    claimed_priority = insight.claimed_priority
    consistent = True
    if priority == Priority.P0 and not convergence.floor_met:
        consistent = False
        notes.append(
            f"p0 claim unsupported: {convergence.source_count} sources across "
            f"{convergence.distinct_tiers} tiers (needs {cs.min_sources}+ sources "
            f"across {cs.min_tiers}+ tiers)"
        )
        if insight.pattern is not None:
            notes.append(f"declared pattern '{insight.pattern.value}' cannot be verified from one run")
        if cs.p0_policy == "downgrade":
            priority = Priority.P1
            claimed_priority = claimed_priority or Priority.P0
            notes.append("downgraded to p1")
        logger.warning("Insight %r: %s", insight.topic, "; ".join(notes))

    convergence = convergence.model_copy(
        update={"consistent": consistent, "note": "; ".join(notes) or None}
    )
    return insight.model_copy(
        update={
            "priority": priority,
            "claimed_priority": claimed_priority,
            "convergence": convergence,
        }
    )


def enrich_all(
    insights: Iterable[Insight],
    registry: TrustRegistry,
    settings: ConvergenceSettings | None = None,
) -> list[Insight]:
    return [enrich(insight, registry, settings) for insight in insights]
