"""Pydantic schemas for synthesized insights and their convergence block."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class InsightKind(str, Enum):
    TREND = "trend"
    CONSENSUS = "consensus"
    DIVERGENCE = "divergence"
    TOOL_MENTION = "tool_mention"
    GAP = "gap"


class Priority(str, Enum):
    P0 = "p0"
    P1 = "p1"
    P2 = "p2"


class InsightPattern(str, Enum):
    """Self-declared reward category from the counsel prompt."""

    ABSENCE = "absence"
    REVERSAL = "reversal"
    CROSS_DOMAIN_SURPRISE = "cross_domain_surprise"


class Convergence(BaseModel):
    """Recomputed cross-tier diversity for one insight."""

    model_config = ConfigDict(frozen=True)

    source_count: int = 0
    sources: tuple[str, ...] = ()
    trust_tiers: dict[str, int] = Field(default_factory=dict)
    distinct_tiers: int = 0
    floor_met: bool = False
    consistent: bool = True
    note: str | None = None


class Insight(BaseModel):
    """A synthesized, typed conclusion.

    ``claimed_priority`` and ``claimed_tiers`` hold what the synthesis step
    asserted; ``convergence`` holds the recomputed block.
    """

    model_config = ConfigDict(frozen=True)

    kind: InsightKind
    topic: str
    summary: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    priority: Priority = Priority.P2
    sources: tuple[str, ...] = ()
    claimed_priority: Priority | None = None
    claimed_tiers: tuple[str, ...] = ()
    pattern: InsightPattern | None = None
    remap_note: str | None = None
    convergence: Convergence | None = None

    @property
    def is_enriched(self) -> bool:
        return self.convergence is not None
