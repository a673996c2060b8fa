"""Analysis prompt compiler.

Turns a batch of signals, velocity scores and optional model knowledge into
one bounded instruction text. Signals are compressed to per-source,
per-primary-tag aggregates so raw volume never dominates the prompt.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from deeptrend.schemas.signals import Signal, VelocityScore
from deeptrend.services.pipeline_settings import CompilerSettings
from deeptrend.services.trust import TrustRegistry, TrustTier

from pipeline.stages.velocity_stage import format_hot_topics

ANTI_NOISE_HEADING = "## Anti-Noise Filter"

PRIORITY_RULE = (
    "Volume alone never implies top priority. A topic qualifies for p0 only when it "
    "converges across 3+ distinct trust tiers on something an expert reader would not "
    "already know. p1: two distinct tiers, or a single high-confidence expert or primary "
    "source. p2: everything else worth monitoring."
)

KNOWLEDGE_HEADING = "## Model Knowledge (time-uncertain)"

KNOWLEDGE_PROMPT = """List the 5-10 most significant AI/tech developments you're aware of from your training data that are relevant RIGHT NOW. For each:

1. One sentence on what happened
2. Approximate date (month/year)
3. Why it matters for practitioners

Focus on:
- Major model releases or capability jumps
- Infrastructure/tooling shifts (new frameworks, protocols)
- Policy or regulatory developments
- Research breakthroughs not yet widely covered
- Events that may not appear in RSS feeds yet

Return as a numbered list. Be specific: names, versions, organizations. Skip anything older than 6 months unless it has ongoing impact."""


@dataclass
class GroupSummary:
    group: str
    count: int
    author_kinds: list[str]
    top_tags: list[tuple[str, int]]
    avg_weight: int


@dataclass
class SourceSummary:
    source: str
    display_name: str
    tier: TrustTier
    angle: str
    signal_count: int
    groups: list[GroupSummary] = field(default_factory=list)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def summarize_signals(
    signals: Iterable[Signal],
    registry: TrustRegistry,
    top_tags: int = 3,
) -> list[SourceSummary]:
    """Group by source, then by primary tag, keeping only aggregates."""
    by_source: dict[str, list[Signal]] = {}
    for signal in signals:
        by_source.setdefault(signal.source, []).append(signal)

    summaries: list[SourceSummary] = []
    for source in sorted(by_source):
        items = by_source[source]
        descriptor = registry.descriptor_of(source)
        by_group: dict[str, list[Signal]] = {}
        for item in items:
            by_group.setdefault(item.primary_tag.lower(), []).append(item)

        groups: list[GroupSummary] = []
        for group, members in by_group.items():
            tag_counts: Counter[str] = Counter()
            for member in members:
                for tag in member.tags:
                    normalized = tag.lower()
                    if normalized != group:
                        tag_counts[normalized] += 1
            ranked = sorted(tag_counts.items(), key=lambda kv: (-kv[1], kv[0]))[:top_tags]
            groups.append(
                GroupSummary(
                    group=group,
                    count=len(members),
                    author_kinds=sorted({m.author_kind for m in members}),
                    top_tags=ranked,
                    avg_weight=_round_half_up(sum(m.weight for m in members) / len(members)),
                )
            )
        groups.sort(key=lambda g: (-g.count, g.group))
        summaries.append(
            SourceSummary(
                source=source,
                display_name=descriptor.display_name,
                tier=descriptor.tier,
                angle=descriptor.angle,
                signal_count=len(items),
                groups=groups,
            )
        )
    return summaries


def is_counsel_mode(tiers: Iterable[TrustTier]) -> bool:
    """Counsel mode applies as soon as any present source is curated."""
    return any(tier != TrustTier.RAW for tier in tiers)


@dataclass(frozen=True)
class GenericPrompt:
    """Simple trend-analyst template for batches made only of raw sources."""

    def preamble(self, source_count: int) -> str:
        return (
            "You are a trend intelligence analyst. Analyze these aggregated signals "
            f"from {source_count} sources and produce prioritized insights."
        )

    def source_heading(self, summary: SourceSummary) -> str:
        return (
            f"### {summary.source} ({summary.signal_count} signals across "
            f"{len(summary.groups)} groups)"
        )

    def instructions(self) -> str:
        return """## Analysis Instructions

Identify:
1. **Emerging trends**: topics appearing across multiple sources
2. **Agent consensus**: what agent-authored signals are converging on
3. **Agent-vs-human divergence**: where agent discussions differ from human discussions
4. **Tool mentions**: new tools, APIs, libraries, or capabilities being discussed

## Priority Tiers

- **p0**: topic appears in 3+ sources and has high velocity (>50% increase), "act now"
- **p1**: topic in 2 sources or a high-confidence single-source signal, "watch closely"
- **p2**: emerging single-source signal, "monitor"
"""


@dataclass(frozen=True)
class CounselPrompt:
    """Stricter template used when curated, trust-tiered sources are present."""

    def preamble(self, source_count: int) -> str:
        return (
            "You are the LLM Counsel: a panel of skeptical senior analysts reading "
            f"{source_count} independently biased sources. Each source carries a trust tier "
            "and an editorial angle. Your job is to surface the few findings an expert "
            "reader would actually act on."
        )

    def source_heading(self, summary: SourceSummary) -> str:
        heading = (
            f"### {summary.source}: {summary.display_name} [{summary.tier.value}] "
            f"({summary.signal_count} signals across {len(summary.groups)} groups)"
        )
        if summary.angle:
            heading += f"\nAngle: {summary.angle}"
        return heading

    def instructions(self) -> str:
        return f"""{ANTI_NOISE_HEADING}

Before writing any insight, ask: would a practitioner who already reads these sources every day learn something from it? If not, kill it. Drop restated announcements, funding news, benchmark claims without corroboration, and anything that is merely popular.

## What Earns Attention

1. **Absence**: something the sources would normally cover has gone quiet.
   - Good: "Expert newsletters covered agent frameworks weekly; this window none do, while GitHub Trending still shows agent repos climbing."
   - Bad: "Nobody is discussing quantum computing." (It was never expected in these sources.)
2. **Reversal**: a tier that held one position now holds the opposite.
   - Good: "Crowd sources praised a tool last window; this window they report regressions while its primary source still promotes it."
   - Bad: "A company changed its pricing." (A change, not a reversal of a held position.)
3. **Cross-domain surprise**: sources with unrelated angles converge on the same specific thing.
   - Good: "A policy newsletter and an algorithmic code feed independently point at on-device inference for compliance reasons."
   - Bad: "AI is being used in healthcare." (Generic category, not a specific convergence.)

Use insight_type "gap" for absence findings. Name the pattern in the "pattern" field.

## Priority Rule

{PRIORITY_RULE}
"""


PromptTemplate = CounselPrompt | GenericPrompt


def select_template(tiers: Iterable[TrustTier]) -> PromptTemplate:
    return CounselPrompt() if is_counsel_mode(tiers) else GenericPrompt()


def _format_group(group: GroupSummary) -> str:
    topics = ", ".join(f"{tag} ({count})" for tag, count in group.top_tags) or "none"
    kinds = "+".join(group.author_kinds)
    return (
        f"- {group.group} ({group.count}, {kinds}): Top topics: {topics}; "
        f"avg weight {group.avg_weight}"
    )


def _output_contract(settings: CompilerSettings) -> str:
    return f"""## Output Format

Return ONLY a JSON array. No markdown, no explanation. Each object:
```json
[
  {{
    "insight_type": "trend" | "consensus" | "divergence" | "tool_mention" | "gap",
    "topic": "specific topic name, never a generic category",
    "summary": "2-3 sentence synthesis citing evidence from the signals",
    "confidence": 0.0-1.0,
    "priority": "p0" | "p1" | "p2",
    "sources": ["source ids exactly as shown in the headings above"],
    "convergence_tiers": ["trust tiers of those sources"],
    "pattern": "absence" | "reversal" | "cross_domain_surprise" | null
  }}
]
```

Rules:
- Return {settings.target_insights_min}-{settings.target_insights_max} insights, ordered by priority (p0 first), then confidence.
- Merge near-duplicate topics into a single insight; at most {settings.max_per_topic_area} insights per broad topic area.
- At most {settings.max_p0} insights may be p0."""


def compile_prompt(
    signals: Iterable[Signal],
    velocity_scores: list[VelocityScore],
    registry: TrustRegistry,
    auxiliary_knowledge: str | None = None,
    settings: CompilerSettings | None = None,
    hot_display_limit: int = 10,
) -> str:
    cs = settings or CompilerSettings()
    batch = list(signals)
    summaries = summarize_signals(batch, registry, top_tags=cs.top_tags)
    template = select_template(registry.active_tiers(s.source for s in batch))

    parts = [template.preamble(len(summaries)), "## Signals by Source (compressed)"]
    for summary in summaries:
        block = [template.source_heading(summary)]
        block.extend(_format_group(group) for group in summary.groups)
        parts.append("\n".join(block))
    if not summaries:
        parts.append("(no signals in this window)")

    hot = format_hot_topics(velocity_scores, limit=hot_display_limit)
    if hot:
        parts.append(hot.rstrip("\n"))

    knowledge = (auxiliary_knowledge or "").strip()
    if knowledge:
        parts.append(
            f"{KNOWLEDGE_HEADING}\n\n"
            "The notes below come from the model's training data, not from this window's "
            "signals. Their dates are uncertain and may be stale. Cross-check every item "
            "against the live signals above and only rely on it where they corroborate it. "
            'Cite it only as source "llm-knowledge".\n\n'
            f"{knowledge}"
        )

    parts.append(template.instructions().rstrip("\n"))
    parts.append(_output_contract(cs))
    return "\n\n".join(parts) + "\n"


def build_research_prompt(topic: str) -> str:
    return f"""You are a trend intelligence analyst. Research the topic "{topic}" in depth.

Consider:
- What are the latest developments?
- What are experts (humans) saying vs AI agents?
- What tools or capabilities are emerging?
- What's the trajectory: growing, declining, plateauing?

Return ONLY a JSON array. Each object:
```json
[
  {{
    "insight_type": "trend" | "consensus" | "divergence" | "tool_mention" | "gap",
    "topic": "short topic name",
    "summary": "2-3 sentence synthesis",
    "confidence": 0.0-1.0,
    "priority": "p0" | "p1" | "p2",
    "sources": []
  }}
]
```

Priority: {PRIORITY_RULE}

Return 3-8 insights."""
