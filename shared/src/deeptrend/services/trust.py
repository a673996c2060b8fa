"""Trust classification for signal sources.

Every source id resolves to exactly one trust tier. The registry is built once
per process from two layers: the legacy raw sources and the curated feed list.
Unknown ids resolve to the raw tier and never raise.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class TrustTier(str, Enum):
    """Coarse reliability/editorial-bias classification of a source."""

    EDITORIAL = "editorial"
    CROWD = "crowd"
    EXPERT = "expert"
    ALGORITHMIC = "algorithmic"
    PRIMARY = "primary"
    RAW = "raw"
    MODEL_KNOWLEDGE = "model_knowledge"


# Display order only; convergence counts distinct tiers.
TIER_DISPLAY_ORDER = [
    TrustTier.PRIMARY,
    TrustTier.EXPERT,
    TrustTier.EDITORIAL,
    TrustTier.CROWD,
    TrustTier.ALGORITHMIC,
    TrustTier.MODEL_KNOWLEDGE,
    TrustTier.RAW,
]


@dataclass(frozen=True)
class FeedConfig:
    """A curated RSS/Atom feed and the editorial lens it represents."""

    source: str
    name: str
    url: str
    trust: TrustTier
    angle: str
    default_tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class SourceDescriptor:
    display_name: str
    angle: str
    tier: TrustTier


CURATED_FEEDS: tuple[FeedConfig, ...] = (
    FeedConfig(
        source="techmeme",
        name="TechMeme",
        url="https://www.techmeme.com/feed.xml",
        trust=TrustTier.EDITORIAL,
        angle="mainstream tech business news",
        default_tags=("tech", "business"),
    ),
    FeedConfig(
        source="hn-digest",
        name="HN Digest",
        url="https://hnrss.org/frontpage?points=100",
        trust=TrustTier.CROWD,
        angle="developer community, startup/engineering culture",
        default_tags=("hn", "developer"),
    ),
    FeedConfig(
        source="simon-willison",
        name="Simon Willison",
        url="https://simonwillison.net/atom/everything/",
        trust=TrustTier.EXPERT,
        angle="practical developer tools, LLM tools, open source",
        default_tags=("llm", "tools", "open-source"),
    ),
    FeedConfig(
        source="import-ai",
        name="Import AI (Jack Clark)",
        url="https://importai.substack.com/feed",
        trust=TrustTier.EXPERT,
        angle="AI research, policy, safety",
        default_tags=("ai-research", "policy", "safety"),
    ),
    FeedConfig(
        source="alphasignal",
        name="AlphaSignal",
        url="https://alphasignalai.substack.com/feed",
        trust=TrustTier.EXPERT,
        angle="bleeding-edge research, papers-first",
        default_tags=("ai-research", "papers"),
    ),
    FeedConfig(
        source="last-week-ai",
        name="Last Week in AI",
        url="https://lastweekin.ai/feed",
        trust=TrustTier.EXPERT,
        angle="balanced weekly AI roundup",
        default_tags=("ai", "weekly-roundup"),
    ),
    FeedConfig(
        source="ahead-of-ai",
        name="Ahead of AI (Raschka)",
        url="https://magazine.sebastianraschka.com/feed",
        trust=TrustTier.EXPERT,
        angle="ML research, academic, fundamentals",
        default_tags=("ml-research", "academic"),
    ),
    FeedConfig(
        source="marktechpost",
        name="MarkTechPost",
        url="https://www.marktechpost.com/feed/",
        trust=TrustTier.EXPERT,
        angle="accessible research coverage",
        default_tags=("ai-research", "summaries"),
    ),
    FeedConfig(
        source="github-trending",
        name="GitHub Trending",
        url="https://mshibanami.github.io/GitHubTrendingRSS/daily/all.xml",
        trust=TrustTier.ALGORITHMIC,
        angle="what developers are building, code not talk",
        default_tags=("github", "open-source"),
    ),
    FeedConfig(
        source="hf-papers",
        name="HuggingFace Papers",
        url="https://papers.takara.ai/api/feed",
        trust=TrustTier.CROWD,
        angle="ML papers trending in research community",
        default_tags=("ml-papers", "research"),
    ),
    FeedConfig(
        source="openai-news",
        name="OpenAI News",
        url="https://openai.com/news/rss.xml",
        trust=TrustTier.PRIMARY,
        angle="first-party OpenAI announcements",
        default_tags=("openai", "announcements"),
    ),
    FeedConfig(
        source="google-research",
        name="Google Research",
        url="https://research.google/blog/rss/",
        trust=TrustTier.PRIMARY,
        angle="first-party Google AI research",
        default_tags=("google", "ai-research"),
    ),
    FeedConfig(
        source="bair",
        name="BAIR",
        url="https://bair.berkeley.edu/blog/feed.xml",
        trust=TrustTier.PRIMARY,
        angle="academic, cutting-edge Berkeley AI research",
        default_tags=("academic", "ai-research"),
    ),
)

LEGACY_SOURCES: tuple[str, ...] = ("google-trends", "reddit", "arxiv", "moltbook", "twitter")

LLM_KNOWLEDGE_SOURCE = "llm-knowledge"


@dataclass
class TrustRegistry:
    """Immutable-after-build lookup from source id to tier and descriptor."""

    curated_feeds: tuple[FeedConfig, ...] = ()
    _descriptors: dict[str, SourceDescriptor] = field(default_factory=dict, repr=False)

    def register(self, source: str, descriptor: SourceDescriptor) -> None:
        if source in self._descriptors:
            logger.warning("Source %s registered twice; keeping the later entry", source)
        self._descriptors[source] = descriptor

    def tier_of(self, source: str) -> TrustTier:
        return self.descriptor_of(source).tier

    def descriptor_of(self, source: str) -> SourceDescriptor:
        descriptor = self._descriptors.get(source)
        if descriptor is None:
            return SourceDescriptor(display_name=source, angle="", tier=TrustTier.RAW)
        return descriptor

    def active_tiers(self, sources: Iterable[str]) -> set[TrustTier]:
        return {self.tier_of(source) for source in sources}

    def feed(self, source: str) -> FeedConfig | None:
        for config in self.curated_feeds:
            if config.source == source:
                return config
        return None


def build_trust_registry(
    feeds: Iterable[FeedConfig] = CURATED_FEEDS,
    legacy_sources: Iterable[str] = LEGACY_SOURCES,
) -> TrustRegistry:
    """Build the process-wide registry: legacy raw sources first, curated feeds on top."""
    feed_list = tuple(feeds)
    registry = TrustRegistry(curated_feeds=feed_list)
    for source in legacy_sources:
        registry.register(
            source, SourceDescriptor(display_name=source, angle="", tier=TrustTier.RAW)
        )
    for config in feed_list:
        registry.register(
            config.source,
            SourceDescriptor(display_name=config.name, angle=config.angle, tier=config.trust),
        )
    registry.register(
        LLM_KNOWLEDGE_SOURCE,
        SourceDescriptor(
            display_name="LLM Knowledge",
            angle="model training data, time-uncertain",
            tier=TrustTier.MODEL_KNOWLEDGE,
        ),
    )
    return registry
