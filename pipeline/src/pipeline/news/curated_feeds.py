"""Curated RSS/Atom feed fetcher producing raw signals."""

from __future__ import annotations

import hashlib
import html
import logging
import re
from datetime import UTC, datetime
from typing import Any

import feedparser
import httpx
from deeptrend.schemas.signals import ScraperResult, Signal
from deeptrend.services.trust import FeedConfig

logger = logging.getLogger(__name__)

STOPWORDS = {
    "a", "an", "the", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "can", "shall", "to", "of", "in", "for",
    "on", "with", "at", "by", "from", "as", "into", "about", "between",
    "through", "during", "before", "after", "above", "below", "and", "but",
    "or", "not", "no", "so", "if", "than", "too", "very", "just", "how",
    "what", "when", "where", "why", "who", "which", "that", "this", "it",
    "its", "my", "your", "his", "her", "our", "their", "new", "now",
}

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")


def natural_id(source: str, link: str) -> str:
    return f"{source}-{hashlib.sha256(link.encode('utf-8')).hexdigest()[:12]}"


def strip_html(text: str) -> str:
    return _SPACE_RE.sub(" ", html.unescape(_TAG_RE.sub("", text or ""))).strip()


def extract_keywords(title: str, limit: int = 5) -> list[str]:
    cleaned = re.sub(r"[^a-z0-9\s-]", "", title.lower())
    words = [w for w in cleaned.split() if len(w) > 2 and w not in STOPWORDS]
    return words[:limit]


def _entry_time(entry: Any) -> datetime | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime(*parsed[:6], tzinfo=UTC)


def _entry_content(entry: Any) -> str:
    content = entry.get("content")
    if content:
        return strip_html(content[0].get("value", ""))
    return strip_html(entry.get("summary", ""))


def parse_feed(text: str, config: FeedConfig, max_items: int = 50) -> list[Signal]:
    """Convert feed XML into signals; entries without title or link are skipped."""
    feed = feedparser.parse(text)
    if feed.bozo and not feed.entries:
        raise ValueError(f"unparsable feed: {feed.get('bozo_exception')}")

    signals: list[Signal] = []
    seen: set[str] = set()
    for entry in feed.entries:
        title = strip_html(entry.get("title", ""))
        link = str(entry.get("link", "") or entry.get("id", "")).strip()
        if not title or not link:
            continue
        sid = natural_id(config.source, link)
        if sid in seen:
            continue
        seen.add(sid)
        signals.append(
            Signal(
                source=config.source,
                natural_id=sid,
                title=title,
                body=_entry_content(entry) or title,
                url=link,
                author=strip_html(entry.get("author", "")) or config.name,
                author_kind="human",
                weight=0,
                tags=[*config.default_tags, *extract_keywords(title)],
                published_at=_entry_time(entry),
            )
        )
        if len(signals) >= max_items:
            break
    return signals


async def fetch_feed(
    config: FeedConfig,
    client: httpx.AsyncClient,
    max_items: int = 50,
) -> ScraperResult:
    result = ScraperResult(source=config.source)
    try:
        response = await client.get(config.url)
    except httpx.HTTPError as e:
        result.errors.append(f"{config.name} scrape failed: {e}")
        return result
    if response.status_code >= 400:
        result.errors.append(f"{config.name} RSS returned {response.status_code}")
        return result
    try:
        result.signals = parse_feed(response.text, config, max_items=max_items)
    except ValueError as e:
        result.errors.append(f"{config.name} scrape failed: {e}")
    return result
