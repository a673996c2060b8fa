"""Publish stage - render insights into the static site artifacts.

Rendering is pure: the same insights and timestamp always produce the same
bytes. ``run_publish_stage`` is the only part that touches the filesystem.
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import format_datetime
from pathlib import Path
from typing import Any

from deeptrend.config import Settings
from deeptrend.schemas.insights import Convergence, Insight, Priority
from deeptrend.schemas.pipeline import PublishResult
from deeptrend.services.trust import TrustRegistry

from pipeline.stages.convergence_stage import compute_convergence

logger = logging.getLogger(__name__)

ATOM_NS = "http://www.w3.org/2005/Atom"
GENERATOR = "deeptrend v0.3.0"
ARCHIVE_VERSION = "3.0"
PRIORITY_ORDER = (Priority.P0, Priority.P1, Priority.P2)

ET.register_namespace("atom", ATOM_NS)


@dataclass(frozen=True)
class SiteInfo:
    title: str
    url: str
    description: str
    name: str = "deeptrend"

    @classmethod
    def from_settings(cls, settings: Settings) -> SiteInfo:
        return cls(
            title=settings.site_title,
            url=settings.site_url.rstrip("/"),
            description=settings.site_description,
        )


def _utc(at: datetime) -> datetime:
    return at.replace(tzinfo=UTC) if at.tzinfo is None else at.astimezone(UTC)


def _date_str(at: datetime) -> str:
    return _utc(at).date().isoformat()


def _iso(at: datetime) -> str:
    return _utc(at).isoformat().replace("+00:00", "Z")


def _fmt_number(value: float) -> str:
    return f"{value:g}"


def _convergence_for(insight: Insight, registry: TrustRegistry) -> Convergence | None:
    if not insight.sources:
        return None
    return insight.convergence or compute_convergence(insight.sources, registry)


def generate_llms_txt(insights: list[Insight], at: datetime, site: SiteInfo) -> str:
    date_str = _date_str(at)
    counts = {p: sum(1 for i in insights if i.priority == p) for p in PRIORITY_ORDER}
    return f"""# {site.name}

> {site.description}
> Updated {_iso(at)}.

## Latest Insights

- [{date_str} Analysis](/insights/{date_str}.md): {len(insights)} insights, {counts[Priority.P0]} p0, {counts[Priority.P1]} p1, {counts[Priority.P2]} p2

## Feeds

- [JSON Feed](/feed.json): All insights as structured JSON (recommended for agents)
- [RSS Feed](/feed.xml): Standard RSS 2.0 feed

## Archive

- [{date_str}](/insights/{date_str}.md)
"""


def _extension(insight: Insight, registry: TrustRegistry) -> dict[str, Any]:
    ext: dict[str, Any] = {
        "priority": insight.priority.value,
        "insight_type": insight.kind.value,
        "confidence": insight.confidence,
    }
    if insight.claimed_priority and insight.claimed_priority != insight.priority:
        ext["claimed_priority"] = insight.claimed_priority.value
    if insight.pattern:
        ext["pattern"] = insight.pattern.value
    convergence = _convergence_for(insight, registry)
    if convergence is not None:
        block: dict[str, Any] = {
            "source_count": convergence.source_count,
            "sources": list(convergence.sources),
            "trust_tiers": dict(convergence.trust_tiers),
            "distinct_tiers": convergence.distinct_tiers,
            "floor_met": convergence.floor_met,
            "consistent": convergence.consistent,
        }
        if convergence.note:
            block["note"] = convergence.note
        ext["convergence"] = block
    return ext


def generate_json_feed(
    insights: list[Insight],
    at: datetime,
    site: SiteInfo,
    registry: TrustRegistry,
) -> str:
    date_str = _date_str(at)
    items = [
        {
            "id": f"{date_str}-insight-{i}",
            "title": insight.topic,
            "content_text": insight.summary,
            "date_published": _iso(at),
            "tags": [insight.priority.value, insight.kind.value, *insight.sources],
            "_deeptrend": _extension(insight, registry),
        }
        for i, insight in enumerate(insights, 1)
    ]
    feed = {
        "version": "https://jsonfeed.org/version/1.1",
        "title": site.title,
        "home_page_url": site.url,
        "feed_url": f"{site.url}/feed.json",
        "description": site.description,
        "items": items,
    }
    return json.dumps(feed, indent=2, ensure_ascii=False) + "\n"


def generate_rss_feed(insights: list[Insight], at: datetime, site: SiteInfo) -> str:
    date_str = _date_str(at)
    pub_date = format_datetime(_utc(at), usegmt=True)

    rss = ET.Element("rss", {"version": "2.0"})
    channel = ET.SubElement(rss, "channel")
    ET.SubElement(channel, "title").text = site.title
    ET.SubElement(channel, "link").text = site.url
    ET.SubElement(channel, "description").text = site.description
    ET.SubElement(channel, "lastBuildDate").text = pub_date
    ET.SubElement(channel, "docs").text = "https://validator.w3.org/feed/docs/rss2.html"
    ET.SubElement(channel, "generator").text = GENERATOR
    ET.SubElement(channel, "language").text = "en"
    ET.SubElement(
        channel,
        f"{{{ATOM_NS}}}link",
        {"href": f"{site.url}/feed.xml", "rel": "self", "type": "application/rss+xml"},
    )

    for i, insight in enumerate(insights, 1):
        item = ET.SubElement(channel, "item")
        ET.SubElement(item, "title").text = f"[{insight.priority.value}] {insight.topic}"
        ET.SubElement(item, "link").text = f"{site.url}/insights/{date_str}.md"
        ET.SubElement(item, "guid", {"isPermaLink": "false"}).text = (
            f"{site.url}/insights/{date_str}#insight-{i}"
        )
        ET.SubElement(item, "pubDate").text = pub_date
        ET.SubElement(item, "description").text = insight.summary
        ET.SubElement(item, "category").text = insight.priority.value
        ET.SubElement(item, "category").text = insight.kind.value

    ET.indent(rss)
    return ET.tostring(rss, encoding="utf-8", xml_declaration=True).decode("utf-8") + "\n"


def _render_insight(insight: Insight, registry: TrustRegistry) -> str:
    lines = [f"## {insight.priority.value}: {insight.topic}", ""]
    meta = f"**Type:** {insight.kind.value} | **Confidence:** {_fmt_number(insight.confidence)}"
    if insight.sources:
        meta += f" | **Sources:** {len(insight.sources)}"
    lines += [meta, "", insight.summary, ""]
    if insight.sources:
        lines += [f"**Contributing sources:** {', '.join(insight.sources)}", ""]
    convergence = _convergence_for(insight, registry)
    if convergence is not None and convergence.trust_tiers:
        tiers = ", ".join(f"{tier} ({count})" for tier, count in convergence.trust_tiers.items())
        lines += [f"**Trust tier convergence:** {tiers}", ""]
    if insight.claimed_priority and insight.claimed_priority != insight.priority:
        lines += [f"**Claimed priority:** {insight.claimed_priority.value}", ""]
    if convergence is not None and convergence.note:
        lines += [f"**Convergence note:** {convergence.note}", ""]
    return "\n".join(lines) + "\n"


def generate_insight_markdown(
    insights: list[Insight],
    at: datetime,
    registry: TrustRegistry,
) -> str:
    date_str = _date_str(at)
    groups = {p: [i for i in insights if i.priority == p] for p in PRIORITY_ORDER}
    active_sources = len({s for i in insights for s in i.sources})
    p0_topics = [i.topic for i in groups[Priority.P0]]

    header = [
        "---",
        f"date: {date_str}",
        f'version: "{ARCHIVE_VERSION}"',
        f"sources_active: {active_sources or 'unknown'}",
        f"insights_count: {len(insights)}",
        f"p0_count: {len(groups[Priority.P0])}",
        f"p1_count: {len(groups[Priority.P1])}",
        f"p2_count: {len(groups[Priority.P2])}",
        f"convergence_topics: {json.dumps(p0_topics, ensure_ascii=False)}",
        "---",
        "",
        f"# deeptrend Analysis: {date_str}",
        "",
    ]
    body = [
        _render_insight(insight, registry)
        for priority in PRIORITY_ORDER
        for insight in groups[priority]
    ]
    return "\n".join(header) + "\n" + "".join(body)


def render_site(
    insights: list[Insight],
    at: datetime,
    site: SiteInfo,
    registry: TrustRegistry,
) -> dict[str, bytes]:
    """Map of relative path to file content for one publish."""
    date_str = _date_str(at)
    return {
        "llms.txt": generate_llms_txt(insights, at, site).encode("utf-8"),
        "feed.json": generate_json_feed(insights, at, site, registry).encode("utf-8"),
        "feed.xml": generate_rss_feed(insights, at, site).encode("utf-8"),
        f"insights/{date_str}.md": generate_insight_markdown(insights, at, registry).encode("utf-8"),
    }


def run_publish_stage(
    insights: list[Insight],
    output_dir: str | Path,
    at: datetime,
    site: SiteInfo,
    registry: TrustRegistry,
) -> PublishResult:
    result = PublishResult()
    root = Path(output_dir)
    for relative, content in render_site(insights, at, site, registry).items():
        path = root / relative
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            result.errors.append(f"Publish failed for {relative}: {exc}")
            continue
        result.files.append(str(path))
    logger.info("Published %d files to %s", len(result.files), root)
    return result
