"""Tests for static site rendering."""

import json
import xml.etree.ElementTree as ET
from datetime import UTC, datetime

import pytest
from deeptrend.schemas.insights import InsightKind, Priority

from pipeline.stages.convergence_stage import enrich_all
from pipeline.stages.publish_stage import (
    SiteInfo,
    generate_insight_markdown,
    generate_json_feed,
    generate_llms_txt,
    generate_rss_feed,
    render_site,
    run_publish_stage,
)

PUBLISHED_AT = datetime(2026, 2, 13, 18, 30, tzinfo=UTC)
SITE = SiteInfo(
    title="deeptrend test",
    url="https://deeptrend.example",
    description="Trend intelligence for tests.",
)


@pytest.fixture
def insights(registry, make_insight):
    batch = [
        make_insight(
            topic="Local inference",
            priority=Priority.P0,
            sources=("simon-willison", "techmeme", "openai-news"),
        ),
        make_insight(topic="Benchmark fatigue", priority=Priority.P2, sources=()),
        make_insight(
            topic="Agent protocols",
            priority=Priority.P0,
            kind=InsightKind.CONSENSUS,
            sources=("reddit",),
        ),
    ]
    return enrich_all(batch, registry)


class TestDeterminism:
    def test_same_input_same_bytes(self, insights, registry):
        assert render_site(insights, PUBLISHED_AT, SITE, registry) == render_site(
            insights, PUBLISHED_AT, SITE, registry
        )

    def test_artifact_paths(self, insights, registry):
        assert set(render_site(insights, PUBLISHED_AT, SITE, registry)) == {
            "llms.txt",
            "feed.json",
            "feed.xml",
            "insights/2026-02-13.md",
        }

    def test_empty_insights_still_render(self, registry):
        files = render_site([], PUBLISHED_AT, SITE, registry)
        assert len(files) == 4
        assert json.loads(files["feed.json"])["items"] == []

    def test_registry_is_required(self, insights):
        with pytest.raises(TypeError):
            render_site(insights, PUBLISHED_AT, SITE)
        with pytest.raises(TypeError):
            run_publish_stage(insights, "public", PUBLISHED_AT, SITE)


class TestJsonFeed:
    def test_items(self, insights, registry):
        feed = json.loads(generate_json_feed(insights, PUBLISHED_AT, SITE, registry))
        assert feed["version"] == "https://jsonfeed.org/version/1.1"
        assert feed["feed_url"] == "https://deeptrend.example/feed.json"
        first = feed["items"][0]
        assert first["id"] == "2026-02-13-insight-1"
        assert first["title"] == "Local inference"
        assert first["date_published"] == "2026-02-13T18:30:00Z"
        assert first["tags"][:2] == ["p0", "trend"]
        ext = first["_deeptrend"]
        assert ext["convergence"]["trust_tiers"] == {"primary": 1, "expert": 1, "editorial": 1}
        assert ext["convergence"]["floor_met"] is True

    def test_convergence_omitted_without_sources(self, insights, registry):
        feed = json.loads(generate_json_feed(insights, PUBLISHED_AT, SITE, registry))
        assert "convergence" not in feed["items"][1]["_deeptrend"]

    def test_downgrade_is_visible(self, insights, registry):
        feed = json.loads(generate_json_feed(insights, PUBLISHED_AT, SITE, registry))
        ext = feed["items"][2]["_deeptrend"]
        assert ext["priority"] == "p1"
        assert ext["claimed_priority"] == "p0"
        assert ext["convergence"]["consistent"] is False
        assert "downgraded to p1" in ext["convergence"]["note"]

    def test_unenriched_insight_gets_computed_block(self, registry, make_insight):
        raw = make_insight(sources=("techmeme", "bair"))
        feed = json.loads(generate_json_feed([raw], PUBLISHED_AT, SITE, registry))
        assert feed["items"][0]["_deeptrend"]["convergence"]["source_count"] == 2


class TestRssFeed:
    def test_items(self, insights):
        root = ET.fromstring(generate_rss_feed(insights, PUBLISHED_AT, SITE).encode("utf-8"))
        channel = root.find("channel")
        assert channel.findtext("title") == "deeptrend test"
        assert channel.findtext("lastBuildDate") == "Fri, 13 Feb 2026 18:30:00 GMT"
        items = channel.findall("item")
        assert [item.findtext("title") for item in items] == [
            "[p0] Local inference",
            "[p2] Benchmark fatigue",
            "[p1] Agent protocols",
        ]
        assert items[0].find("guid").get("isPermaLink") == "false"
        assert items[0].findtext("link") == "https://deeptrend.example/insights/2026-02-13.md"

    def test_escapes_markup(self, make_insight):
        text = generate_rss_feed([make_insight(topic="<script> & co")], PUBLISHED_AT, SITE)
        assert "&lt;script&gt; &amp; co" in text


class TestMarkdown:
    def test_front_matter(self, insights, registry):
        md = generate_insight_markdown(insights, PUBLISHED_AT, registry)
        assert md.startswith("---\ndate: 2026-02-13\n")
        assert "insights_count: 3" in md
        assert "p0_count: 1" in md
        assert "p1_count: 1" in md
        assert "p2_count: 1" in md
        assert 'convergence_topics: ["Local inference"]' in md
        assert "sources_active: 4" in md

    def test_grouped_by_priority(self, insights, registry):
        md = generate_insight_markdown(insights, PUBLISHED_AT, registry)
        p0 = md.index("## p0: Local inference")
        p1 = md.index("## p1: Agent protocols")
        p2 = md.index("## p2: Benchmark fatigue")
        assert p0 < p1 < p2

    def test_convergence_details(self, insights, registry):
        md = generate_insight_markdown(insights, PUBLISHED_AT, registry)
        assert "**Trust tier convergence:** primary (1), expert (1), editorial (1)" in md
        assert "**Claimed priority:** p0" in md

    def test_empty(self, registry):
        md = generate_insight_markdown([], PUBLISHED_AT, registry)
        assert "sources_active: unknown" in md
        assert "convergence_topics: []" in md


def test_llms_txt(insights):
    text = generate_llms_txt(insights, PUBLISHED_AT, SITE)
    assert text.startswith("# deeptrend\n")
    assert "(/insights/2026-02-13.md): 3 insights, 1 p0, 1 p1, 1 p2" in text
    assert "[JSON Feed](/feed.json)" in text


class TestRunPublishStage:
    def test_writes_files(self, insights, registry, tmp_path):
        result = run_publish_stage(insights, tmp_path / "public", PUBLISHED_AT, SITE, registry)
        assert result.errors == []
        assert len(result.files) == 4
        written = (tmp_path / "public" / "insights" / "2026-02-13.md").read_bytes()
        assert written == render_site(insights, PUBLISHED_AT, SITE, registry)["insights/2026-02-13.md"]

    def test_write_failure_reported(self, insights, registry, tmp_path):
        blocker = tmp_path / "public"
        blocker.write_text("not a directory")
        result = run_publish_stage(insights, blocker, PUBLISHED_AT, SITE, registry)
        assert result.files == []
        assert len(result.errors) == 4


def test_site_info_from_settings():
    from deeptrend.config import Settings

    site = SiteInfo.from_settings(Settings(_env_file=None, SITE_URL="https://x.example/"))
    assert site.url == "https://x.example"
