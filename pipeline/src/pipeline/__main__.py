"""Pipeline entry point for running as a module: python -m pipeline."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass

from deeptrend.config import Settings, get_settings
from deeptrend.database import dispose_engine, get_session_factory, init_db
from deeptrend.errors import DeeptrendError
from deeptrend.schemas.insights import Insight
from deeptrend.services.pipeline_settings import PipelineSettings, load_pipeline_settings
from deeptrend.services.signal_store import SignalStore
from deeptrend.services.synthesis import build_synthesis_engine
from deeptrend.services.trust import TrustRegistry, build_trust_registry

from pipeline.orchestrator import run_analysis, run_publish, run_research
from pipeline.stages.ingestion_stage import run_ingestion_stage
from pipeline.stages.publish_stage import SiteInfo

logger = logging.getLogger("pipeline")


@dataclass
class CommandContext:
    settings: Settings
    pipeline: PipelineSettings
    registry: TrustRegistry
    store: SignalStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deeptrend",
        description="Trend intelligence pipeline: curated feeds, LLM Counsel analysis, agent-optimized publishing",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    ingest = sub.add_parser("ingest", help="Fetch curated feeds and store raw signals")
    ingest.add_argument("--source", action="append", default=[], help="Only fetch this curated source (repeatable)")
    ingest.add_argument("--from-file", dest="from_file", help="Also import signals from a JSON-lines file")
    ingest.add_argument("--no-feeds", action="store_true", help="Skip curated feeds")

    sub.add_parser("analyze", help="Run one analysis pass over new signals")

    publish = sub.add_parser("publish", help="Render the latest insights to static files")
    publish.add_argument("--output", default=None, help="Output directory (default: OUTPUT_DIR)")

    research = sub.add_parser("research", help="On-demand deep dive on a topic")
    research.add_argument("topic")

    search = sub.add_parser("search", help="Search stored insights by topic or summary")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=10)

    sub.add_parser("status", help="Show signal count, insight count and last analysis time")
    return parser


def _print_insight(insight: Insight) -> None:
    sources = f" ({len(insight.sources)} sources)" if insight.sources else ""
    print(
        f"  [{insight.priority.value}][{insight.kind.value}] {insight.topic}{sources} "
        f"(confidence: {insight.confidence:g})"
    )
    print(f"    {insight.summary}\n")


def _print_errors(errors: list[str]) -> int:
    if not errors:
        return 0
    print("\nErrors:", file=sys.stderr)
    for error in errors:
        print(f"  {error}", file=sys.stderr)
    return 1


async def _cmd_ingest(args: argparse.Namespace, ctx: CommandContext) -> int:
    feeds = [] if args.no_feeds else list(ctx.registry.curated_feeds)
    if args.source:
        unknown = [s for s in args.source if ctx.registry.feed(s) is None]
        if unknown:
            logger.error("Unknown curated source(s): %s", ", ".join(unknown))
            return 1
        feeds = [f for f in feeds if f.source in set(args.source)]
    report = await run_ingestion_stage(
        ctx.store, feeds, settings=ctx.pipeline.ingestion, signal_file=args.from_file
    )
    print(
        f"\nDone in {report.elapsed_seconds}s: {report.scraped} scraped, "
        f"{report.inserted} stored, {len(report.errors)} errors"
    )
    # Partial success is still success.
    if report.scraped == 0 and report.errors:
        return _print_errors(report.errors)
    return 0


async def _cmd_analyze(args: argparse.Namespace, ctx: CommandContext) -> int:
    engine = build_synthesis_engine(ctx.settings)
    knowledge_engine = build_synthesis_engine(
        ctx.settings, timeout=ctx.settings.knowledge_timeout_seconds
    )
    try:
        report = await run_analysis(
            ctx.store, engine, ctx.registry, ctx.pipeline, knowledge_engine=knowledge_engine
        )
    finally:
        await engine.close()
        await knowledge_engine.close()

    print(f"\nDone in {report.elapsed_seconds}s: {len(report.insights)} insights generated")
    if report.insights:
        print("\nTop insights:")
        for insight in report.insights[:5]:
            _print_insight(insight)
    return _print_errors(report.errors)


async def _cmd_publish(args: argparse.Namespace, ctx: CommandContext) -> int:
    output = args.output or ctx.settings.output_dir
    result = await run_publish(ctx.store, output, SiteInfo.from_settings(ctx.settings), ctx.registry)
    if not result.files and not result.errors:
        print("No insights to publish. Run `deeptrend analyze` first.")
        return 0
    print("\nPublished:")
    for path in result.files:
        print(f"  {path}")
    return _print_errors(result.errors)


async def _cmd_research(args: argparse.Namespace, ctx: CommandContext) -> int:
    engine = build_synthesis_engine(ctx.settings)
    try:
        report = await run_research(ctx.store, engine, args.topic, ctx.registry, ctx.pipeline)
    finally:
        await engine.close()
    print(f"\nDone in {report.elapsed_seconds}s: {len(report.insights)} insights")
    for insight in report.insights:
        _print_insight(insight)
    return _print_errors(report.errors)


async def _cmd_search(args: argparse.Namespace, ctx: CommandContext) -> int:
    insights = await ctx.store.search_insights(args.query, limit=args.limit)
    if not insights:
        print(f'No insights matching "{args.query}".')
    for insight in insights:
        _print_insight(insight)
    return 0


async def _cmd_status(args: argparse.Namespace, ctx: CommandContext) -> int:
    status = await ctx.store.status()
    last = status.last_analysis.isoformat() if status.last_analysis else "never"
    print("deeptrend status:")
    print(f"  Raw signals: {status.signal_count}")
    print(f"  Insights: {status.insight_count}")
    print(f"  Last analysis: {last}")
    return 0


COMMANDS = {
    "ingest": _cmd_ingest,
    "analyze": _cmd_analyze,
    "publish": _cmd_publish,
    "research": _cmd_research,
    "search": _cmd_search,
    "status": _cmd_status,
}


async def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stdout,
    )

    try:
        if args.command == "init-db":
            await init_db()
            return 0
        ctx = CommandContext(
            settings=settings,
            pipeline=load_pipeline_settings(settings.pipeline_settings_file),
            registry=build_trust_registry(),
            store=SignalStore(get_session_factory()),
        )
        return await COMMANDS[args.command](args, ctx)
    except DeeptrendError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    finally:
        await dispose_engine()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
