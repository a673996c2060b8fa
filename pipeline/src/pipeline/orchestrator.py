"""Pipeline orchestrator - analysis, research and publish runs."""

from __future__ import annotations

import hashlib
import json
import logging
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from deeptrend.errors import StoreError, SynthesisError
from deeptrend.schemas.insights import Insight
from deeptrend.schemas.pipeline import AnalysisReport, PublishResult
from deeptrend.services.pipeline_settings import PipelineSettings
from deeptrend.services.signal_store import SignalStore
from deeptrend.services.synthesis import SynthesisEngine
from deeptrend.services.trust import TrustRegistry

from pipeline.prompts.analysis import build_research_prompt, compile_prompt
from pipeline.stages.convergence_stage import enrich_all
from pipeline.stages.knowledge_stage import run_knowledge_stage
from pipeline.stages.publish_stage import SiteInfo, run_publish_stage
from pipeline.stages.validation_stage import parse_insights
from pipeline.stages.velocity_stage import compute_velocity

logger = logging.getLogger(__name__)


def _content_hash(data: Any) -> str:
    return hashlib.sha256(json.dumps(data, sort_keys=True, default=str).encode()).hexdigest()


async def _synthesize(
    engine: SynthesisEngine,
    prompt: str,
    registry: TrustRegistry,
    ps: PipelineSettings,
) -> list[Insight]:
    raw = await engine.complete(prompt)
    insights = parse_insights(raw, settings=ps.validation)
    return enrich_all(insights, registry, ps.convergence)


async def _persist(
    store: SignalStore,
    insights: list[Insight],
    analyzed_at: datetime,
    report: AnalysisReport,
) -> None:
    try:
        report.stored = await store.insert_insights(insights, analyzed_at)
        report.analyzed_at = analyzed_at if report.stored else None
    except StoreError as e:
        logger.error("Insight persistence failed: %s", e)
        report.errors.append(f"Insert insights: {e}")


async def run_analysis(
    store: SignalStore,
    engine: SynthesisEngine,
    registry: TrustRegistry,
    settings: PipelineSettings | None = None,
    knowledge_engine: SynthesisEngine | None = None,
    now: datetime | None = None,
) -> AnalysisReport:
    """One batch analysis pass over signals observed since the last run.

    Velocity and knowledge failures are non-fatal. A synthesis or format
    failure yields zero insights and leaves earlier runs untouched.
    """
    ps = settings or PipelineSettings()
    started = time.monotonic()
    reference = now or datetime.now(UTC)
    report = AnalysisReport()

    def _finish() -> AnalysisReport:
        report.elapsed_seconds = round(time.monotonic() - started, 1)
        return report

    try:
        last_run = await store.last_run_timestamp()
        since = last_run or reference - timedelta(hours=ps.analysis.lookback_hours)
        logger.info("Fetching signals since %s", since.isoformat())
        signals = await store.query_since(since, limit=ps.analysis.signal_limit)
    except StoreError as e:
        logger.error("Signal query failed: %s", e)
        report.errors.append(f"Signal query failed: {e}")
        return _finish()

    report.signal_count = len(signals)
    report.source_count = len({s.source for s in signals})
    if not signals:
        logger.info("No new signals to analyze.")
        return _finish()
    logger.info(
        "Analyzing %d signals across %d sources", report.signal_count, report.source_count
    )

    velocity_scores = []
    try:
        velocity_scores = await compute_velocity(
            store, reference_time=reference, settings=ps.velocity
        )
        report.hot_topic_count = sum(1 for s in velocity_scores if s.is_hot)
    except StoreError as e:
        logger.warning("Velocity computation failed (non-fatal): %s", e)
        report.errors.append(f"Velocity computation failed (non-fatal): {e}")

    knowledge = None
    if knowledge_engine is not None and ps.analysis.use_llm_knowledge:
        knowledge = await run_knowledge_stage(knowledge_engine)

    prompt = compile_prompt(
        signals,
        velocity_scores,
        registry,
        auxiliary_knowledge=knowledge,
        settings=ps.compiler,
        hot_display_limit=ps.velocity.hot_display_limit,
    )
    report.prompt_hash = _content_hash(prompt)
    logger.info("Compiled prompt: %d chars, hash=%s", len(prompt), report.prompt_hash[:12])

    try:
        insights = await _synthesize(engine, prompt, registry, ps)
    except SynthesisError as e:
        logger.error("Analysis failed: %s", e)
        report.errors.append(f"Analysis failed: {e}")
        return _finish()

    report.insights = insights
    logger.info("Generated %d insights", len(insights))
    await _persist(store, insights, reference, report)
    return _finish()


async def run_research(
    store: SignalStore,
    engine: SynthesisEngine,
    topic: str,
    registry: TrustRegistry,
    settings: PipelineSettings | None = None,
    now: datetime | None = None,
) -> AnalysisReport:
    ps = settings or PipelineSettings()
    started = time.monotonic()
    report = AnalysisReport()
    try:
        insights = await _synthesize(engine, build_research_prompt(topic), registry, ps)
    except SynthesisError as e:
        logger.error("Research failed: %s", e)
        report.errors.append(f"Research failed: {e}")
    else:
        report.insights = insights
        await _persist(store, insights, now or datetime.now(UTC), report)
        logger.info('Research on "%s": %d insights, %d stored', topic, len(insights), report.stored)
    report.elapsed_seconds = round(time.monotonic() - started, 1)
    return report


async def run_publish(
    store: SignalStore,
    output_dir: str | Path,
    site: SiteInfo,
    registry: TrustRegistry,
) -> PublishResult:
    """Publish the most recent run's insights; nothing is written when there are none."""
    analyzed_at, insights = await store.latest_insights()
    if analyzed_at is None or not insights:
        logger.info("No insights to publish.")
        return PublishResult()
    return run_publish_stage(insights, output_dir, analyzed_at, site, registry)
