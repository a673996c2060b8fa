"""Ingestion stage - fetch curated feeds or import JSON lines into the signal store."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Protocol

import httpx
from deeptrend.schemas.pipeline import IngestionReport
from deeptrend.schemas.signals import ScraperResult, Signal, UpsertResult
from deeptrend.services.pipeline_settings import IngestionSettings
from deeptrend.services.trust import FeedConfig
from pydantic import ValidationError

from pipeline.news.curated_feeds import fetch_feed

logger = logging.getLogger(__name__)


class SignalSink(Protocol):
    async def upsert_signals(self, batch: list[Signal]) -> UpsertResult: ...


async def fetch_curated_feeds(
    feeds: list[FeedConfig],
    settings: IngestionSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[ScraperResult]:
    """Fetch all feeds concurrently; one failing feed never affects the others."""
    ing = settings or IngestionSettings()
    async with httpx.AsyncClient(
        timeout=ing.rss_timeout,
        headers={"User-Agent": ing.user_agent},
        follow_redirects=True,
        transport=transport,
    ) as client:
        return list(
            await asyncio.gather(
                *(fetch_feed(feed, client, max_items=ing.max_per_feed) for feed in feeds)
            )
        )


def load_signal_file(path: str | Path) -> ScraperResult:
    """Read one JSON signal object per line; invalid lines and unreadable files become errors."""
    result = ScraperResult(source=Path(path).name)
    try:
        with open(path, encoding="utf-8") as handle:
            lines = list(handle)
    except (OSError, UnicodeDecodeError) as e:
        result.errors.append(f"{result.source}: {e}")
        return result
    for line_no, line in enumerate(lines, 1):
        line = line.strip()
        if not line:
            continue
        try:
            result.signals.append(Signal.model_validate(json.loads(line)))
        except (json.JSONDecodeError, ValidationError) as e:
            result.errors.append(f"{result.source}:{line_no}: {e}")
    return result


async def store_results(results: list[ScraperResult], sink: SignalSink) -> IngestionReport:
    report = IngestionReport()
    for result in results:
        report.scraped += len(result.signals)
        report.errors.extend(result.errors)
        for error in result.errors:
            logger.warning("Source %s: %s", result.source, error)
        if not result.signals:
            continue
        upsert = await sink.upsert_signals(result.signals)
        report.inserted += upsert.inserted
        report.errors.extend(upsert.errors)
        report.per_source[result.source] = report.per_source.get(result.source, 0) + upsert.inserted
        logger.info(
            "%s: %d scraped, %d stored", result.source, len(result.signals), upsert.inserted
        )
    return report


async def run_ingestion_stage(
    sink: SignalSink,
    feeds: list[FeedConfig],
    settings: IngestionSettings | None = None,
    signal_file: str | Path | None = None,
) -> IngestionReport:
    start = time.monotonic()
    results: list[ScraperResult] = []
    if feeds:
        results.extend(await fetch_curated_feeds(feeds, settings))
    if signal_file:
        results.append(load_signal_file(signal_file))
    report = await store_results(results, sink)
    report.elapsed_seconds = round(time.monotonic() - start, 1)
    return report
