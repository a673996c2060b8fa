"""Signal store adapter over the async SQLAlchemy session factory.

Signals are append-only and keyed by ``(source, natural_id)``; re-ingesting
an existing key is a silent no-op. Insights are written once per run with a
shared ``analyzed_at`` so a run can be read back as one set.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deeptrend.errors import StoreError
from deeptrend.models import InsightRecord, RawSignal
from deeptrend.schemas.insights import Convergence, Insight
from deeptrend.schemas.pipeline import StoreStatus
from deeptrend.schemas.signals import Signal, UpsertResult

logger = logging.getLogger(__name__)

UPSERT_CHUNK_SIZE = 100
DEFAULT_PAGE_SIZE = 500


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _signal_row(signal: Signal, observed_at: datetime) -> dict[str, Any]:
    return {
        "source": signal.source,
        "natural_id": signal.natural_id,
        "title": signal.title,
        "body": signal.body,
        "url": signal.url,
        "author": signal.author,
        "author_kind": signal.author_kind,
        "weight": signal.weight,
        "tags": list(signal.tags),
        "observed_at": _as_utc(signal.observed_at) or observed_at,
        "published_at": _as_utc(signal.published_at),
    }


def _to_signal(row: RawSignal) -> Signal:
    return Signal(
        source=row.source,
        natural_id=row.natural_id,
        title=row.title,
        body=row.body,
        url=row.url,
        author=row.author,
        author_kind=row.author_kind,
        weight=row.weight,
        tags=list(row.tags or []),
        observed_at=_as_utc(row.observed_at),
        published_at=_as_utc(row.published_at),
    )


def _to_record(insight: Insight, analyzed_at: datetime, position: int) -> InsightRecord:
    return InsightRecord(
        kind=insight.kind.value,
        topic=insight.topic,
        summary=insight.summary,
        confidence=insight.confidence,
        priority=insight.priority.value,
        sources=list(insight.sources),
        claimed_priority=insight.claimed_priority.value if insight.claimed_priority else None,
        claimed_tiers=list(insight.claimed_tiers),
        pattern=insight.pattern.value if insight.pattern else None,
        remap_note=insight.remap_note,
        convergence=insight.convergence.model_dump(mode="json") if insight.convergence else None,
        position=position,
        analyzed_at=analyzed_at,
    )


def _to_insight(record: InsightRecord) -> Insight:
    return Insight(
        kind=record.kind,
        topic=record.topic,
        summary=record.summary,
        confidence=record.confidence,
        priority=record.priority,
        sources=tuple(record.sources or []),
        claimed_priority=record.claimed_priority,
        claimed_tiers=tuple(record.claimed_tiers or []),
        pattern=record.pattern,
        remap_note=record.remap_note,
        convergence=Convergence(**record.convergence) if record.convergence else None,
    )


class SignalStore:
    """Repository for raw signals and insights."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncGenerator[AsyncSession, None]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise StoreError(f"{action} failed: {exc}") from exc
        finally:
            await session.close()

    @staticmethod
    def _insert_for(session: AsyncSession):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise StoreError(f"Unsupported database dialect for upsert: {dialect}")

    async def upsert_signals(self, batch: Iterable[Signal]) -> UpsertResult:
        """Insert new signals, ignoring keys that already exist.

        Chunks are written independently; a failing chunk is reported in
        ``errors`` and does not stop the remaining chunks.
        """
        now = datetime.now(UTC)
        unique: dict[tuple[str, str], dict[str, Any]] = {}
        for signal in batch:
            unique.setdefault((signal.source, signal.natural_id), _signal_row(signal, now))
        rows = list(unique.values())

        result = UpsertResult()
        for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
            chunk = rows[start : start + UPSERT_CHUNK_SIZE]
            try:
                async with self._session(f"Upsert chunk {start}") as session:
                    insert = self._insert_for(session)
                    stmt = (
                        insert(RawSignal)
                        .values(chunk)
                        .on_conflict_do_nothing(index_elements=["source", "natural_id"])
                        .returning(RawSignal.id)
                    )
                    inserted = await session.execute(stmt)
                    result.inserted += len(inserted.all())
            except StoreError as exc:
                logger.warning("%s", exc)
                result.errors.append(str(exc))
        return result

    async def query_since(self, since: datetime, limit: int = DEFAULT_PAGE_SIZE) -> list[Signal]:
        """Newest-first signals observed at or after ``since``, bounded by ``limit``."""
        async with self._session("Signal query") as session:
            result = await session.execute(
                select(RawSignal)
                .where(RawSignal.observed_at >= _as_utc(since))
                .order_by(RawSignal.observed_at.desc(), RawSignal.natural_id)
                .limit(limit)
            )
            return [_to_signal(row) for row in result.scalars().all()]

    async def query_in_range(
        self,
        start: datetime,
        end: datetime,
        source: str | None = None,
    ) -> list[Signal]:
        """Signals observed in ``[start, end)``, optionally for one source."""
        stmt = select(RawSignal).where(
            RawSignal.observed_at >= _as_utc(start),
            RawSignal.observed_at < _as_utc(end),
        )
        if source is not None:
            stmt = stmt.where(RawSignal.source == source)
        async with self._session("Range query") as session:
            result = await session.execute(stmt.order_by(RawSignal.observed_at.desc()))
            return [_to_signal(row) for row in result.scalars().all()]

    async def tags_in_range(self, start: datetime, end: datetime) -> list[list[str]]:
        """Tag lists of every signal observed in ``[start, end)``."""
        async with self._session("Tag query") as session:
            result = await session.execute(
                select(RawSignal.tags).where(
                    RawSignal.observed_at >= _as_utc(start),
                    RawSignal.observed_at < _as_utc(end),
                )
            )
            return [list(tags or []) for tags in result.scalars().all()]

    async def last_run_timestamp(self) -> datetime | None:
        async with self._session("Last analysis lookup") as session:
            result = await session.execute(select(func.max(InsightRecord.analyzed_at)))
            return _as_utc(result.scalar())

    async def insert_insights(self, insights: list[Insight], analyzed_at: datetime) -> int:
        """Persist one run's insights atomically under a shared timestamp."""
        if not insights:
            return 0
        stamp = _as_utc(analyzed_at)
        async with self._session("Insert insights") as session:
            session.add_all(
                [_to_record(insight, stamp, position) for position, insight in enumerate(insights)]
            )
            await session.flush()
        logger.info("Stored %d insights at %s", len(insights), stamp.isoformat())
        return len(insights)

    async def latest_insights(self) -> tuple[datetime | None, list[Insight]]:
        """The most recent run's insights in validator order."""
        latest = await self.last_run_timestamp()
        if latest is None:
            return None, []
        async with self._session("Latest insights") as session:
            result = await session.execute(
                select(InsightRecord)
                .where(InsightRecord.analyzed_at == latest)
                .order_by(InsightRecord.position)
            )
            return latest, [_to_insight(row) for row in result.scalars().all()]

    async def search_insights(self, query: str, limit: int = 10) -> list[Insight]:
        pattern = f"%{query}%"
        async with self._session("Insight search") as session:
            result = await session.execute(
                select(InsightRecord)
                .where(
                    or_(
                        InsightRecord.topic.ilike(pattern),
                        InsightRecord.summary.ilike(pattern),
                    )
                )
                .order_by(InsightRecord.analyzed_at.desc(), InsightRecord.position)
                .limit(limit)
            )
            return [_to_insight(row) for row in result.scalars().all()]

    async def status(self) -> StoreStatus:
        async with self._session("Status") as session:
            signal_count = await session.scalar(select(func.count()).select_from(RawSignal))
            insight_count = await session.scalar(select(func.count()).select_from(InsightRecord))
            last = await session.scalar(select(func.max(InsightRecord.analyzed_at)))
        return StoreStatus(
            signal_count=signal_count or 0,
            insight_count=insight_count or 0,
            last_analysis=_as_utc(last),
        )
