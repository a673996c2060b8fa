"""Shared fixtures: trust registry, signal factory and an on-disk SQLite store."""

import pytest
import pytest_asyncio
from deeptrend.database import create_engine_for_url, init_db
from deeptrend.schemas.signals import Signal
from deeptrend.services.signal_store import SignalStore
from deeptrend.services.trust import build_trust_registry
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker



@pytest.fixture
def registry():
    return build_trust_registry()


@pytest.fixture
def make_signal():
    """Build a Signal with sensible defaults; keyword overrides win."""

    def _make(natural_id="sig-1", source="reddit", tags=("llm",), **overrides):
        data = {
            "source": source,
            "natural_id": natural_id,
            "title": f"Title {natural_id}",
            "body": "Body",
            "url": f"https://example.com/{natural_id}",
            "tags": list(tags),
        }
        data.update(overrides)
        return Signal(**data)

    return _make


@pytest_asyncio.fixture
async def store(tmp_path):
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'deeptrend.db'}")
    await init_db(engine)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    yield SignalStore(factory)
    await engine.dispose()
