"""Fixtures shared by the pipeline stage tests."""

import pytest
from deeptrend.schemas.insights import Insight, InsightKind, Priority
from deeptrend.schemas.signals import Signal
from deeptrend.services.trust import build_trust_registry


@pytest.fixture
def registry():
    return build_trust_registry()


@pytest.fixture
def make_signal():
    def _make(natural_id="sig-1", source="reddit", tags=("llm",), **overrides):
        data = {
            "source": source,
            "natural_id": natural_id,
            "title": f"Title {natural_id}",
            "tags": list(tags),
        }
        data.update(overrides)
        return Signal(**data)

    return _make


@pytest.fixture
def make_insight():
    def _make(topic="agent frameworks", priority=Priority.P1, sources=("techmeme",), **overrides):
        data = {
            "kind": InsightKind.TREND,
            "topic": topic,
            "summary": f"Summary of {topic}.",
            "confidence": 0.8,
            "priority": priority,
            "sources": tuple(sources),
        }
        data.update(overrides)
        return Insight(**data)

    return _make
