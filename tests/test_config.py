"""Tests for environment-backed application settings."""

import pytest
from deeptrend.config import Settings, get_settings, reset_settings_cache


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    reset_settings_cache()
    yield
    reset_settings_cache()


def test_defaults(monkeypatch):
    for name in ("SYNTHESIS_BACKEND", "SYNTHESIS_CLI", "OUTPUT_DIR"):
        monkeypatch.delenv(name, raising=False)
    s = Settings(_env_file=None)
    assert s.synthesis_backend == "cli"
    assert s.synthesis_cli == "claude"
    assert s.synthesis_timeout_seconds == 120.0
    assert s.knowledge_timeout_seconds == 60.0
    assert s.output_dir == "public"


def test_env_aliases(monkeypatch):
    monkeypatch.setenv("SYNTHESIS_BACKEND", "api")
    monkeypatch.setenv("SYNTHESIS_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("SITE_URL", "https://example.org")
    s = get_settings()
    assert s.synthesis_backend == "api"
    assert s.synthesis_timeout_seconds == 30.0
    assert s.site_url == "https://example.org"


def test_settings_are_cached(monkeypatch):
    monkeypatch.setenv("OUTPUT_DIR", "first")
    first = get_settings()
    monkeypatch.setenv("OUTPUT_DIR", "second")
    assert get_settings() is first
    reset_settings_cache()
    assert get_settings().output_dir == "second"
