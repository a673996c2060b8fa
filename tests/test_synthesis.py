"""Tests for synthesis engine adapters and the LLM client."""

import json
import sys

import httpx
import pytest
from deeptrend.config import Settings
from deeptrend.errors import ConfigurationError, SynthesisError
from deeptrend.services.llm_client import LLMClient, LLMSlotConfig, strip_json_fencing
from deeptrend.services.synthesis import (
    CLI_ARGS,
    ApiSynthesisEngine,
    CliSynthesisEngine,
    build_synthesis_engine,
)


def _settings(**overrides):
    data = {"_env_file": None, "LLM_API_KEY": "test-key"}
    data.update(overrides)
    return Settings(**data)


def _chat_transport(content="[]", status=200, captured=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if captured is not None:
            captured.append(request)
        if status != 200:
            return httpx.Response(status, json={"error": {"message": "upstream exploded"}})
        return httpx.Response(
            200, json={"choices": [{"message": {"content": content}}], "usage": {"total_tokens": 3}}
        )

    return httpx.MockTransport(handler)


def _api_engine(transport, timeout=5.0):
    client = LLMClient(transport=transport)
    client.configure_slot(
        LLMSlotConfig(
            slot="synthesis",
            api_endpoint="https://llm.example.com/v1/",
            model_id="test-model",
            api_key="test-key",
        )
    )
    return ApiSynthesisEngine(client, timeout=timeout)


# ---------- CLI backend ----------


class TestCliSynthesisEngine:
    async def test_prompt_goes_to_stdin(self):
        engine = CliSynthesisEngine(
            [sys.executable, "-c", "import sys; sys.stdout.write(sys.stdin.read().upper())"]
        )
        assert await engine.complete("hello counsel") == "HELLO COUNSEL"

    async def test_nonzero_exit(self):
        engine = CliSynthesisEngine(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"]
        )
        with pytest.raises(SynthesisError, match="exited with code 3: boom"):
            await engine.complete("x")

    async def test_timeout_kills_process(self):
        engine = CliSynthesisEngine([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)
        with pytest.raises(SynthesisError, match="timed out"):
            await engine.complete("x")

    async def test_spawn_failure(self, tmp_path):
        engine = CliSynthesisEngine([str(tmp_path / "no-such-binary")])
        with pytest.raises(SynthesisError, match="Failed to spawn"):
            await engine.complete("x")

    def test_empty_command_rejected(self):
        with pytest.raises(ConfigurationError):
            CliSynthesisEngine([])

    def test_from_settings_appends_cli_args(self):
        engine = CliSynthesisEngine.from_settings(
            _settings(SYNTHESIS_CLI="claude --model opus", SYNTHESIS_TIMEOUT_SECONDS=45)
        )
        assert engine.command == ["claude", "--model", "opus", *CLI_ARGS]
        assert engine.timeout == 45.0


# ---------- API backend ----------


class TestApiSynthesisEngine:
    async def test_returns_message_content(self):
        captured = []
        engine = _api_engine(_chat_transport(content='[{"topic": "x"}]', captured=captured))
        try:
            assert await engine.complete("prompt") == '[{"topic": "x"}]'
        finally:
            await engine.close()
        request = captured[0]
        assert str(request.url) == "https://llm.example.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"
        payload = json.loads(request.content)
        assert payload["model"] == "test-model"
        assert payload["messages"] == [{"role": "user", "content": "prompt"}]

    async def test_http_error_becomes_synthesis_error(self):
        engine = _api_engine(_chat_transport(status=500))
        try:
            with pytest.raises(SynthesisError, match="upstream exploded"):
                await engine.complete("prompt")
        finally:
            await engine.close()

    async def test_transport_failure_becomes_synthesis_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        engine = _api_engine(httpx.MockTransport(handler))
        try:
            with pytest.raises(SynthesisError, match="failed"):
                await engine.complete("prompt")
        finally:
            await engine.close()

    async def test_malformed_response(self):
        engine = _api_engine(httpx.MockTransport(lambda request: httpx.Response(200, json={})))
        try:
            with pytest.raises(SynthesisError, match="missing message content"):
                await engine.complete("prompt")
        finally:
            await engine.close()

    async def test_non_json_body_becomes_synthesis_error(self):
        engine = _api_engine(
            httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>"))
        )
        try:
            with pytest.raises(SynthesisError, match="non-JSON body"):
                await engine.complete("prompt")
        finally:
            await engine.close()


# ---------- Backend selection ----------


class TestBuildSynthesisEngine:
    def test_cli_backend(self):
        engine = build_synthesis_engine(_settings(SYNTHESIS_BACKEND="cli"), timeout=10)
        assert isinstance(engine, CliSynthesisEngine)
        assert engine.timeout == 10

    async def test_api_backend(self):
        engine = build_synthesis_engine(_settings(SYNTHESIS_BACKEND="API"))
        assert isinstance(engine, ApiSynthesisEngine)
        await engine.close()

    def test_api_backend_requires_key(self):
        with pytest.raises(ConfigurationError, match="no API key"):
            build_synthesis_engine(_settings(SYNTHESIS_BACKEND="api", LLM_API_KEY=""))

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError, match="Unknown synthesis backend"):
            build_synthesis_engine(_settings(SYNTHESIS_BACKEND="carrier-pigeon"))


def test_unconfigured_slot():
    client = LLMClient()
    with pytest.raises(ConfigurationError, match="not configured"):
        client.get_slot("synthesis")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('```json\n[{"a": 1}]\n```', '[{"a": 1}]'),
        ("```\n[]\n```", "[]"),
        ("  []  ", "[]"),
    ],
)
def test_strip_json_fencing(raw, expected):
    assert strip_json_fencing(raw) == expected
