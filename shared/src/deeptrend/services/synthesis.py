"""Synthesis engine adapters: prompt text in, raw model text out.

Every failure mode (spawn failure, timeout, non-zero exit, HTTP error)
surfaces as ``SynthesisError`` so callers can treat it uniformly.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from typing import Protocol

from deeptrend.config import Settings
from deeptrend.errors import ConfigurationError, SynthesisError
from deeptrend.services.llm_client import LLMClient, LLMSlotConfig

logger = logging.getLogger(__name__)

CLI_ARGS = ["-p", "--output-format", "text", "--no-session-persistence", "--max-turns", "1"]


class SynthesisEngine(Protocol):
    async def complete(self, prompt: str) -> str: ...

    async def close(self) -> None: ...


class CliSynthesisEngine:
    """Runs a local LLM CLI, writing the prompt to stdin and reading stdout."""

    def __init__(self, command: list[str], timeout: float = 120.0) -> None:
        if not command:
            raise ConfigurationError("Synthesis CLI command is empty")
        self.command = list(command)
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, timeout: float | None = None) -> CliSynthesisEngine:
        command = [*shlex.split(settings.synthesis_cli), *CLI_ARGS]
        return cls(command, timeout=timeout or settings.synthesis_timeout_seconds)

    async def complete(self, prompt: str) -> str:
        name = os.path.basename(self.command[0])
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, "CLAUDECODE": ""},
            )
        except OSError as exc:
            raise SynthesisError(f"Failed to spawn {name}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(prompt.encode("utf-8")), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise SynthesisError(f"{name} timed out after {self.timeout:.0f}s") from exc

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[:500]
            raise SynthesisError(f"{name} exited with code {proc.returncode}: {detail}")

        text = stdout.decode("utf-8", errors="replace")
        logger.info("Synthesis CLI returned %d chars", len(text))
        return text

    async def close(self) -> None:
        return None


class ApiSynthesisEngine:
    """Chat-completions backend via the shared LLM client."""

    slot = "synthesis"

    def __init__(self, client: LLMClient, timeout: float = 120.0) -> None:
        self._client = client
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, timeout: float | None = None) -> ApiSynthesisEngine:
        effective_timeout = timeout or settings.synthesis_timeout_seconds
        client = LLMClient(timeout=effective_timeout)
        client.configure_slot(
            LLMSlotConfig(
                slot=cls.slot,
                api_endpoint=settings.llm_api_endpoint,
                model_id=settings.llm_model,
                api_key=settings.llm_api_key,
                temperature=settings.llm_temperature,
            )
        )
        return cls(client, timeout=effective_timeout)

    async def complete(self, prompt: str) -> str:
        try:
            return await asyncio.wait_for(
                self._client.generate(self.slot, [{"role": "user", "content": prompt}]),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise SynthesisError(f"LLM API call timed out after {self.timeout:.0f}s") from exc

    async def close(self) -> None:
        await self._client.close()


def build_synthesis_engine(settings: Settings, timeout: float | None = None) -> SynthesisEngine:
    """Select the configured backend; raises ConfigurationError on bad config."""
    backend = settings.synthesis_backend.strip().lower()
    if backend == "cli":
        return CliSynthesisEngine.from_settings(settings, timeout=timeout)
    if backend == "api":
        return ApiSynthesisEngine.from_settings(settings, timeout=timeout)
    raise ConfigurationError(f"Unknown synthesis backend: {settings.synthesis_backend!r}")
