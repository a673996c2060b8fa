"""OpenRouter-compatible LLM client with slot-based configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from deeptrend.errors import ConfigurationError, SynthesisError

logger = logging.getLogger(__name__)


@dataclass
class LLMSlotConfig:
    """Configuration for a single LLM slot."""

    slot: str
    api_endpoint: str
    model_id: str
    api_key: str
    max_tokens: int | None = None
    temperature: float = 0.3
    extra_params: dict[str, Any] = field(default_factory=dict)


class LLMClient:
    """Vendor-agnostic LLM client using the chat-completions API shape."""

    def __init__(self, timeout: float = 120.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._slots: dict[str, LLMSlotConfig] = {}

    def configure_slot(self, config: LLMSlotConfig) -> None:
        """Register a slot configuration."""
        if not config.api_key:
            raise ConfigurationError(f"LLM slot '{config.slot}' has no API key configured")
        self._slots[config.slot] = config

    def get_slot(self, slot: str) -> LLMSlotConfig:
        """Get configuration for a slot."""
        if slot not in self._slots:
            raise ConfigurationError(f"LLM slot '{slot}' not configured")
        return self._slots[slot]

    @staticmethod
    def _raise_for_status_with_context(response: httpx.Response) -> None:
        try:
            response.raise_for_status()
            return
        except httpx.HTTPStatusError as exc:
            detail = response.text.strip()
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                if isinstance(body.get("error"), dict):
                    detail = body["error"].get("message") or body["error"].get("code") or detail
                elif body.get("error"):
                    detail = str(body["error"])
                elif body.get("message"):
                    detail = str(body["message"])
            if len(detail) > 400:
                detail = detail[:400]
            raise SynthesisError(
                f"LLM API request failed ({response.status_code}) at {response.request.url}: {detail}"
            ) from exc

    async def generate(
        self,
        slot: str,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate a completion using the specified slot.

        Returns the assistant message content.
        """
        config = self.get_slot(slot)

        headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }

        payload: dict[str, Any] = {
            "model": config.model_id,
            "messages": messages,
            "temperature": temperature if temperature is not None else config.temperature,
        }

        tokens = max_tokens or config.max_tokens
        if tokens:
            payload["max_tokens"] = tokens

        # Merge extra params
        payload.update(config.extra_params)

        endpoint = config.api_endpoint.rstrip("/")
        url = f"{endpoint}/chat/completions"

        logger.info("LLM request to %s slot=%s model=%s", url, slot, config.model_id)

        try:
            response = await self._client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise SynthesisError(f"LLM API request to {url} failed: {exc}") from exc
        self._raise_for_status_with_context(response)

        try:
            data = response.json()
        except ValueError as exc:
            raise SynthesisError(f"LLM API returned a non-JSON body: {exc}") from exc
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise SynthesisError(f"LLM API response missing message content: {exc}") from exc

        logger.info("LLM response slot=%s tokens=%s", slot, data.get("usage", {}))
        return content or ""

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def strip_json_fencing(text: str) -> str:
    """Strip markdown JSON fencing if present."""
    text = text.strip()
    if text.startswith("```"):
        # Remove opening fence
        first_newline = text.find("\n")
        text = text[first_newline + 1 :] if first_newline != -1 else ""
    if text.endswith("```"):
        text = text[:-3].rstrip()
    return text
