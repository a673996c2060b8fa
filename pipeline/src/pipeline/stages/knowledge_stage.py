"""Knowledge stage - ask the model what it knows about recent developments."""
from __future__ import annotations

import logging

from deeptrend.errors import SynthesisError
from deeptrend.services.synthesis import SynthesisEngine

from pipeline.prompts.analysis import KNOWLEDGE_PROMPT

logger = logging.getLogger(__name__)


async def run_knowledge_stage(engine: SynthesisEngine) -> str | None:
    """Return the model's notes, or None when the call fails; never raises SynthesisError."""
    try:
        text = await engine.complete(KNOWLEDGE_PROMPT)
    except SynthesisError as e:
        logger.warning("LLM knowledge extraction failed (non-fatal): %s", e)
        return None
    text = text.strip()
    if text:
        logger.info("LLM knowledge: %d chars", len(text))
    return text or None
