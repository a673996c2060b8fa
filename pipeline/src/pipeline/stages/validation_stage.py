"""Validation stage - extract and coerce typed insights from raw synthesis output."""
from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable, Iterator
from typing import Any

from deeptrend.errors import SynthesisFormatError
from deeptrend.schemas.insights import Insight, InsightKind, InsightPattern, Priority
from deeptrend.services.llm_client import strip_json_fencing
from deeptrend.services.pipeline_settings import ValidationSettings

logger = logging.getLogger(__name__)

VALID_KINDS = {kind.value for kind in InsightKind}
VALID_PRIORITIES = {priority.value for priority in Priority}
VALID_PATTERNS = {pattern.value for pattern in InsightPattern}
PATTERN_ALIASES = {"cross_domain": "cross_domain_surprise", "surprise": "cross_domain_surprise"}
FALLBACK_KIND = InsightKind.DIVERGENCE.value


def _to_string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value if str(item).strip()]
    else:
        text = str(value).strip()
        items = [text] if text else []
    return list(dict.fromkeys(items))


def _normalize_token(value: Any) -> str:
    return str(value or "").strip().lower().replace("-", "_").replace(" ", "_")


def _closing_bracket(text: str, start: int) -> int | None:
    """Index of the bracket closing the one at ``start``; brackets inside strings are ignored."""
    depth = 0
    in_string = False
    escaped = False
    for end in range(start, len(text)):
        c = text[end]
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c in "[{":
            depth += 1
        elif c in "]}":
            depth -= 1
            if depth == 0:
                return end
    return None


def _next_opening(text: str, pos: int) -> int:
    positions = [i for i in (text.find("[", pos), text.find("{", pos)) if i != -1]
    return min(positions, default=-1)


def _top_level_arrays(text: str) -> Iterator[str]:
    """Yield balanced top-level ``[...]`` spans.

    Brackets nested in an earlier span, or in a top-level ``{...}`` object,
    are never candidates.
    """
    start = _next_opening(text, 0)
    while start != -1:
        end = _closing_bracket(text, start)
        if end is None:
            raise SynthesisFormatError("Synthesis output array is truncated or unbalanced")
        if text[start] == "[":
            yield text[start : end + 1]
        start = _next_opening(text, end + 1)


def extract_json_array(raw_output: str) -> list[Any]:
    """Parse the first top-level ``[...]`` span of ``raw_output`` that is valid JSON.

    Spans that fail to parse are skipped whole; arrays nested inside them
    (such as an element's ``sources`` list) are never returned.
    """
    text = strip_json_fencing(raw_output or "")
    last_error: json.JSONDecodeError | None = None
    for candidate in _top_level_arrays(text):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError as exc:
            last_error = exc
    if last_error is not None:
        raise SynthesisFormatError(
            f"Synthesis output array is not valid JSON: {last_error}"
        ) from last_error
    raise SynthesisFormatError("No JSON array found in synthesis output")


def _coerce_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(confidence):
        return 0.0
    return min(max(confidence, 0.0), 1.0)


def _coerce_kind(raw: dict[str, Any], supported: set[str]) -> tuple[str, str | None]:
    kind = _normalize_token(raw.get("insight_type", raw.get("kind")))
    if kind in supported:
        return kind, None
    if kind in VALID_KINDS:
        note = f"kind '{kind}' not supported by destination; stored as '{FALLBACK_KIND}'"
    else:
        note = f"unknown kind '{kind or 'missing'}'; stored as '{FALLBACK_KIND}'"
    return FALLBACK_KIND, note


def _coerce_pattern(value: Any) -> str | None:
    pattern = _normalize_token(value)
    pattern = PATTERN_ALIASES.get(pattern, pattern)
    return pattern if pattern in VALID_PATTERNS else None


def normalize_insight(
    raw: dict[str, Any],
    supported_kinds: set[str],
    summary_max_chars: int = 1200,
) -> Insight:
    kind, remap_note = _coerce_kind(raw, supported_kinds)
    if remap_note:
        logger.warning("Remapped insight %r: %s", raw.get("topic"), remap_note)

    priority_raw = _normalize_token(raw.get("priority"))
    claimed = priority_raw if priority_raw in VALID_PRIORITIES else None

    summary = str(raw.get("summary") or "").strip()
    if len(summary) > summary_max_chars:
        summary = summary[: summary_max_chars - 3].rstrip() + "..."

    return Insight(
        kind=kind,
        topic=str(raw.get("topic") or "").strip() or "untitled",
        summary=summary,
        confidence=_coerce_confidence(raw.get("confidence")),
        priority=claimed or Priority.P2.value,
        sources=tuple(_to_string_list(raw.get("sources"))),
        claimed_priority=claimed,
        claimed_tiers=tuple(_normalize_token(t) for t in _to_string_list(raw.get("convergence_tiers"))),
        pattern=_coerce_pattern(raw.get("pattern")),
        remap_note=remap_note,
    )


def parse_insights(
    raw_output: str,
    supported_kinds: Iterable[str] | None = None,
    settings: ValidationSettings | None = None,
) -> list[Insight]:
    """Parse synthesis output into insights.

    Raises SynthesisFormatError only when no JSON array can be located.
    Each element is coerced independently; non-object elements are skipped.
    """
    vs = settings or ValidationSettings()
    supported = set(supported_kinds if supported_kinds is not None else vs.supported_kinds)
    supported &= VALID_KINDS
    supported.add(FALLBACK_KIND)

    elements = extract_json_array(raw_output)
    insights: list[Insight] = []
    for index, element in enumerate(elements):
        if not isinstance(element, dict):
            logger.warning("Skipping non-object insight element %d: %r", index, element)
            continue
        insights.append(normalize_insight(element, supported, vs.summary_max_chars))
    logger.info("Parsed %d insights from %d elements", len(insights), len(elements))
    return insights
