"""Strict parsing of screening answers returned by an LLM.

The model is asked to answer with two labelled lines::

    Decision: Include | Exclude | Unsure
    Explanation: <free text>

Parsing never guesses. A response is accepted only when it carries exactly
one decision from the allowed set and a non-empty explanation; anything else
raises :class:`LLMParseError`. As an alternate shape, a JSON object with
``decision`` and ``explanation`` keys is accepted under the same rules.
"""

from __future__ import annotations

import json
import re
from typing import Any

from json_repair import repair_json
from pydantic import ValidationError

from abstract_screener.models import Decision, Evaluation

from .provider import LLMParseError

_FENCE_LINE_RE = re.compile(r"^\s*(```|~~~)[\w+-]*\s*$", re.MULTILINE)
_EMPHASIS_RE = re.compile(r"(\*\*|__)")
_DECISION_RE = re.compile(r"\bDecision\s*:\s*\[?\s*([A-Za-z]+)", re.IGNORECASE)
# Stops at a later "Decision:" line when the model answers in reverse order.
_EXPLANATION_RE = re.compile(
    r"\bExplanation\s*:[ \t]*(.*?)(?=\n\s*Decision\s*:|\Z)", re.IGNORECASE | re.DOTALL
)


def strip_code_fences(text: str) -> str:
    """Remove Markdown code-fence marker lines, keeping the fenced content."""
    return _FENCE_LINE_RE.sub("", text).strip()


def _clean(text: str) -> str:
    cleaned = strip_code_fences(text)
    # "**Decision:** Include" is a common variant of the requested format.
    return _EMPHASIS_RE.sub("", cleaned).strip()


def parse_evaluation(text: str) -> Evaluation:
    """Parse a raw completion into an :class:`Evaluation`.

    Raises:
        LLMParseError: If the decision or explanation is missing, ambiguous,
            or not one of the allowed values.
    """
    if not isinstance(text, str) or not text.strip():
        raise LLMParseError("Empty response from LLM", response_text=text or "")

    cleaned = _clean(text)
    labels = _DECISION_RE.findall(cleaned)
    if not labels:
        if "{" in cleaned:
            return _parse_json_evaluation(cleaned, raw=text)
        raise LLMParseError("Response is missing a 'Decision:' field", response_text=text)

    try:
        decisions = {Decision.from_label(label) for label in labels}
    except ValueError as exc:
        raise LLMParseError(
            f"Decision must be one of {', '.join(Decision.all_values())}",
            response_text=text,
        ) from exc
    if len(decisions) != 1:
        raise LLMParseError("Response contains conflicting decisions", response_text=text)

    match = _EXPLANATION_RE.search(cleaned)
    if match is None:
        raise LLMParseError(
            "Response is missing an 'Explanation:' field", response_text=text
        )
    explanation = match.group(1).strip()
    if not explanation:
        raise LLMParseError("Explanation is empty", response_text=text)

    return Evaluation(decision=decisions.pop(), explanation=explanation)


def _parse_json_evaluation(cleaned: str, *, raw: str) -> Evaluation:
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if end <= start:
        raise LLMParseError("Response is missing a 'Decision:' field", response_text=raw)

    try:
        payload: Any = json.loads(repair_json(cleaned[start : end + 1]))
    except (ValueError, TypeError) as exc:
        raise LLMParseError("Response JSON could not be parsed", response_text=raw) from exc
    if not isinstance(payload, dict):
        raise LLMParseError("Response JSON is not an object", response_text=raw)

    fields = {str(key).strip().lower(): value for key, value in payload.items()}
    if "decision" not in fields or "explanation" not in fields:
        raise LLMParseError(
            "Response JSON must contain 'decision' and 'explanation'",
            response_text=raw,
        )
    try:
        return Evaluation(decision=fields["decision"], explanation=fields["explanation"])
    except (ValidationError, ValueError) as exc:
        raise LLMParseError(f"Invalid evaluation in response: {exc}", response_text=raw) from exc
