"""Screening client: prompt building, provider call and strict parsing.

Both the queued batch pipeline and the ad-hoc single-article path go through
:meth:`ScreeningClient.evaluate`, so they share one prompt shape and one
parser.
"""

from __future__ import annotations

import logging
import time
from typing import Sequence

from abstract_screener.models import AISettings, Criterion, Evaluation, format_criteria
from abstract_screener.prompt.render_prompt import build_evaluation_prompt

from .provider import CompletionOptions, LLMParseError
from .response_parser import parse_evaluation
from .service import LLMService

logger = logging.getLogger(__name__)


def completion_options(settings: AISettings) -> CompletionOptions:
    return CompletionOptions(
        model=settings.model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        seed=settings.seed,
    )


class ScreeningClient:
    """Evaluate articles against inclusion criteria with an LLM."""

    def __init__(self, llm_service: LLMService) -> None:
        self.llm_service = llm_service

    def evaluate(
        self,
        title: str,
        abstract: str | None,
        criteria: str | Sequence[Criterion | str],
        settings: AISettings,
    ) -> Evaluation:
        """Return the parsed decision for one article.

        Raises:
            LLMProviderError: If every provider fails or is out of quota.
            LLMParseError: If the answer lacks a valid Decision/Explanation.
        """
        criteria_text = criteria if isinstance(criteria, str) else format_criteria(criteria)
        if not criteria_text.strip():
            raise ValueError("criteria must not be empty")

        user_prompt = build_evaluation_prompt(title, abstract, criteria_text)
        started = time.monotonic()
        raw = self.llm_service.complete(
            settings.instructions,
            user_prompt,
            options=completion_options(settings),
        )
        elapsed_ms = (time.monotonic() - started) * 1000
        logger.debug("LLM responded in %.0f ms", elapsed_ms)

        try:
            return parse_evaluation(raw)
        except LLMParseError as exc:
            # Attach the prompt so a failed article can be debugged from logs.
            exc.prompts = [settings.instructions, user_prompt]
            raise
