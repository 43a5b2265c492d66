from __future__ import annotations

import logging
from typing import Any, Mapping

from abstract_screener.llm import ScreeningClient
from abstract_screener.models import AdHocEvaluationRequest, AdHocEvaluationResult
from abstract_screener.storage import ScreeningRepository

logger = logging.getLogger(__name__)


class AdHocEvaluator:
    """Evaluate a single article synchronously, outside the session queue.

    If the article exists its AI decision and explanation are overwritten;
    its ``needs_evaluation`` flag and every session status stay as they are.
    """

    def __init__(self, repository: ScreeningRepository, client: ScreeningClient) -> None:
        self.repository = repository
        self.client = client

    def evaluate(
        self, request: AdHocEvaluationRequest | Mapping[str, Any]
    ) -> AdHocEvaluationResult:
        if not isinstance(request, AdHocEvaluationRequest):
            request = AdHocEvaluationRequest.model_validate(request)

        settings = self.repository.get_latest_settings()
        evaluation = self.client.evaluate(
            request.title, request.abstract, request.criteria_text(), settings
        )

        if self.repository.get_article(request.article_id) is not None:
            self.repository.save_article_evaluation(
                request.article_id, evaluation, clear_pending=False
            )
        else:
            logger.info(
                "Article %s not stored; returning the evaluation without saving it",
                request.article_id,
            )

        return AdHocEvaluationResult(
            article_id=request.article_id,
            decision=evaluation.decision,
            explanation=evaluation.explanation,
        )
