from __future__ import annotations

import logging
import time
from typing import Sequence

from abstract_screener.errors import ScreeningError
from abstract_screener.llm import LLMParseError, LLMProviderError, ScreeningClient
from abstract_screener.models import (
    AISettings,
    ArticleRecord,
    ArticleResult,
    Criterion,
    ResultStatus,
)
from abstract_screener.storage import ScreeningRepository

logger = logging.getLogger(__name__)


class ArticleProcessor:
    """Evaluate one article and store the decision.

    Failures never escape: they come back as an error result and the article
    keeps ``needs_evaluation`` so a later batch retries it. The failed attempt
    is stamped so articles not yet tried are served before it.
    """

    def __init__(self, client: ScreeningClient, repository: ScreeningRepository) -> None:
        self.client = client
        self.repository = repository

    def process_article(
        self,
        article: ArticleRecord,
        criteria: Sequence[Criterion],
        settings: AISettings,
    ) -> ArticleResult:
        started = time.monotonic()
        try:
            evaluation = self.client.evaluate(article.title, article.abstract, criteria, settings)
            self.repository.save_article_evaluation(article.id, evaluation)
        except LLMParseError as exc:
            logger.warning("Unparseable response for article %s: %s", article.id, exc.message)
            logger.debug("Raw response for article %s: %r", article.id, exc.response_text)
            return self._failed(article, exc)
        except (LLMProviderError, ScreeningError, ValueError) as exc:
            logger.warning("Failed to evaluate article %s: %s", article.id, exc)
            return self._failed(article, exc)
        except Exception as exc:
            logger.exception("Unexpected error evaluating article %s", article.id)
            return self._failed(article, exc)

        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(
            "Article %s evaluated as %s in %.0f ms",
            article.id,
            evaluation.decision.value,
            elapsed_ms,
        )
        return ArticleResult(
            article_id=article.id,
            file_id=article.file_id,
            status=ResultStatus.SUCCESS,
            decision=evaluation.decision,
        )

    def _failed(self, article: ArticleRecord, exc: Exception) -> ArticleResult:
        try:
            self.repository.record_failed_attempt(article.id)
        except ScreeningError as record_exc:
            logger.warning(
                "Could not record failed attempt for article %s: %s", article.id, record_exc
            )
        message = exc.message if isinstance(exc, LLMParseError) else str(exc)
        return ArticleResult(
            article_id=article.id,
            file_id=article.file_id,
            status=ResultStatus.ERROR,
            error=message or exc.__class__.__name__,
        )
