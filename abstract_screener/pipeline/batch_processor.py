"""Process one bounded batch of a queued session.

A session larger than one batch is finished over several invocations: each
call claims the session, evaluates at most ``batch_size`` pending articles and
either completes the session or puts it back in the queue.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Sequence

from abstract_screener.errors import ConfigurationError, InvalidTransitionError, ScreeningError
from abstract_screener.llm import ScreeningClient
from abstract_screener.models import (
    AISettings,
    ArticleRecord,
    ArticleResult,
    BatchResult,
    Criterion,
    ResultStatus,
)
from abstract_screener.storage import ScreeningRepository

from .article_processor import ArticleProcessor
from .batch_selector import BatchSelector
from .state_manager import SessionStateMachine

logger = logging.getLogger(__name__)


class BatchProcessor:
    def __init__(
        self,
        repository: ScreeningRepository,
        client: ScreeningClient,
        *,
        state: SessionStateMachine | None = None,
        selector: BatchSelector | None = None,
        batch_size: int | None = None,
        max_workers: int = 1,
    ) -> None:
        if batch_size is not None and batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.repository = repository
        self.selector = selector or BatchSelector(repository)
        self.state = state or SessionStateMachine(repository, selector=self.selector)
        self.article_processor = ArticleProcessor(client, repository)
        self.batch_size = batch_size
        self.max_workers = max_workers

    def process_session(self, session_id: str) -> BatchResult:
        """Claim ``session_id`` and evaluate its next batch.

        Returns a result with ``claimed=False`` when another invocation holds
        the session or it is not queued; ``is_completed`` is then true only if
        the session had already finished.
        """
        if not self.state.mark_running(session_id):
            session = self.repository.get_session(session_id)
            logger.info(
                "Session %s not claimed (status %s)", session_id, session.status.value
            )
            return BatchResult(
                session_id=session_id, claimed=False, is_completed=session.evaluated
            )

        started = time.monotonic()
        try:
            settings = self.repository.get_latest_settings()
            criteria = self.repository.get_session_criteria(session_id)
            if not criteria:
                raise ConfigurationError(f"Session {session_id} has no inclusion criteria")
            batch_size = self.batch_size or settings.batch_size
            articles = self.selector.next_batch(session_id, batch_size)
        except (ScreeningError, ValueError) as exc:
            logger.error("Session %s failed before evaluation: %s", session_id, exc)
            self.state.mark_failed(session_id, str(exc))
            return BatchResult(session_id=session_id, error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected error preparing session %s", session_id)
            error = str(exc) or exc.__class__.__name__
            self.state.mark_failed(session_id, error)
            return BatchResult(session_id=session_id, error=error)

        if not articles:
            completed = self._finish(session_id)
            logger.info("Session %s has no pending articles", session_id)
            return BatchResult(session_id=session_id, processed_count=0, is_completed=completed)

        logger.info(
            "Session %s: evaluating %d article(s) (batch size %d)",
            session_id,
            len(articles),
            batch_size,
        )
        results = self._evaluate_articles(articles, criteria, settings)

        if self.selector.has_pending_articles(session_id):
            self.state.mark_batch_incomplete(session_id)
            completed = False
        else:
            completed = self._finish(session_id)

        succeeded = sum(1 for result in results if result.status is ResultStatus.SUCCESS)
        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(
            "Session %s: evaluated %d of %d article(s), completed=%s in %.0f ms",
            session_id,
            succeeded,
            len(results),
            completed,
            elapsed_ms,
        )
        return BatchResult(
            session_id=session_id,
            processed_count=succeeded,
            per_article_results=results,
            is_completed=completed,
        )

    def _finish(self, session_id: str) -> bool:
        """Complete the session, or re-queue it if articles were flagged meanwhile."""
        try:
            return self.state.mark_completed(session_id)
        except InvalidTransitionError as exc:
            logger.info("Session %s re-queued instead of completed: %s", session_id, exc)
            self.state.mark_batch_incomplete(session_id)
            return False

    def _evaluate_articles(
        self,
        articles: Sequence[ArticleRecord],
        criteria: Sequence[Criterion],
        settings: AISettings,
    ) -> list[ArticleResult]:
        if self.max_workers == 1 or len(articles) == 1:
            return [
                self.article_processor.process_article(article, criteria, settings)
                for article in articles
            ]

        results: list[ArticleResult | None] = [None] * len(articles)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(
                    self.article_processor.process_article, article, criteria, settings
                ): index
                for index, article in enumerate(articles)
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        return [result for result in results if result is not None]
