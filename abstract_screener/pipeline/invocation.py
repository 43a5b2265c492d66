"""Entry point shared by the HTTP server and the CLI.

One invocation runs one cycle: recover stuck sessions, pick the next queued
session, process a single batch of it and report what happened. Invocations
keep no state between calls; the database decides what comes next.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from abstract_screener.errors import SessionNotFoundError
from abstract_screener.llm import LLMService, ScreeningClient
from abstract_screener.models import (
    AdHocEvaluationRequest,
    BatchResult,
    EnqueueRequest,
    InvocationSummary,
)
from abstract_screener.storage import Database, ScreeningRepository, utcnow

from .adhoc import AdHocEvaluator
from .batch_processor import BatchProcessor
from .batch_selector import BatchSelector
from .config import PipelineConfiguration
from .enqueue import SessionEnqueuer
from .reaper import StuckSessionReaper
from .state_manager import SessionStateMachine

logger = logging.getLogger(__name__)

_ADHOC_KEYS = {"articleId", "article_id", "title", "abstract", "criteria"}
_ENQUEUE_KEYS = {"sessionId", "session_id"}


@dataclass
class PipelineContext:
    """Collaborators for one configuration, wired together."""

    config: PipelineConfiguration
    repository: ScreeningRepository
    client: ScreeningClient
    selector: BatchSelector
    state: SessionStateMachine
    reaper: StuckSessionReaper
    processor: BatchProcessor
    adhoc: AdHocEvaluator
    enqueuer: SessionEnqueuer

    @classmethod
    def build(
        cls,
        config: PipelineConfiguration,
        *,
        llm_service: LLMService | None = None,
        database: Database | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "PipelineContext":
        if database is None:
            database = Database(config.database_url)
        if llm_service is None:
            from abstract_screener.llm.provider_registry import create_provider_chain

            providers = create_provider_chain(
                dotenv_path=config.dotenv_path,
                primary=config.llm_primary,
                fallbacks=config.llm_fallback or None,
            )
            logger.info("Using LLM provider(s): %s", [p.name for p in providers])
            llm_service = LLMService(providers)

        repository = ScreeningRepository(database)
        client = ScreeningClient(llm_service)
        selector = BatchSelector(repository)
        state = SessionStateMachine(repository, selector=selector, clock=clock)
        return cls(
            config=config,
            repository=repository,
            client=client,
            selector=selector,
            state=state,
            reaper=StuckSessionReaper(
                repository, timeout_minutes=config.stuck_timeout_minutes, clock=clock
            ),
            processor=BatchProcessor(
                repository,
                client,
                state=state,
                selector=selector,
                batch_size=config.batch_size,
                max_workers=config.max_workers,
            ),
            adhoc=AdHocEvaluator(repository, client),
            enqueuer=SessionEnqueuer(repository, state),
        )


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "Invalid request: " + "; ".join(parts)


class InvocationHandler:
    def __init__(self, context: PipelineContext) -> None:
        self.context = context

    def handle(self, body: Any = None) -> tuple[int, dict[str, Any]]:
        """Dispatch one request body and return ``(status_code, payload)``.

        * empty body or ``{}``: run one queue cycle
        * ``{articleId, title, abstract, criteria}``: ad-hoc evaluation
        * ``{sessionId, articleIds?}``: queue a session for evaluation
        """
        invocation_id = str(uuid.uuid4())
        try:
            if body is not None and not isinstance(body, Mapping):
                return 400, {"invocationId": invocation_id, "error": "Request body must be a JSON object"}

            if body and _ADHOC_KEYS.intersection(body):
                return self._handle_adhoc(invocation_id, body)
            if body and _ENQUEUE_KEYS.intersection(body):
                return self._handle_enqueue(invocation_id, body)

            summary = self.run_cycle(invocation_id)
            return 200, summary.to_payload()
        except Exception as exc:
            logger.exception("Invocation %s failed", invocation_id)
            return 500, {"invocationId": invocation_id, "error": str(exc) or exc.__class__.__name__}

    def _handle_adhoc(self, invocation_id: str, body: Mapping[str, Any]) -> tuple[int, dict[str, Any]]:
        try:
            request = AdHocEvaluationRequest.model_validate(dict(body))
        except ValidationError as exc:
            return 400, {"invocationId": invocation_id, "error": _validation_message(exc)}
        result = self.context.adhoc.evaluate(request)
        return 200, result.to_payload()

    def _handle_enqueue(self, invocation_id: str, body: Mapping[str, Any]) -> tuple[int, dict[str, Any]]:
        try:
            request = EnqueueRequest.model_validate(dict(body))
        except ValidationError as exc:
            return 400, {"invocationId": invocation_id, "error": _validation_message(exc)}
        try:
            result = self.context.enqueuer.enqueue(request)
        except SessionNotFoundError as exc:
            return 404, {"invocationId": invocation_id, "error": str(exc)}
        payload = {"invocationId": invocation_id, "message": "Article evaluation queued"}
        payload.update(result.to_payload())
        return 200, payload

    def run_cycle(self, invocation_id: str | None = None) -> InvocationSummary:
        """Recover, select, process one batch and summarise."""
        invocation_id = invocation_id or str(uuid.uuid4())
        started = time.monotonic()
        ctx = self.context

        recovered = ctx.reaper.recover_stuck_sessions()
        candidates = ctx.selector.list_awaiting_sessions(limit=ctx.config.session_limit)

        result: BatchResult | None = None
        for session_id in candidates:
            attempt = ctx.processor.process_session(session_id)
            if attempt.claimed:
                result = attempt
                break
            logger.info("Session %s was claimed elsewhere; trying the next one", session_id)

        more_queued = ctx.selector.count_awaiting_sessions() > 0
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if result is None:
            message = (
                "No sessions awaiting evaluation."
                if not candidates
                else "No queued session could be claimed."
            )
            logger.info("Invocation %s: %s", invocation_id, message)
            return InvocationSummary(
                invocation_id=invocation_id,
                message=message,
                more_sessions_queued=more_queued,
                recovered_sessions=recovered,
                processing_time_ms=elapsed_ms,
            )

        if result.error:
            message = f"Session evaluation failed: {result.error}"
        elif not result.per_article_results:
            message = "No articles to process."
        else:
            message = "Batch processed successfully."

        logger.info(
            "Invocation %s: session %s processed=%d completed=%s more_queued=%s (%d ms)",
            invocation_id,
            result.session_id,
            result.processed_count,
            result.is_completed,
            more_queued,
            elapsed_ms,
        )
        return InvocationSummary(
            invocation_id=invocation_id,
            message=message,
            session_id=result.session_id,
            processed_count=result.processed_count,
            is_session_completed=result.is_completed,
            more_sessions_queued=more_queued,
            per_article_results=result.per_article_results,
            recovered_sessions=recovered,
            processing_time_ms=elapsed_ms,
        )
