from __future__ import annotations

from typing import Callable

import pytest

from abstract_screener.llm.provider import LLMProviderError, LLMQuotaError
from abstract_screener.models import AISettings, Decision, ResultStatus, SessionStatus
from abstract_screener.pipeline.invocation import PipelineContext
from abstract_screener.storage import Database, ScreeningRepository

from conftest import ScriptedProvider, seed_session


def _pending(repository: ScreeningRepository, session_id: str) -> int:
    return repository.count_pending_articles(repository.list_file_ids(session_id))


def test_small_session_completes_in_one_call(
    repository: ScreeningRepository,
    settings: AISettings,
    make_context: Callable[..., PipelineContext],
) -> None:
    session, articles = seed_session(repository, 3)
    ctx = make_context()

    result = ctx.processor.process_session(session.id)

    assert result.claimed
    assert result.processed_count == 3
    assert result.is_completed
    assert [r.article_id for r in result.per_article_results] == [a.id for a in articles]
    assert all(r.status is ResultStatus.SUCCESS for r in result.per_article_results)
    stored = repository.get_session(session.id)
    assert stored.status is SessionStatus.COMPLETED
    assert stored.evaluated and not stored.awaiting_evaluation
    for article in articles:
        saved = repository.get_article(article.id)
        assert saved is not None
        assert saved.ai_decision is Decision.INCLUDE
        assert not saved.needs_evaluation


def test_large_session_takes_ceil_k_over_b_calls(
    repository: ScreeningRepository,
    make_context: Callable[..., PipelineContext],
) -> None:
    repository.save_settings(AISettings(instructions="Screen.", model="gpt-4o-mini", batch_size=10))
    session, _ = seed_session(repository, 15, files=2)
    ctx = make_context()

    first = ctx.processor.process_session(session.id)

    assert first.processed_count == 10
    assert not first.is_completed
    assert repository.get_session(session.id).status is SessionStatus.AWAITING
    assert _pending(repository, session.id) == 5

    second = ctx.processor.process_session(session.id)

    assert second.processed_count == 5
    assert second.is_completed
    assert repository.get_session(session.id).status is SessionStatus.COMPLETED


def test_configured_batch_size_overrides_settings(
    repository: ScreeningRepository,
    settings: AISettings,
    make_context: Callable[..., PipelineContext],
) -> None:
    session, _ = seed_session(repository, 5)
    ctx = make_context(batch_size=2)

    calls = 0
    while True:
        calls += 1
        if ctx.processor.process_session(session.id).is_completed:
            break

    assert calls == 3


def test_article_failure_is_isolated(
    repository: ScreeningRepository,
    settings: AISettings,
    provider: ScriptedProvider,
    make_context: Callable[..., PipelineContext],
) -> None:
    session, articles = seed_session(repository, 3)
    provider.queue(
        "Decision: Exclude\nExplanation: Wrong population.",
        "the model rambled without a decision",
        "Decision: Unsure\nExplanation: Not enough detail.",
    )
    ctx = make_context()

    result = ctx.processor.process_session(session.id)

    statuses = [r.status for r in result.per_article_results]
    assert statuses == [ResultStatus.SUCCESS, ResultStatus.ERROR, ResultStatus.SUCCESS]
    failed = result.per_article_results[1]
    assert failed.article_id == articles[1].id
    assert failed.decision is None
    assert "Decision" in (failed.error or "")
    assert result.processed_count == 2
    assert not result.is_completed
    assert repository.get_session(session.id).status is SessionStatus.AWAITING

    failed_article = repository.get_article(articles[1].id)
    assert failed_article is not None
    assert failed_article.needs_evaluation
    assert failed_article.ai_decision is None


def test_failed_article_is_retried_next_invocation(
    repository: ScreeningRepository,
    settings: AISettings,
    provider: ScriptedProvider,
    make_context: Callable[..., PipelineContext],
) -> None:
    session, articles = seed_session(repository, 2)
    provider.queue("Decision: Include\nExplanation: ok", LLMProviderError("timeout"))
    ctx = make_context()

    ctx.processor.process_session(session.id)
    retry = ctx.processor.process_session(session.id)

    assert [r.article_id for r in retry.per_article_results] == [articles[1].id]
    assert retry.is_completed


def test_stored_decisions_stay_in_allowed_domain(
    repository: ScreeningRepository,
    settings: AISettings,
    provider: ScriptedProvider,
    make_context: Callable[..., PipelineContext],
) -> None:
    session, articles = seed_session(repository, 4)
    provider.queue(
        "Decision: include\nExplanation: a",
        "Decision: Probably\nExplanation: b",
        '{"decision": "EXCLUDE", "explanation": "c"}',
        "Decision: Unsure\nExplanation: d",
    )

    make_context().processor.process_session(session.id)

    decisions = [repository.get_article(a.id).ai_decision for a in articles]  # type: ignore[union-attr]
    assert decisions == [Decision.INCLUDE, None, Decision.EXCLUDE, Decision.UNSURE]


def test_completed_session_is_a_no_op(
    repository: ScreeningRepository,
    settings: AISettings,
    provider: ScriptedProvider,
    make_context: Callable[..., PipelineContext],
) -> None:
    session, _ = seed_session(repository, 2)
    ctx = make_context()
    ctx.processor.process_session(session.id)
    calls_before = len(provider.calls)

    again = ctx.processor.process_session(session.id)

    assert again.claimed is False
    assert again.is_completed
    assert again.processed_count == 0
    assert len(provider.calls) == calls_before


def test_running_session_is_not_processed_twice(
    repository: ScreeningRepository,
    settings: AISettings,
    provider: ScriptedProvider,
    make_context: Callable[..., PipelineContext],
) -> None:
    session, _ = seed_session(repository, 2)
    ctx = make_context()
    ctx.state.mark_running(session.id)

    result = ctx.processor.process_session(session.id)

    assert result.claimed is False
    assert not result.is_completed
    assert provider.calls == []


def test_session_without_pending_articles_completes(
    repository: ScreeningRepository,
    settings: AISettings,
    make_context: Callable[..., PipelineContext],
) -> None:
    session = repository.create_session("Empty", ["Adults"], status=SessionStatus.AWAITING)

    result = make_context().processor.process_session(session.id)

    assert result.processed_count == 0
    assert result.is_completed
    assert repository.get_session(session.id).status is SessionStatus.COMPLETED


def test_missing_settings_fail_the_session(
    repository: ScreeningRepository,
    provider: ScriptedProvider,
    make_context: Callable[..., PipelineContext],
) -> None:
    session, _ = seed_session(repository, 2)

    result = make_context().processor.process_session(session.id)

    assert result.error
    assert result.processed_count == 0
    stored = repository.get_session(session.id)
    assert stored.status is SessionStatus.FAILED_RETRYABLE
    assert "AI settings" in (stored.last_error or "")
    assert provider.calls == []


def test_empty_criteria_fail_the_session(
    repository: ScreeningRepository,
    settings: AISettings,
    provider: ScriptedProvider,
    make_context: Callable[..., PipelineContext],
) -> None:
    session, _ = seed_session(repository, 2, criteria=())

    result = make_context().processor.process_session(session.id)

    assert "criteria" in (result.error or "")
    assert repository.get_session(session.id).status is SessionStatus.FAILED_RETRYABLE
    assert provider.calls == []


def test_quota_exhaustion_is_article_scoped(
    repository: ScreeningRepository,
    settings: AISettings,
    make_context: Callable[..., PipelineContext],
    provider: ScriptedProvider,
) -> None:
    session, _ = seed_session(repository, 2)
    provider.default = LLMQuotaError("rate limited")

    result = make_context().processor.process_session(session.id)

    assert [r.status for r in result.per_article_results] == [ResultStatus.ERROR] * 2
    assert result.processed_count == 0
    assert repository.get_session(session.id).status is SessionStatus.AWAITING


def test_unexpected_error_before_evaluation_fails_the_session(
    repository: ScreeningRepository,
    settings: AISettings,
    provider: ScriptedProvider,
    make_context: Callable[..., PipelineContext],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    session, _ = seed_session(repository, 2)
    ctx = make_context()

    def driver_hiccup() -> AISettings:
        raise RuntimeError("driver hiccup")

    monkeypatch.setattr(ctx.repository, "get_latest_settings", driver_hiccup)

    result = ctx.processor.process_session(session.id)

    assert result.error == "driver hiccup"
    assert result.processed_count == 0
    stored = repository.get_session(session.id)
    assert stored.status is SessionStatus.FAILED_RETRYABLE
    assert stored.last_error == "driver hiccup"
    assert provider.calls == []


def test_always_failing_article_does_not_block_the_rest(
    repository: ScreeningRepository,
    settings: AISettings,
    provider: ScriptedProvider,
    make_context: Callable[..., PipelineContext],
) -> None:
    session, articles = seed_session(repository, 3)
    stuck = articles[0]

    def answer(user_prompt: str) -> str:
        if "Abstract of article 1." in user_prompt:
            return "I cannot decide on this one."
        return "Decision: Include\nExplanation: ok"

    provider.default = answer
    ctx = make_context(batch_size=1)

    for _ in range(4):
        ctx.processor.process_session(session.id)

    still_pending = [a.id for a in articles if repository.get_article(a.id).needs_evaluation]  # type: ignore[union-attr]
    assert still_pending == [stuck.id]
    stored = repository.get_article(stuck.id)
    assert stored is not None
    assert stored.last_attempted_at is not None


def test_articles_flagged_before_completion_requeue_the_session(
    repository: ScreeningRepository,
    settings: AISettings,
    make_context: Callable[..., PipelineContext],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    session, articles = seed_session(repository, 2)
    ctx = make_context()

    def flagged_in_between(session_id: str) -> bool:
        repository.mark_articles_for_evaluation(session_id, [articles[0].id])
        return False

    monkeypatch.setattr(ctx.selector, "has_pending_articles", flagged_in_between)

    result = ctx.processor.process_session(session.id)

    assert result.processed_count == 2
    assert not result.is_completed
    assert repository.get_session(session.id).status is SessionStatus.AWAITING
    assert _pending(repository, session.id) == 1


def test_empty_batch_with_new_pending_articles_requeues_the_session(
    repository: ScreeningRepository,
    settings: AISettings,
    make_context: Callable[..., PipelineContext],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    session, _ = seed_session(repository, 1)
    ctx = make_context()
    monkeypatch.setattr(ctx.selector, "next_batch", lambda session_id, batch_size: [])

    result = ctx.processor.process_session(session.id)

    assert result.error is None
    assert not result.is_completed
    assert repository.get_session(session.id).status is SessionStatus.AWAITING


def test_thread_pool_processes_whole_batch(tmp_path) -> None:
    from abstract_screener.llm.service import LLMService
    from abstract_screener.pipeline.config import PipelineConfiguration

    url = f"sqlite:///{tmp_path / 'threads.db'}"
    database = Database(url)
    database.init_db()
    repository = ScreeningRepository(database)
    repository.save_settings(AISettings(instructions="Screen.", model="gpt-4o-mini", batch_size=6))
    session, articles = seed_session(repository, 6)
    provider = ScriptedProvider()
    ctx = PipelineContext.build(
        PipelineConfiguration(database_url=url, max_workers=3),
        llm_service=LLMService([provider]),
        database=database,
    )

    result = ctx.processor.process_session(session.id)
    database.dispose()

    assert result.is_completed
    assert [r.article_id for r in result.per_article_results] == [a.id for a in articles]
    assert len(provider.calls) == 6


def test_invalid_processor_arguments() -> None:
    from abstract_screener.pipeline.batch_processor import BatchProcessor

    with pytest.raises(ValueError):
        BatchProcessor(None, None, batch_size=0)  # type: ignore[arg-type]
