from __future__ import annotations

import sys
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterator, Sequence, Union

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from abstract_screener.llm.provider import CompletionOptions
from abstract_screener.llm.service import LLMService
from abstract_screener.models import AISettings, ArticleRecord, SessionRecord, SessionStatus
from abstract_screener.pipeline.config import PipelineConfiguration
from abstract_screener.pipeline.invocation import PipelineContext
from abstract_screener.storage import Database, ScreeningRepository

INCLUDE_RESPONSE = "Decision: Include\nExplanation: Meets every inclusion criterion."

Response = Union[str, Exception, Callable[[str], str]]


class ScriptedProvider:
    """Fake LLM provider returning queued responses.

    Each entry is a string, an exception to raise, or a callable receiving
    the user prompt. Once the queue is empty ``default`` is used.
    """

    name = "scripted"

    def __init__(self, responses: Sequence[Response] = (), *, default: Response = INCLUDE_RESPONSE) -> None:
        self._responses = list(responses)
        self.default = default
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def queue(self, *responses: Response) -> None:
        with self._lock:
            self._responses.extend(responses)

    def complete(self, system_prompt: str, user_prompt: str, *, options: CompletionOptions) -> str:
        with self._lock:
            self.calls.append(
                {"system_prompt": system_prompt, "user_prompt": user_prompt, "options": options}
            )
            response = self._responses.pop(0) if self._responses else self.default
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(user_prompt)
        return response

    def health_check(self) -> bool:
        return True


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def database() -> Iterator[Database]:
    db = Database("sqlite://")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def repository(database: Database) -> ScreeningRepository:
    return ScreeningRepository(database)


@pytest.fixture
def settings(repository: ScreeningRepository) -> AISettings:
    return repository.save_settings(
        AISettings(
            instructions="You are screening abstracts for a systematic review.",
            model="gpt-4o-mini",
            temperature=0.0,
            max_tokens=300,
            seed=42,
            batch_size=10,
        )
    )


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_context(
    repository: ScreeningRepository, provider: ScriptedProvider, clock: FakeClock
) -> Callable[..., PipelineContext]:
    def _make(**config_values: Any) -> PipelineContext:
        config = PipelineConfiguration(database_url="sqlite://", **config_values)
        return PipelineContext.build(
            config,
            llm_service=LLMService([provider]),
            database=repository.database,
            clock=clock,
        )

    return _make


def seed_session(
    repository: ScreeningRepository,
    article_count: int,
    *,
    criteria: Sequence[str] = ("Randomised controlled trial", "Adult participants"),
    status: SessionStatus = SessionStatus.AWAITING,
    files: int = 1,
    title: str = "Review",
) -> tuple[SessionRecord, list[ArticleRecord]]:
    """Create a session with ``article_count`` pending articles spread over ``files`` files."""
    session = repository.create_session(title, list(criteria), status=status)
    articles: list[ArticleRecord] = []
    per_file = [article_count // files + (1 if i < article_count % files else 0) for i in range(files)]
    number = 0
    for index, count in enumerate(per_file):
        file = repository.add_file(session.id, f"export-{index}.csv")
        batch = []
        for _ in range(count):
            number += 1
            batch.append(
                {"title": f"Article {number}", "abstract": f"Abstract of article {number}."}
            )
        articles.extend(repository.add_articles(file.id, batch))
    return repository.get_session(session.id), articles
