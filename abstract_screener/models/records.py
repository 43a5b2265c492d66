"""Pydantic records exchanged between the storage layer and the pipeline.

Rows are converted into these models as soon as they leave a database
transaction so the pipeline never holds live ORM objects. Records that are
returned to callers (article results, batch results, ad-hoc requests) use
camelCase aliases for their JSON form.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .enums import Decision, ResultStatus, SessionStatus

NO_ABSTRACT_PLACEHOLDER = "(No abstract available)"


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class _CamelRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-ready camelCase form without unset optionals."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class Criterion(_Record):
    """A single inclusion rule; sessions keep these in reviewer order."""

    id: str = ""
    text: str

    @field_validator("id", mode="before")
    def _coerce_id(cls, value: object) -> str:
        return str(value or "").strip()

    @field_validator("text", mode="before")
    def _strip_text(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("criterion text must not be empty")
        return result


def format_criteria(criteria: Sequence[Criterion | str]) -> str:
    """Render criteria as the numbered list used in evaluation prompts."""
    lines = []
    for index, criterion in enumerate(criteria, start=1):
        text = criterion.text if isinstance(criterion, Criterion) else str(criterion).strip()
        lines.append(f"{index}. {text}")
    return "\n".join(lines)


class AISettings(_Record):
    """Global model configuration; the most recently created row wins."""

    instructions: str
    model: str
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    max_tokens: int = Field(default=500, ge=1)
    seed: int | None = None
    batch_size: int = Field(default=10, ge=1)

    @field_validator("instructions", "model", mode="before")
    def _strip_strings(cls, value: object) -> str:
        return str(value or "").strip()

    @field_validator("batch_size", mode="before")
    def _default_batch_size(cls, value: object) -> object:
        # Older rows were stored before batch_size existed.
        return 10 if value is None else value

    @model_validator(mode="after")
    def final_checks(self) -> "AISettings":
        if not self.model:
            raise ValueError("model must not be empty")
        return self


class SessionRecord(_Record):
    """Review session as seen by the pipeline.

    The boolean properties reproduce the original flag-based read model so
    callers that only know ``awaiting_evaluation``/``evaluation_running``/
    ``evaluated`` keep working.
    """

    id: str
    title: str = ""
    criteria: List[Criterion] = Field(default_factory=list)
    articles_count: int = 0
    status: SessionStatus = SessionStatus.IDLE
    last_evaluated_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime | None = None

    @field_validator("criteria", mode="before")
    def _normalise_criteria(cls, value: object) -> list[Any]:
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            items = [{"text": item} if isinstance(item, str) else item for item in value]
            # Blank rules are dropped here; an empty list is rejected later
            # by the batch processor as a configuration error.
            return [
                item
                for item in items
                if not isinstance(item, dict) or str(item.get("text") or "").strip()
            ]
        raise ValueError("criteria must be a list")

    @property
    def awaiting_evaluation(self) -> bool:
        return self.status in (
            SessionStatus.AWAITING,
            SessionStatus.RUNNING,
            SessionStatus.FAILED_RETRYABLE,
        )

    @property
    def evaluation_running(self) -> bool:
        return self.status is SessionStatus.RUNNING

    @property
    def evaluated(self) -> bool:
        return self.status is SessionStatus.COMPLETED

    @property
    def processing(self) -> bool:
        # Stays true between batches so a progress indicator does not flicker.
        return self.awaiting_evaluation or self.evaluation_running


class FileRecord(_Record):
    id: str
    session_id: str
    filename: str
    articles_count: int = 0


class ArticleRecord(_Record):
    id: str
    file_id: str
    title: str
    abstract: str | None = None
    full_text: str | None = None
    needs_evaluation: bool = True
    ai_decision: Decision | None = None
    ai_explanation: str | None = None
    user_decision: Decision | None = None
    last_attempted_at: datetime | None = None


class Evaluation(BaseModel):
    """A parsed model answer. Never stored as its own row."""

    model_config = ConfigDict(extra="forbid")

    decision: Decision
    explanation: str

    @field_validator("decision", mode="before")
    def _normalise_decision(cls, value: object) -> Decision:
        if isinstance(value, Decision):
            return value
        return Decision.from_label(str(value))

    @field_validator("explanation", mode="before")
    def _strip_explanation(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("explanation must not be empty")
        return result


class ArticleResult(_CamelRecord):
    """Audit entry for one article in a batch."""

    article_id: str
    file_id: str
    status: ResultStatus
    decision: Decision | None = None
    error: str | None = None


class BatchResult(_CamelRecord):
    """Outcome of one ``process_session`` call."""

    session_id: str
    processed_count: int = 0
    per_article_results: List[ArticleResult] = Field(default_factory=list)
    is_completed: bool = False
    claimed: bool = True
    error: str | None = None


class InvocationSummary(_CamelRecord):
    """Response body of one queue-processing invocation."""

    invocation_id: str
    message: str
    session_id: str | None = None
    processed_count: int = 0
    is_session_completed: bool = False
    more_sessions_queued: bool = False
    per_article_results: List[ArticleResult] = Field(default_factory=list)
    recovered_sessions: List[str] = Field(default_factory=list)
    processing_time_ms: int = 0


class AdHocEvaluationRequest(_CamelRecord):
    """Request body for evaluating one article outside the queue.

    ``criteria`` may be free text, a list of plain strings, or a list of
    ``{id, text}`` objects.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    article_id: str
    title: str
    abstract: str | None = None
    criteria: Union[str, List[Criterion]]

    @field_validator("article_id", "title", mode="before")
    def _require_text(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("must not be empty")
        return result

    @field_validator("abstract", mode="before")
    def _strip_abstract(cls, value: object) -> str | None:
        if value is None:
            return None
        return str(value).strip() or None

    @field_validator("criteria", mode="before")
    def _normalise_criteria(cls, value: object) -> object:
        if isinstance(value, str):
            if not value.strip():
                raise ValueError("criteria must not be empty")
            return value.strip()
        if isinstance(value, (list, tuple)):
            if not value:
                raise ValueError("criteria must not be empty")
            return [{"text": item} if isinstance(item, str) else item for item in value]
        raise ValueError("criteria must be text or a list of criteria")

    def criteria_text(self) -> str:
        if isinstance(self.criteria, str):
            return self.criteria
        return format_criteria(self.criteria)


class AdHocEvaluationResult(_CamelRecord):
    article_id: str
    decision: Decision
    explanation: str


class EnqueueRequest(_CamelRecord):
    """Queue a session for evaluation, optionally re-flagging specific articles."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    session_id: str
    article_ids: List[str] | None = None

    @field_validator("session_id", mode="before")
    def _require_session_id(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("must not be empty")
        return result


class EnqueueResult(_CamelRecord):
    session_id: str
    flagged_count: int
    queued: bool
