"""Data access for review sessions, articles and AI settings.

Every public method opens its own transaction, so a failure in one article's
write never rolls back another's. Rows are converted into records from
:mod:`abstract_screener.models` before the transaction closes.

Status changes are conditional updates (``UPDATE ... WHERE status IN ...``);
the caller learns whether it won the change from the affected row count.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Iterable, Iterator, Mapping, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from abstract_screener.errors import (
    ArticleNotFoundError,
    PersistenceError,
    SessionNotFoundError,
    SettingsNotFoundError,
)
from abstract_screener.models import (
    CLAIMABLE_STATUSES,
    AISettings,
    ArticleRecord,
    Criterion,
    Evaluation,
    FileRecord,
    SessionRecord,
    SessionStatus,
)

from .database import Database, utcnow
from .tables import AISettingsRow, ArticleRow, FileRow, ReviewSessionRow

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class ScreeningRepository:
    """Reads and writes for the screening pipeline."""

    def __init__(self, database: Database) -> None:
        self.database = database

    @contextmanager
    def _scope(self, action: str) -> Iterator[Session]:
        try:
            with self.database.session_scope() as db:
                yield db
        except SQLAlchemyError as exc:
            logger.error("Database error while %s: %s", action, exc)
            raise PersistenceError(f"Database error while {action}: {exc}") from exc

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> SessionRecord:
        with self._scope("loading session") as db:
            row = db.get(ReviewSessionRow, session_id)
            if row is None:
                raise SessionNotFoundError(session_id)
            return SessionRecord.model_validate(row)

    def get_session_criteria(self, session_id: str) -> list[Criterion]:
        return list(self.get_session(session_id).criteria)

    def list_claimable_session_ids(self, limit: int = 1) -> list[str]:
        """Sessions waiting for work, least recently evaluated first."""
        stmt = (
            select(ReviewSessionRow.id)
            .where(ReviewSessionRow.status.in_(list(CLAIMABLE_STATUSES)))
            .order_by(
                ReviewSessionRow.last_evaluated_at.asc().nulls_first(),
                ReviewSessionRow.created_at.asc(),
                ReviewSessionRow.id.asc(),
            )
            .limit(limit)
        )
        with self._scope("listing queued sessions") as db:
            return list(db.scalars(stmt))

    def count_claimable_sessions(self) -> int:
        stmt = select(func.count(ReviewSessionRow.id)).where(
            ReviewSessionRow.status.in_(list(CLAIMABLE_STATUSES))
        )
        with self._scope("counting queued sessions") as db:
            return int(db.scalar(stmt) or 0)

    def transition_session(
        self,
        session_id: str,
        sources: Iterable[SessionStatus],
        target: SessionStatus,
        *,
        last_error: str | None = _UNSET,
        last_evaluated_at: datetime | None = _UNSET,
    ) -> bool:
        """Move ``session_id`` to ``target`` if it is currently in ``sources``.

        Returns ``True`` when exactly one row changed. ``last_error`` and
        ``last_evaluated_at`` are only written when passed.
        """
        values: dict[str, Any] = {"status": target, "updated_at": utcnow()}
        if last_error is not _UNSET:
            values["last_error"] = last_error
        if last_evaluated_at is not _UNSET:
            values["last_evaluated_at"] = last_evaluated_at

        stmt = (
            update(ReviewSessionRow)
            .where(
                ReviewSessionRow.id == session_id,
                ReviewSessionRow.status.in_(list(sources)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._scope(f"moving session to {target.value}") as db:
            result = db.execute(stmt)
            return result.rowcount == 1

    def reset_stale_running_sessions(
        self, threshold: datetime, *, message: str
    ) -> list[str]:
        """Move RUNNING sessions last stamped before ``threshold`` to FAILED_RETRYABLE.

        A RUNNING session with no timestamp counts as stale. Returns the ids
        that were actually moved.
        """
        stale = (
            ReviewSessionRow.status == SessionStatus.RUNNING,
            or_(
                ReviewSessionRow.last_evaluated_at.is_(None),
                ReviewSessionRow.last_evaluated_at < threshold,
            ),
        )
        recovered: list[str] = []
        with self._scope("recovering stuck sessions") as db:
            candidates = list(db.scalars(select(ReviewSessionRow.id).where(*stale)))
            for session_id in candidates:
                stmt = (
                    update(ReviewSessionRow)
                    .where(ReviewSessionRow.id == session_id, *stale)
                    .values(
                        status=SessionStatus.FAILED_RETRYABLE,
                        last_error=message,
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if db.execute(stmt).rowcount == 1:
                    recovered.append(session_id)
        return recovered

    # ------------------------------------------------------------------
    # Files and articles
    # ------------------------------------------------------------------

    def list_file_ids(self, session_id: str) -> list[str]:
        stmt = (
            select(FileRow.id)
            .where(FileRow.session_id == session_id)
            .order_by(FileRow.created_at.asc(), FileRow.id.asc())
        )
        with self._scope("listing session files") as db:
            return list(db.scalars(stmt))

    def list_pending_articles(self, file_ids: Sequence[str], limit: int) -> list[ArticleRecord]:
        if not file_ids:
            return []
        stmt = (
            select(ArticleRow)
            .where(ArticleRow.file_id.in_(list(file_ids)), ArticleRow.needs_evaluation.is_(True))
            .order_by(
                ArticleRow.last_attempted_at.asc().nulls_first(),
                ArticleRow.created_at.asc(),
                ArticleRow.id.asc(),
            )
            .limit(limit)
        )
        with self._scope("loading pending articles") as db:
            return [ArticleRecord.model_validate(row) for row in db.scalars(stmt)]

    def count_pending_articles(self, file_ids: Sequence[str]) -> int:
        if not file_ids:
            return 0
        stmt = select(func.count(ArticleRow.id)).where(
            ArticleRow.file_id.in_(list(file_ids)), ArticleRow.needs_evaluation.is_(True)
        )
        with self._scope("counting pending articles") as db:
            return int(db.scalar(stmt) or 0)

    def get_article(self, article_id: str) -> ArticleRecord | None:
        with self._scope("loading article") as db:
            row = db.get(ArticleRow, article_id)
            return None if row is None else ArticleRecord.model_validate(row)

    def save_article_evaluation(
        self, article_id: str, evaluation: Evaluation, *, clear_pending: bool = True
    ) -> None:
        """Store the model's decision; by default also marks the article evaluated."""
        values: dict[str, Any] = {
            "ai_decision": evaluation.decision,
            "ai_explanation": evaluation.explanation,
            "updated_at": utcnow(),
        }
        if clear_pending:
            values["needs_evaluation"] = False
        stmt = (
            update(ArticleRow)
            .where(ArticleRow.id == article_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._scope("saving article evaluation") as db:
            if db.execute(stmt).rowcount != 1:
                raise ArticleNotFoundError(article_id)

    def record_failed_attempt(self, article_id: str, attempted_at: datetime | None = None) -> None:
        """Stamp a failed evaluation so the article moves behind untried ones."""
        stmt = (
            update(ArticleRow)
            .where(ArticleRow.id == article_id)
            .values(last_attempted_at=attempted_at or utcnow())
            .execution_options(synchronize_session=False)
        )
        with self._scope("recording failed evaluation attempt") as db:
            if db.execute(stmt).rowcount != 1:
                raise ArticleNotFoundError(article_id)

    def mark_articles_for_evaluation(
        self, session_id: str, article_ids: Sequence[str] | None = None
    ) -> int:
        """Flag articles of a session as pending; all of them when no ids are given."""
        file_ids = self.list_file_ids(session_id)
        if not file_ids:
            return 0
        conditions = [ArticleRow.file_id.in_(file_ids)]
        if article_ids is not None:
            if not article_ids:
                return 0
            conditions.append(ArticleRow.id.in_(list(article_ids)))
        stmt = (
            update(ArticleRow)
            .where(*conditions)
            .values(needs_evaluation=True, last_attempted_at=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        with self._scope("flagging articles for evaluation") as db:
            return int(db.execute(stmt).rowcount or 0)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_latest_settings(self) -> AISettings:
        stmt = (
            select(AISettingsRow)
            .order_by(AISettingsRow.created_at.desc(), AISettingsRow.id.desc())
            .limit(1)
        )
        with self._scope("loading AI settings") as db:
            row = db.scalars(stmt).first()
            if row is None:
                raise SettingsNotFoundError("No AI settings configured")
            return AISettings.model_validate(row)

    def save_settings(self, settings: AISettings) -> AISettings:
        with self._scope("saving AI settings") as db:
            db.add(AISettingsRow(**settings.model_dump()))
        return settings

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def create_session(
        self,
        title: str,
        criteria: Sequence[Criterion | str | Mapping[str, Any]] = (),
        *,
        status: SessionStatus = SessionStatus.IDLE,
    ) -> SessionRecord:
        stored = []
        for item in criteria:
            if isinstance(item, Criterion):
                stored.append(item.model_dump())
            elif isinstance(item, str):
                stored.append({"id": "", "text": item})
            else:
                stored.append(dict(item))
        with self._scope("creating session") as db:
            row = ReviewSessionRow(title=title, criteria=stored, status=status, created_at=utcnow())
            db.add(row)
            db.flush()
            return SessionRecord.model_validate(row)

    def add_file(self, session_id: str, filename: str) -> FileRecord:
        with self._scope("adding file") as db:
            if db.get(ReviewSessionRow, session_id) is None:
                raise SessionNotFoundError(session_id)
            row = FileRow(session_id=session_id, filename=filename, created_at=utcnow())
            db.add(row)
            db.flush()
            return FileRecord.model_validate(row)

    def add_articles(
        self, file_id: str, articles: Iterable[Mapping[str, Any]]
    ) -> list[ArticleRecord]:
        """Insert articles for a file and keep the file and session counts current.

        Each mapping needs ``title`` and may carry ``abstract``, ``full_text``
        and ``needs_evaluation``.
        """
        with self._scope("adding articles") as db:
            file_row = db.get(FileRow, file_id)
            if file_row is None:
                raise PersistenceError(f"File not found: {file_id}")
            rows = []
            base_time = utcnow()
            for index, data in enumerate(articles):
                row = ArticleRow(
                    file_id=file_id,
                    title=str(data["title"]),
                    abstract=data.get("abstract"),
                    full_text=data.get("full_text"),
                    needs_evaluation=bool(data.get("needs_evaluation", True)),
                    # Offsets keep insertion order when timestamps collide.
                    created_at=base_time + timedelta(microseconds=index),
                )
                rows.append(row)
                db.add(row)
            db.flush()
            file_row.articles_count = (file_row.articles_count or 0) + len(rows)
            session_row = file_row.session
            session_row.articles_count = (session_row.articles_count or 0) + len(rows)
            return [ArticleRecord.model_validate(row) for row in rows]
