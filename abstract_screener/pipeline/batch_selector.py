"""Chooses which session to work on and which of its articles come next."""

from __future__ import annotations

from abstract_screener.models import ArticleRecord
from abstract_screener.storage import ScreeningRepository


class BatchSelector:
    def __init__(self, repository: ScreeningRepository) -> None:
        self.repository = repository

    def list_awaiting_sessions(self, limit: int = 1) -> list[str]:
        """Queued session ids, least recently evaluated first (never evaluated first of all)."""
        if limit < 1:
            raise ValueError("limit must be at least 1")
        return self.repository.list_claimable_session_ids(limit)

    def count_awaiting_sessions(self) -> int:
        return self.repository.count_claimable_sessions()

    def next_batch(self, session_id: str, batch_size: int) -> list[ArticleRecord]:
        """Up to ``batch_size`` pending articles across all of the session's files."""
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        file_ids = self.repository.list_file_ids(session_id)
        if not file_ids:
            return []
        return self.repository.list_pending_articles(file_ids, batch_size)

    def pending_count(self, session_id: str) -> int:
        file_ids = self.repository.list_file_ids(session_id)
        return self.repository.count_pending_articles(file_ids)

    def has_pending_articles(self, session_id: str) -> bool:
        return self.pending_count(session_id) > 0
