"""Exceptions raised by the storage layer and the evaluation pipeline.

LLM-specific failures live in :mod:`abstract_screener.llm.provider`.
"""

from __future__ import annotations


class ScreeningError(Exception):
    """Base class for pipeline failures."""


class ConfigurationError(ScreeningError):
    """Settings or criteria needed to evaluate a session cannot be loaded.

    Fatal for the session being processed; the session stays queued.
    """


class SettingsNotFoundError(ConfigurationError):
    """No AI settings row exists."""


class SessionNotFoundError(ScreeningError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Review session not found: {session_id}")
        self.session_id = session_id


class ArticleNotFoundError(ScreeningError):
    def __init__(self, article_id: str) -> None:
        super().__init__(f"Article not found: {article_id}")
        self.article_id = article_id


class PersistenceError(ScreeningError):
    """A database read or write failed."""


class InvalidTransitionError(ScreeningError):
    """A session status change was requested from a state that forbids it."""
