"""Persistence for review sessions, articles and AI settings."""

from __future__ import annotations

from .database import Database, normalise_database_url, utcnow
from .repository import ScreeningRepository

__all__ = ["Database", "normalise_database_url", "utcnow", "ScreeningRepository"]
