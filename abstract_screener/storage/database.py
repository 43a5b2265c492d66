"""Database engine and transactional scope.

SQLite is used by default and for tests; PostgreSQL is supported through
``SCREENING_DATABASE_URL``. There is no module-level engine: each
:class:`Database` owns its engine so invocations and tests stay isolated.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# SQLAlchemy base class used to declare models
Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite:///screening.db"


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalise_database_url(url: str | None) -> str:
    """Return a SQLAlchemy URL, defaulting to a local SQLite file.

    ``postgres://`` URLs are rewritten to ``postgresql://`` because SQLAlchemy
    does not recognise the former scheme.
    """
    if not url:
        return DEFAULT_DATABASE_URL
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Engine plus session factory for one database URL."""

    def __init__(self, url: str | None = None, *, echo: bool = False) -> None:
        self.url = normalise_database_url(url)
        if self.url.startswith("sqlite"):
            kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in self.url or self.url in ("sqlite://", "sqlite:///"):
                # One shared connection so every session sees the same data.
                kwargs["poolclass"] = StaticPool
            self.engine: Engine = create_engine(self.url, echo=echo, **kwargs)
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        else:
            self.engine = create_engine(self.url, echo=echo, pool_pre_ping=True)
        self._session_factory = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    def init_db(self) -> None:
        """Create all tables if they are missing. Not a migration tool."""
        from . import tables  # noqa: F401  (registers the models on Base)

        Base.metadata.create_all(bind=self.engine)
        logger.info("Database initialised (tables created if missing)")

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope for database operations.

        Commits on success, rolls back on any exception and always closes.
        """
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()
