from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv

from abstract_screener.errors import ConfigurationError
from abstract_screener.storage.database import DEFAULT_DATABASE_URL, normalise_database_url


def _env_int(environ: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _split_names(value: str | None) -> list[str]:
    if not value:
        return []
    return [chunk.strip().lower() for chunk in value.split(",") if chunk.strip()]


@dataclass
class PipelineConfiguration:
    """Settings for one invocation of the evaluation pipeline.

    Built from the environment by :meth:`from_env`; CLI flags override
    individual fields afterwards. AI settings (model, instructions, batch
    size) live in the database, ``batch_size`` here only overrides them.
    """

    # Storage
    database_url: str = DEFAULT_DATABASE_URL

    # Batch settings
    batch_size: int | None = None
    session_limit: int = 1
    max_workers: int = 1

    # Recovery
    stuck_timeout_minutes: int = 30

    # LLM settings
    llm_primary: str | None = None
    llm_fallback: list[str] = field(default_factory=list)
    dotenv_path: Path | None = None

    def __post_init__(self) -> None:
        self.database_url = normalise_database_url(self.database_url)
        if self.batch_size is not None and self.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        if self.session_limit < 1:
            raise ConfigurationError("session_limit must be at least 1")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        if self.stuck_timeout_minutes < 1:
            raise ConfigurationError("stuck_timeout_minutes must be at least 1")

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        dotenv_path: str | Path | None = None,
        **overrides: Any,
    ) -> "PipelineConfiguration":
        """Read ``SCREENING_*`` and ``LLM_*`` variables.

        When ``environ`` is omitted the process environment is used, after
        loading ``dotenv_path`` (or a ``.env`` found by python-dotenv).
        Keyword overrides whose value is ``None`` are ignored.
        """
        if environ is None:
            if dotenv_path is not None:
                load_dotenv(dotenv_path=str(dotenv_path), override=True)
            else:
                load_dotenv()
            environ = os.environ

        values: dict[str, Any] = {
            "database_url": environ.get("SCREENING_DATABASE_URL") or DEFAULT_DATABASE_URL,
            "batch_size": _env_int(environ, "SCREENING_BATCH_SIZE", None),
            "session_limit": _env_int(environ, "SCREENING_SESSION_LIMIT", 1),
            "max_workers": _env_int(environ, "SCREENING_MAX_WORKERS", 1),
            "stuck_timeout_minutes": _env_int(environ, "SCREENING_STUCK_TIMEOUT_MINUTES", 30),
            "llm_primary": (environ.get("LLM_PRIMARY") or "").strip().lower() or None,
            "llm_fallback": _split_names(environ.get("LLM_FALLBACK")),
            "dotenv_path": Path(dotenv_path) if dotenv_path is not None else None,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
