"""Public model exports for the project.

Tests and other modules should import from here, e.g.
``from abstract_screener.models import Decision, SessionRecord``.
"""

from __future__ import annotations

from .enums import CLAIMABLE_STATUSES, Decision, ResultStatus, SessionStatus
from .records import (
    NO_ABSTRACT_PLACEHOLDER,
    AdHocEvaluationRequest,
    AdHocEvaluationResult,
    AISettings,
    ArticleRecord,
    ArticleResult,
    BatchResult,
    Criterion,
    EnqueueRequest,
    EnqueueResult,
    Evaluation,
    FileRecord,
    InvocationSummary,
    SessionRecord,
    format_criteria,
)

__all__ = [
    "CLAIMABLE_STATUSES",
    "Decision",
    "ResultStatus",
    "SessionStatus",
    "NO_ABSTRACT_PLACEHOLDER",
    "AdHocEvaluationRequest",
    "AdHocEvaluationResult",
    "AISettings",
    "ArticleRecord",
    "ArticleResult",
    "BatchResult",
    "Criterion",
    "EnqueueRequest",
    "EnqueueResult",
    "Evaluation",
    "FileRecord",
    "InvocationSummary",
    "SessionRecord",
    "format_criteria",
]
