"""Enumerations shared by the screening models.

`Decision` values must match the wording the evaluation prompt asks the model
to answer with. `SessionStatus` replaces the original trio of boolean session
flags with a single column so invalid flag combinations cannot be stored.
"""

from __future__ import annotations

from enum import Enum


class Decision(str, Enum):
    """Screening decision produced by the LLM or a human reviewer."""

    INCLUDE = "Include"
    EXCLUDE = "Exclude"
    UNSURE = "Unsure"

    @classmethod
    def all_values(cls) -> list[str]:
        return [m.value for m in cls]

    @classmethod
    def from_label(cls, label: str) -> "Decision":
        """Return the decision matching ``label`` case-insensitively.

        Raises:
            ValueError: If the label is not exactly one of the known decisions.
        """
        cleaned = str(label or "").strip().lower()
        for member in cls:
            if member.value.lower() == cleaned:
                return member
        raise ValueError(f"Unknown decision label: {label!r}")


class SessionStatus(str, Enum):
    """Lifecycle of a review session's AI evaluation.

    Values:
        IDLE: Nothing queued.
        AWAITING: Queued, waiting for an invocation to claim it.
        RUNNING: Claimed by an invocation.
        COMPLETED: Every article has been evaluated.
        FAILED_RETRYABLE: The last attempt failed; still queued for a retry.
    """

    IDLE = "idle"
    AWAITING = "awaiting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED_RETRYABLE = "failed_retryable"

    @classmethod
    def all_values(cls) -> list[str]:
        return [m.value for m in cls]


# Sessions the selector may hand out and the claim update may take.
CLAIMABLE_STATUSES: frozenset[SessionStatus] = frozenset(
    {SessionStatus.AWAITING, SessionStatus.FAILED_RETRYABLE}
)


class ResultStatus(str, Enum):
    """Outcome of evaluating a single article."""

    SUCCESS = "success"
    ERROR = "error"
