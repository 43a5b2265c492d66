"""Session evaluation state machine.

Transitions::

    idle ──> awaiting ──> running ──> completed
                 ^           │
                 │           ├──> awaiting          (batch done, articles remain)
                 │           └──> failed_retryable  (error or reaped)
                 └── failed_retryable / completed   (re-queued)

Each transition is a single conditional update on the ``status`` column. If
the session is no longer in an allowed source state (another invocation
claimed it, or the reaper reset it) the transition does nothing and returns
``False``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable

from abstract_screener.errors import InvalidTransitionError
from abstract_screener.models import CLAIMABLE_STATUSES, SessionStatus
from abstract_screener.storage import ScreeningRepository, utcnow

from .batch_selector import BatchSelector

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000


def truncate_error(message: str, limit: int = MAX_ERROR_LENGTH) -> str:
    message = str(message)
    return message if len(message) <= limit else message[:limit]


class SessionStateMachine:
    """Owns every write to a session's evaluation status."""

    def __init__(
        self,
        repository: ScreeningRepository,
        *,
        selector: BatchSelector | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.selector = selector or BatchSelector(repository)
        self.clock = clock

    def _transition(
        self,
        session_id: str,
        sources: Iterable[SessionStatus],
        target: SessionStatus,
        **values: object,
    ) -> bool:
        sources = tuple(sources)
        changed = self.repository.transition_session(session_id, sources, target, **values)
        if changed:
            logger.debug("Session %s -> %s", session_id, target.value)
        else:
            logger.warning(
                "Session %s not moved to %s: status is no longer one of %s",
                session_id,
                target.value,
                ", ".join(status.value for status in sources),
            )
        return changed

    def mark_awaiting(self, session_id: str) -> bool:
        """Queue a session for evaluation."""
        return self._transition(
            session_id,
            (SessionStatus.IDLE, SessionStatus.COMPLETED, SessionStatus.FAILED_RETRYABLE),
            SessionStatus.AWAITING,
        )

    def mark_running(self, session_id: str) -> bool:
        """Claim a queued session. Only one caller can win.

        Returns ``False`` without changing anything when the session is not
        claimable, including when it is already running.
        """
        return self._transition(
            session_id,
            CLAIMABLE_STATUSES,
            SessionStatus.RUNNING,
            last_evaluated_at=self.clock(),
        )

    def mark_completed(self, session_id: str) -> bool:
        """Finish a running session whose articles have all been evaluated.

        Raises:
            InvalidTransitionError: If articles are still pending.
        """
        pending = self.selector.pending_count(session_id)
        if pending:
            raise InvalidTransitionError(
                f"Session {session_id} still has {pending} article(s) pending evaluation"
            )
        return self._transition(
            session_id,
            (SessionStatus.RUNNING,),
            SessionStatus.COMPLETED,
            last_error=None,
            last_evaluated_at=self.clock(),
        )

    def mark_batch_incomplete(self, session_id: str) -> bool:
        """Put a running session back in the queue for the next invocation."""
        return self._transition(
            session_id,
            (SessionStatus.RUNNING,),
            SessionStatus.AWAITING,
            last_evaluated_at=self.clock(),
        )

    def mark_failed(self, session_id: str, error: str) -> bool:
        """Record a session-level failure; the session stays queued for a retry."""
        return self._transition(
            session_id,
            (SessionStatus.RUNNING, SessionStatus.AWAITING),
            SessionStatus.FAILED_RETRYABLE,
            last_error=truncate_error(error),
        )
