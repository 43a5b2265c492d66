from __future__ import annotations

import logging

from abstract_screener.models import EnqueueRequest, EnqueueResult, SessionStatus
from abstract_screener.storage import ScreeningRepository

from .state_manager import SessionStateMachine

logger = logging.getLogger(__name__)


class SessionEnqueuer:
    """Flag articles for evaluation and put their session in the queue.

    Without ``article_ids`` every article of the session is flagged again, which
    re-evaluates a completed session. A running session is left running: the
    invocation holding it sees the new pending articles and re-queues it.
    """

    def __init__(self, repository: ScreeningRepository, state: SessionStateMachine) -> None:
        self.repository = repository
        self.state = state

    def enqueue(self, request: EnqueueRequest) -> EnqueueResult:
        session = self.repository.get_session(request.session_id)
        flagged = self.repository.mark_articles_for_evaluation(
            session.id, request.article_ids
        )

        if session.status in (SessionStatus.AWAITING, SessionStatus.RUNNING):
            queued = True
        else:
            queued = self.state.mark_awaiting(session.id)

        logger.info(
            "Session %s: %d article(s) flagged for evaluation, queued=%s",
            session.id,
            flagged,
            queued,
        )
        return EnqueueResult(session_id=session.id, flagged_count=flagged, queued=queued)
