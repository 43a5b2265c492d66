from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from abstract_screener.storage import ScreeningRepository, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MINUTES = 30


class StuckSessionReaper:
    """Requeue sessions whose invocation died while holding the claim.

    A session that has been ``running`` for longer than the timeout (or has
    no ``last_evaluated_at`` at all) is moved to ``failed_retryable`` so the
    selector can hand it out again.
    """

    def __init__(
        self,
        repository: ScreeningRepository,
        *,
        timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if timeout_minutes < 1:
            raise ValueError("timeout_minutes must be at least 1")
        self.repository = repository
        self.timeout_minutes = timeout_minutes
        self.clock = clock

    @property
    def message(self) -> str:
        return f"Recovered from stuck state after {self.timeout_minutes} minutes timeout"

    def recover_stuck_sessions(self) -> list[str]:
        threshold = self.clock() - timedelta(minutes=self.timeout_minutes)
        recovered = self.repository.reset_stale_running_sessions(threshold, message=self.message)
        if recovered:
            logger.warning(
                "Recovered %d stuck session(s): %s", len(recovered), ", ".join(recovered)
            )
        return recovered
