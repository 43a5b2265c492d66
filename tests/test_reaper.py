from __future__ import annotations

import pytest

from abstract_screener.models import SessionStatus
from abstract_screener.pipeline.reaper import StuckSessionReaper
from abstract_screener.pipeline.state_manager import SessionStateMachine
from abstract_screener.storage import ScreeningRepository

from conftest import FakeClock, seed_session


def test_recovers_sessions_running_longer_than_timeout(
    repository: ScreeningRepository, clock: FakeClock
) -> None:
    stuck, _ = seed_session(repository, 2)
    fresh, _ = seed_session(repository, 2)
    state = SessionStateMachine(repository, clock=clock)
    state.mark_running(stuck.id)
    clock.advance(minutes=35)
    state.mark_running(fresh.id)
    clock.advance(minutes=5)

    recovered = StuckSessionReaper(repository, timeout_minutes=30, clock=clock).recover_stuck_sessions()

    assert recovered == [stuck.id]
    stored = repository.get_session(stuck.id)
    assert stored.status is SessionStatus.FAILED_RETRYABLE
    assert stored.last_error == "Recovered from stuck state after 30 minutes timeout"
    assert repository.get_session(fresh.id).status is SessionStatus.RUNNING


def test_running_session_without_timestamp_is_stale(
    repository: ScreeningRepository, clock: FakeClock
) -> None:
    session, _ = seed_session(repository, 1, status=SessionStatus.RUNNING)

    recovered = StuckSessionReaper(repository, clock=clock).recover_stuck_sessions()

    assert recovered == [session.id]


def test_nothing_to_recover_returns_empty_list(
    repository: ScreeningRepository, clock: FakeClock
) -> None:
    seed_session(repository, 1)
    seed_session(repository, 1, status=SessionStatus.COMPLETED)

    assert StuckSessionReaper(repository, clock=clock).recover_stuck_sessions() == []


def test_recovered_session_is_claimable_again(
    repository: ScreeningRepository, clock: FakeClock
) -> None:
    session, _ = seed_session(repository, 1)
    state = SessionStateMachine(repository, clock=clock)
    state.mark_running(session.id)
    clock.advance(minutes=31)
    StuckSessionReaper(repository, clock=clock).recover_stuck_sessions()

    assert repository.list_claimable_session_ids() == [session.id]
    assert state.mark_running(session.id)


def test_timeout_must_be_positive(repository: ScreeningRepository) -> None:
    with pytest.raises(ValueError):
        StuckSessionReaper(repository, timeout_minutes=0)
