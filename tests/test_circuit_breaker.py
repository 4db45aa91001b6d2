from __future__ import annotations

import allure
import pytest

from session_scheduler.execution.circuit_breaker import CircuitBreaker
from session_scheduler.execution.models import BreakerPhase
from session_scheduler.timing.clock import ManualClock

pytestmark = [
    allure.epic("Execution Pipeline"),
    allure.feature("Circuit Breaker"),
]


def _open_breaker(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.failure_threshold):
        assert breaker.allow_request()
        breaker.record_failure()


def test_opens_at_threshold(clock: ManualClock) -> None:
    breaker = CircuitBreaker(clock=clock, failure_threshold=3)

    assert not breaker.record_failure()
    assert not breaker.record_failure()
    assert breaker.record_failure()

    state = breaker.snapshot()
    assert state.phase == BreakerPhase.OPEN
    assert state.consecutive_failures == 3
    assert state.last_failure_time == clock.now()
    assert not breaker.allow_request()


def test_success_resets_failure_count(clock: ManualClock) -> None:
    breaker = CircuitBreaker(clock=clock, failure_threshold=3)
    breaker.record_failure()
    breaker.record_failure()

    assert not breaker.record_success()
    breaker.record_failure()

    assert breaker.phase == BreakerPhase.CLOSED
    assert breaker.snapshot().consecutive_failures == 1


def test_half_open_after_cooldown_and_close_on_success(clock: ManualClock) -> None:
    breaker = CircuitBreaker(clock=clock, failure_threshold=3, cooldown_seconds=300)
    _open_breaker(breaker)

    clock.advance(299)
    assert not breaker.allow_request()
    clock.advance(1)
    assert breaker.allow_request()
    assert breaker.phase == BreakerPhase.HALF_OPEN
    # One probe at a time.
    assert not breaker.allow_request()

    assert breaker.record_success()
    assert breaker.phase == BreakerPhase.CLOSED
    assert breaker.snapshot().consecutive_failures == 0


def test_half_open_failure_reopens(clock: ManualClock) -> None:
    breaker = CircuitBreaker(clock=clock, failure_threshold=3, cooldown_seconds=300)
    _open_breaker(breaker)
    clock.advance(300)
    assert breaker.allow_request()

    assert breaker.record_failure()

    assert breaker.phase == BreakerPhase.OPEN
    assert not breaker.allow_request()
    clock.advance(300)
    assert breaker.allow_request()


def test_release_probe_allows_another_attempt(clock: ManualClock) -> None:
    breaker = CircuitBreaker(clock=clock, failure_threshold=1, cooldown_seconds=10)
    _open_breaker(breaker)
    clock.advance(10)
    assert breaker.allow_request()
    assert not breaker.allow_request()

    breaker.release_probe()

    assert breaker.allow_request()
    assert breaker.phase == BreakerPhase.HALF_OPEN


def test_multiple_half_open_probes(clock: ManualClock) -> None:
    breaker = CircuitBreaker(
        clock=clock,
        failure_threshold=1,
        cooldown_seconds=10,
        max_half_open_attempts=2,
    )
    _open_breaker(breaker)
    clock.advance(10)

    assert breaker.allow_request()
    assert breaker.allow_request()
    assert not breaker.allow_request()
    assert breaker.snapshot().half_open_attempts == 2


def test_rejects_invalid_configuration(clock: ManualClock) -> None:
    with pytest.raises(ValueError, match="failure_threshold"):
        CircuitBreaker(clock=clock, failure_threshold=0)
    with pytest.raises(ValueError, match="max_half_open_attempts"):
        CircuitBreaker(clock=clock, max_half_open_attempts=0)
