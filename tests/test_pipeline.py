from __future__ import annotations

import threading

import allure
import pytest

from session_scheduler.errors import ErrorKind, ProcessError
from session_scheduler.events import (
    CircuitBreakerClosed,
    CircuitBreakerOpened,
    EventBus,
    EventRecorder,
)
from session_scheduler.execution.circuit_breaker import CircuitBreaker
from session_scheduler.execution.models import (
    BreakerPhase,
    Cancelled,
    CommandSpec,
    ExecutionStats,
    Failure,
    Success,
    Timeout,
)
from session_scheduler.execution.pipeline import ExecutionPipeline, RetryPolicy
from session_scheduler.timing.clock import ManualClock

pytestmark = [
    allure.epic("Execution Pipeline"),
    allure.feature("Retry & Breaker"),
]

_NOT_FOUND = Failure(ProcessError(ErrorKind.COMMAND_NOT_FOUND, "missing"), attempt=1)
_TRANSIENT = Failure(ProcessError(ErrorKind.EXECUTION_FAILED, "exit code 1"), attempt=1)


def _pipeline(launcher, clock: ManualClock, **kwargs) -> tuple[ExecutionPipeline, EventRecorder]:
    events = EventBus()
    recorder = EventRecorder()
    events.subscribe(recorder)
    breaker = kwargs.pop("breaker", None) or CircuitBreaker(clock=clock)
    pipeline = ExecutionPipeline(
        launcher=launcher,
        command=CommandSpec(template="notify"),
        breaker=breaker,
        clock=clock,
        events=events,
        **kwargs,
    )
    return pipeline, recorder


def test_retry_policy_delays() -> None:
    policy = RetryPolicy()

    assert [policy.delay_for_attempt(index) for index in range(7)] == [1, 2, 4, 8, 16, 16, 16]
    assert RetryPolicy(backoff_delays=()).delay_for_attempt(3) == 0.0


def test_success_on_first_attempt(clock: ManualClock, scripted_launcher) -> None:
    launcher = scripted_launcher()
    pipeline, _ = _pipeline(launcher, clock)

    outcome = pipeline.run_once(placeholders={"session_id": "s", "run_number": "1"})

    assert isinstance(outcome, Success)
    assert clock.sleeps == []
    assert launcher.calls[0]["placeholders"] == {"session_id": "s", "run_number": "1"}
    stats = pipeline.stats
    assert stats.total_runs == 1
    assert stats.success_count == 1
    assert stats.success_rate == 1.0
    assert stats.last_success_time == clock.now()


def test_transient_failures_follow_backoff_schedule(
    clock: ManualClock,
    scripted_launcher,
) -> None:
    launcher = scripted_launcher(default=_TRANSIENT)
    pipeline, _ = _pipeline(launcher, clock)

    outcome = pipeline.run_once()

    assert isinstance(outcome, Failure)
    assert outcome.attempt == 5
    assert len(launcher.calls) == 5
    # No sleep after the final attempt.
    assert clock.sleeps == [1.0, 2.0, 4.0, 8.0]
    assert pipeline.stats.failure_count == 1
    assert pipeline.breaker_state.consecutive_failures == 1


def test_recovers_after_transient_failures(clock: ManualClock, scripted_launcher) -> None:
    launcher = scripted_launcher([_TRANSIENT, _TRANSIENT])
    pipeline, _ = _pipeline(launcher, clock)

    outcome = pipeline.run_once()

    assert isinstance(outcome, Success)
    assert clock.sleeps == [1.0, 2.0]
    assert pipeline.stats.success_count == 1
    assert pipeline.stats.failure_count == 0


def test_non_retryable_failure_stops_immediately(clock: ManualClock, scripted_launcher) -> None:
    launcher = scripted_launcher(default=_NOT_FOUND)
    pipeline, _ = _pipeline(launcher, clock)

    outcome = pipeline.run_once()

    assert isinstance(outcome, Failure)
    assert outcome.error.kind == ErrorKind.COMMAND_NOT_FOUND
    assert outcome.attempt == 1
    assert len(launcher.calls) == 1
    assert clock.sleeps == []


def test_breaker_fails_fast_after_three_failures(clock: ManualClock, scripted_launcher) -> None:
    launcher = scripted_launcher(default=_NOT_FOUND)
    pipeline, recorder = _pipeline(launcher, clock)

    for _ in range(3):
        pipeline.run_once()
    assert pipeline.breaker_state.phase == BreakerPhase.OPEN

    outcome = pipeline.run_once()

    assert isinstance(outcome, Failure)
    assert outcome.error.kind == ErrorKind.CIRCUIT_BREAKER_OPEN
    assert outcome.attempt == 0
    assert len(launcher.calls) == 3
    assert pipeline.stats.breaker_trips == 1
    assert pipeline.stats.total_runs == 3
    opened = recorder.of_type(CircuitBreakerOpened)
    assert len(opened) == 1
    assert opened[0].consecutive_failures == 3


def test_half_open_probe_success_closes(clock: ManualClock, scripted_launcher) -> None:
    launcher = scripted_launcher([_NOT_FOUND, _NOT_FOUND, _NOT_FOUND])
    pipeline, recorder = _pipeline(launcher, clock)
    for _ in range(3):
        pipeline.run_once()

    clock.advance(300)
    outcome = pipeline.run_once()

    assert isinstance(outcome, Success)
    assert pipeline.breaker_state.phase == BreakerPhase.CLOSED
    assert pipeline.breaker_state.consecutive_failures == 0
    assert len(recorder.of_type(CircuitBreakerClosed)) == 1


def test_half_open_probe_failure_reopens(clock: ManualClock, scripted_launcher) -> None:
    launcher = scripted_launcher(default=_NOT_FOUND)
    pipeline, recorder = _pipeline(launcher, clock)
    for _ in range(3):
        pipeline.run_once()

    clock.advance(300)
    pipeline.run_once()

    assert pipeline.breaker_state.phase == BreakerPhase.OPEN
    assert pipeline.stats.breaker_trips == 2
    assert len(recorder.of_type(CircuitBreakerOpened)) == 2
    assert len(launcher.calls) == 4


def test_timeout_ends_the_run_without_retry(clock: ManualClock, scripted_launcher) -> None:
    launcher = scripted_launcher(default=Timeout(duration=30.0))
    pipeline, _ = _pipeline(launcher, clock)

    outcome = pipeline.run_once()

    assert isinstance(outcome, Timeout)
    assert len(launcher.calls) == 1
    assert clock.sleeps == []
    assert pipeline.stats.failure_count == 1
    assert pipeline.stats.total_duration == pytest.approx(30.0)
    assert pipeline.breaker_state.consecutive_failures == 1


def test_timeout_after_transient_failure_is_terminal(
    clock: ManualClock,
    scripted_launcher,
) -> None:
    launcher = scripted_launcher([_TRANSIENT, Timeout(duration=30.0)])
    pipeline, _ = _pipeline(launcher, clock)

    outcome = pipeline.run_once()

    assert isinstance(outcome, Timeout)
    assert len(launcher.calls) == 2
    assert clock.sleeps == [1.0]
    assert pipeline.stats.success_count == 0


def test_cancel_during_backoff(clock: ManualClock, scripted_launcher) -> None:
    cancel = threading.Event()

    class _CancellingLauncher(scripted_launcher):
        def launch(self, command, **kwargs):
            outcome = super().launch(command, **kwargs)
            cancel.set()
            return outcome

    launcher = _CancellingLauncher(default=_TRANSIENT)
    pipeline, _ = _pipeline(launcher, clock)

    outcome = pipeline.run_once(cancel=cancel)

    assert isinstance(outcome, Cancelled)
    assert len(launcher.calls) == 1
    assert pipeline.stats.total_runs == 0


def test_cancel_releases_half_open_probe(clock: ManualClock, scripted_launcher) -> None:
    launcher = scripted_launcher([_NOT_FOUND, _NOT_FOUND, _NOT_FOUND, Cancelled()])
    pipeline, _ = _pipeline(launcher, clock)
    for _ in range(3):
        pipeline.run_once()
    clock.advance(300)

    assert isinstance(pipeline.run_once(), Cancelled)
    assert pipeline.breaker_state.phase == BreakerPhase.HALF_OPEN
    assert pipeline.breaker_state.half_open_attempts == 0
    assert isinstance(pipeline.run_once(), Success)
    assert pipeline.breaker_state.phase == BreakerPhase.CLOSED


def test_reset_and_restore_stats(clock: ManualClock, scripted_launcher) -> None:
    pipeline, _ = _pipeline(scripted_launcher(), clock)
    pipeline.run_once()

    pipeline.reset_stats()
    assert pipeline.stats == ExecutionStats()

    pipeline.restore_stats(ExecutionStats(total_runs=4, success_count=3, failure_count=1))
    assert pipeline.stats.success_rate == 0.75


def test_listener_failure_does_not_break_pipeline(
    clock: ManualClock,
    scripted_launcher,
) -> None:
    launcher = scripted_launcher(default=_NOT_FOUND)
    breaker = CircuitBreaker(clock=clock, failure_threshold=1)
    pipeline, _ = _pipeline(launcher, clock, breaker=breaker)

    def _broken(_event) -> None:
        raise RuntimeError("listener bug")

    pipeline.events.subscribe(_broken)

    outcome = pipeline.run_once()

    assert isinstance(outcome, Failure)
    assert pipeline.breaker_state.phase == BreakerPhase.OPEN


def test_rejects_non_positive_timeout(clock: ManualClock, scripted_launcher) -> None:
    with pytest.raises(ValueError, match="timeout_seconds"):
        _pipeline(scripted_launcher(), clock, timeout_seconds=0)
