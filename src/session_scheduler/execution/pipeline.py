"""Resilient single invocation: breaker, retry with backoff, statistics."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

from session_scheduler.errors import ErrorKind, ProcessError
from session_scheduler.events import CircuitBreakerClosed, CircuitBreakerOpened, EventBus
from session_scheduler.execution.circuit_breaker import CircuitBreaker
from session_scheduler.execution.models import (
    Cancelled,
    CircuitBreakerState,
    CommandSpec,
    ExecutionStats,
    Failure,
    ProcessOutcome,
    Success,
    Timeout,
)
from session_scheduler.timing.clock import Clock

logger = logging.getLogger(__name__)


class Launcher(Protocol):
    def launch(
        self,
        command: CommandSpec,
        *,
        timeout_seconds: float,
        cancel: threading.Event | None = None,
        placeholders: Mapping[str, str] | None = None,
    ) -> ProcessOutcome: ...


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and backoff schedule for one pipeline call."""

    max_attempts: int = 5
    backoff_delays: tuple[float, ...] = (1.0, 2.0, 4.0, 8.0, 16.0)

    def delay_for_attempt(self, attempt_index: int) -> float:
        """Backoff before the retry that follows 0-based ``attempt_index``."""

        if not self.backoff_delays:
            return 0.0
        return self.backoff_delays[min(attempt_index, len(self.backoff_delays) - 1)]


class ExecutionPipeline:
    """Wrap the launcher with a circuit breaker and bounded retries."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        launcher: Launcher,
        command: CommandSpec,
        breaker: CircuitBreaker,
        clock: Clock,
        retry_policy: RetryPolicy | None = None,
        events: EventBus | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0.")
        self.launcher = launcher
        self.command = command
        self.breaker = breaker
        self.clock = clock
        self.retry_policy = retry_policy or RetryPolicy()
        self.events = events or EventBus()
        self.timeout_seconds = timeout_seconds
        self._stats = ExecutionStats()
        self._lock = threading.Lock()

    @property
    def stats(self) -> ExecutionStats:
        with self._lock:
            return self._stats.copy()

    @property
    def breaker_state(self) -> CircuitBreakerState:
        with self._lock:
            return self.breaker.snapshot()

    def reset_stats(self) -> None:
        with self._lock:
            self._stats = ExecutionStats()
            self.breaker.reset()

    def restore_stats(self, stats: ExecutionStats) -> None:
        with self._lock:
            self._stats = stats.copy()

    def run_once(
        self,
        *,
        cancel: threading.Event | None = None,
        placeholders: Mapping[str, str] | None = None,
    ) -> ProcessOutcome:
        """Execute the command once with breaker gating and retries.

        Returns ``Success``, the terminal ``Failure``, ``Timeout`` as soon as
        an attempt times out, or ``Cancelled``.
        """

        with self._lock:
            allowed = self.breaker.allow_request()
        if not allowed:
            logger.warning("Circuit breaker is open, skipping command run")
            return Failure(
                ProcessError(ErrorKind.CIRCUIT_BREAKER_OPEN, "circuit breaker is open"),
                attempt=0,
            )

        policy = self.retry_policy
        attempts = max(1, policy.max_attempts)
        total_duration = 0.0
        outcome: ProcessOutcome = Cancelled()
        for attempt_index in range(attempts):
            attempt_number = attempt_index + 1
            outcome = self.launcher.launch(
                self.command,
                timeout_seconds=self.timeout_seconds,
                cancel=cancel,
                placeholders=placeholders,
            )
            if isinstance(outcome, Cancelled):
                return self._cancelled()
            if isinstance(outcome, Success):
                total_duration += outcome.duration
                self._finish(outcome, duration=total_duration)
                return outcome

            if isinstance(outcome, Timeout):
                total_duration += outcome.duration
                logger.warning(
                    "Attempt %d/%d timed out after %.1fs",
                    attempt_number,
                    attempts,
                    outcome.duration,
                )
                break

            error = outcome.error
            outcome = Failure(error, attempt=attempt_number)

            is_last = attempt_number >= attempts
            if not error.retryable or is_last:
                break

            delay = policy.delay_for_attempt(attempt_index)
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.1fs",
                attempt_number,
                attempts,
                error.kind.value,
                delay,
            )
            if self.clock.sleep(delay, cancel):
                return self._cancelled()

        self._finish(outcome, duration=total_duration)
        return outcome

    def _finish(self, outcome: ProcessOutcome, *, duration: float) -> None:
        now = self.clock.now()
        succeeded = isinstance(outcome, Success)
        with self._lock:
            self._stats.record(succeeded=succeeded, duration=duration, at=now)
            if succeeded:
                closed = self.breaker.record_success()
                opened = False
            else:
                closed = False
                opened = self.breaker.record_failure()
                if opened:
                    self._stats.breaker_trips += 1
            consecutive_failures = self.breaker.snapshot().consecutive_failures

        if succeeded:
            logger.info("Command run succeeded")
        else:
            logger.warning("Command run failed: %s", _outcome_kind(outcome))
        if opened:
            self.events.publish(
                CircuitBreakerOpened(at=now, consecutive_failures=consecutive_failures)
            )
        if closed:
            self.events.publish(CircuitBreakerClosed(at=now))

    def _cancelled(self) -> Cancelled:
        with self._lock:
            self.breaker.release_probe()
        logger.info("Command run cancelled")
        return Cancelled()


def _outcome_kind(outcome: ProcessOutcome) -> str:
    if isinstance(outcome, Failure):
        return outcome.error.kind.value
    if isinstance(outcome, Timeout):
        return ErrorKind.EXECUTION_TIMEOUT.value
    return type(outcome).__name__.lower()
