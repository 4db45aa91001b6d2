"""Circuit breaker isolating a repeatedly failing command."""

from __future__ import annotations

import logging

from session_scheduler.execution.models import BreakerPhase, CircuitBreakerState
from session_scheduler.timing.clock import Clock

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Closed/Open/HalfOpen state machine.

    Transitions: Closed->Open once ``failure_threshold`` consecutive failures
    are recorded, Open->HalfOpen when a request arrives after the cooldown,
    HalfOpen->Closed on success and HalfOpen->Open on failure.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        failure_threshold: int = 3,
        cooldown_seconds: float = 300.0,
        max_half_open_attempts: int = 1,
    ) -> None:
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be > 0.")
        if max_half_open_attempts <= 0:
            raise ValueError("max_half_open_attempts must be > 0.")
        self.clock = clock
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.max_half_open_attempts = max_half_open_attempts
        self._state = CircuitBreakerState()

    @property
    def phase(self) -> BreakerPhase:
        return self._state.phase

    def snapshot(self) -> CircuitBreakerState:
        return self._state

    def allow_request(self) -> bool:
        """Decide whether the launcher may be called; may move Open->HalfOpen."""

        state = self._state
        if state.phase == BreakerPhase.CLOSED:
            return True

        if state.phase == BreakerPhase.OPEN:
            if not self._cooldown_elapsed():
                return False
            logger.info("Circuit breaker cooldown elapsed, moving to half-open")
            state = CircuitBreakerState(
                phase=BreakerPhase.HALF_OPEN,
                consecutive_failures=state.consecutive_failures,
                last_failure_time=state.last_failure_time,
                half_open_attempts=0,
            )

        if state.half_open_attempts >= self.max_half_open_attempts:
            self._state = state
            return False
        self._state = CircuitBreakerState(
            phase=BreakerPhase.HALF_OPEN,
            consecutive_failures=state.consecutive_failures,
            last_failure_time=state.last_failure_time,
            half_open_attempts=state.half_open_attempts + 1,
        )
        return True

    def record_success(self) -> bool:
        """Close the breaker; return True when it was not already closed."""

        was_closed = self._state.phase == BreakerPhase.CLOSED
        self._state = CircuitBreakerState()
        if not was_closed:
            logger.info("Circuit breaker closed after success")
        return not was_closed

    def record_failure(self) -> bool:
        """Count a terminal failure; return True when this call opened the breaker."""

        state = self._state
        failures = state.consecutive_failures + 1
        now = self.clock.now()
        opened = False
        phase = state.phase
        if phase == BreakerPhase.HALF_OPEN:
            phase = BreakerPhase.OPEN
            opened = True
            logger.warning("Circuit breaker reopened after half-open failure")
        elif phase == BreakerPhase.CLOSED and failures >= self.failure_threshold:
            phase = BreakerPhase.OPEN
            opened = True
            logger.warning("Circuit breaker opened after %d consecutive failures", failures)

        self._state = CircuitBreakerState(
            phase=phase,
            consecutive_failures=failures,
            last_failure_time=now,
            half_open_attempts=0 if opened else state.half_open_attempts,
        )
        return opened

    def release_probe(self) -> None:
        """Give back a half-open probe that ended without a verdict."""

        state = self._state
        if state.phase != BreakerPhase.HALF_OPEN or state.half_open_attempts == 0:
            return
        self._state = CircuitBreakerState(
            phase=state.phase,
            consecutive_failures=state.consecutive_failures,
            last_failure_time=state.last_failure_time,
            half_open_attempts=state.half_open_attempts - 1,
        )

    def reset(self) -> None:
        self._state = CircuitBreakerState()

    def _cooldown_elapsed(self) -> bool:
        last_failure = self._state.last_failure_time
        if last_failure is None:
            return True
        return (self.clock.now() - last_failure).total_seconds() >= self.cooldown_seconds
