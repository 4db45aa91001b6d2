"""Domain models for one resilient command execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from session_scheduler.errors import ProcessError
from session_scheduler.storage.common import from_iso


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Opaque command descriptor handed to the launcher.

    ``template`` is split shell-style after rendering ``{session_id}`` and
    ``{run_number}`` placeholders.
    """

    template: str
    working_dir: str | None = None
    extra_env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Success:
    output: str
    duration: float


@dataclass(frozen=True, slots=True)
class Failure:
    error: ProcessError
    attempt: int


@dataclass(frozen=True, slots=True)
class Timeout:
    duration: float


@dataclass(frozen=True, slots=True)
class Cancelled:
    pass


ProcessOutcome = Success | Failure | Timeout | Cancelled


def describe_outcome(outcome: ProcessOutcome) -> str:
    """One-line summary for logs and CLI output."""

    if isinstance(outcome, Success):
        return f"success duration={outcome.duration:.2f}s output_chars={len(outcome.output)}"
    if isinstance(outcome, Failure):
        return (
            f"failure kind={outcome.error.kind.value} attempt={outcome.attempt} "
            f"retryable={outcome.error.retryable} detail={outcome.error.detail!r}"
        )
    if isinstance(outcome, Timeout):
        return f"timeout duration={outcome.duration:.2f}s"
    return "cancelled"


class BreakerPhase(str, Enum):
    """Circuit breaker phases."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True, slots=True)
class CircuitBreakerState:
    """Read-only copy of the breaker bookkeeping."""

    phase: BreakerPhase = BreakerPhase.CLOSED
    consecutive_failures: int = 0
    last_failure_time: datetime | None = None
    half_open_attempts: int = 0


@dataclass(slots=True)
class ExecutionStats:
    """Running aggregate over pipeline calls; append-only except for reset."""

    total_runs: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_duration: float = 0.0
    last_run_time: datetime | None = None
    last_success_time: datetime | None = None
    consecutive_failures: int = 0
    breaker_trips: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_runs == 0:
            return 0.0
        return self.success_count / self.total_runs

    @property
    def average_duration(self) -> float:
        if self.total_runs == 0:
            return 0.0
        return self.total_duration / self.total_runs

    def record(self, *, succeeded: bool, duration: float, at: datetime) -> None:
        self.total_runs += 1
        self.total_duration += duration
        self.last_run_time = at
        if succeeded:
            self.success_count += 1
            self.consecutive_failures = 0
            self.last_success_time = at
            return
        self.failure_count += 1
        self.consecutive_failures += 1

    def copy(self) -> ExecutionStats:
        return ExecutionStats(
            total_runs=self.total_runs,
            success_count=self.success_count,
            failure_count=self.failure_count,
            total_duration=self.total_duration,
            last_run_time=self.last_run_time,
            last_success_time=self.last_success_time,
            consecutive_failures=self.consecutive_failures,
            breaker_trips=self.breaker_trips,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "total_runs": self.total_runs,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total_duration": self.total_duration,
            "last_run_time": _iso_or_none(self.last_run_time),
            "last_success_time": _iso_or_none(self.last_success_time),
            "consecutive_failures": self.consecutive_failures,
            "breaker_trips": self.breaker_trips,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ExecutionStats:
        return cls(
            total_runs=int(payload.get("total_runs", 0)),
            success_count=int(payload.get("success_count", 0)),
            failure_count=int(payload.get("failure_count", 0)),
            total_duration=float(payload.get("total_duration", 0.0)),
            last_run_time=_parse_optional_datetime(payload.get("last_run_time")),
            last_success_time=_parse_optional_datetime(payload.get("last_success_time")),
            consecutive_failures=int(payload.get("consecutive_failures", 0)),
            breaker_trips=int(payload.get("breaker_trips", 0)),
        )


def _iso_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_optional_datetime(value: object) -> datetime | None:
    if value is None:
        return None
    return from_iso(str(value))
