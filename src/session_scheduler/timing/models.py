"""Session, scheduler state and the published status snapshot."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from session_scheduler.execution.models import BreakerPhase, ExecutionStats
from session_scheduler.storage.common import from_iso


class SchedulerState(str, Enum):
    """Lifecycle of the scheduler; exactly one session outside IDLE."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    RECOVERING = "recovering"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_active(self) -> bool:
        return self in _ACTIVE_STATES


_ACTIVE_STATES = frozenset(
    {SchedulerState.RUNNING, SchedulerState.PAUSED, SchedulerState.RECOVERING},
)


class TimingAccuracy(str, Enum):
    """Drift classification of the last tick."""

    HIGH_PRECISION = "high_precision"
    ACCEPTABLE = "acceptable"
    DEGRADED = "degraded"


@dataclass(slots=True)
class Session:
    """One long-horizon scheduling window."""

    planned_duration: float
    actual_start_time: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    paused_interval: float = 0.0
    accumulated_drift: float = 0.0
    execution_count: int = 0
    error_count: int = 0
    state: SchedulerState = SchedulerState.RUNNING
    pause_started_at: datetime | None = None
    last_execution_time: datetime | None = None
    last_boundary: int = -1
    recovery_attempts: int = 0

    def elapsed_effective(self, now: datetime) -> float:
        """Session time that counts toward completion, clamped to [0, planned]."""

        elapsed = (now - self.actual_start_time).total_seconds() - self.paused_interval
        if self.pause_started_at is not None:
            elapsed -= max(0.0, (now - self.pause_started_at).total_seconds())
        return min(max(elapsed, 0.0), self.planned_duration)

    def progress_fraction(self, now: datetime) -> float:
        if self.planned_duration <= 0:
            return 1.0
        return self.elapsed_effective(now) / self.planned_duration

    def time_remaining(self, now: datetime) -> float:
        return self.planned_duration - self.elapsed_effective(now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "planned_duration": self.planned_duration,
            "actual_start_time": self.actual_start_time.isoformat(),
            "paused_interval": self.paused_interval,
            "accumulated_drift": self.accumulated_drift,
            "execution_count": self.execution_count,
            "error_count": self.error_count,
            "state": self.state.value,
            "pause_started_at": _iso_or_none(self.pause_started_at),
            "last_execution_time": _iso_or_none(self.last_execution_time),
            "last_boundary": self.last_boundary,
            "recovery_attempts": self.recovery_attempts,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Session:
        """Rebuild a session; raises KeyError/ValueError/TypeError on bad input."""

        return cls(
            id=str(payload["id"]),
            planned_duration=float(payload["planned_duration"]),
            actual_start_time=from_iso(str(payload["actual_start_time"])),
            paused_interval=float(payload.get("paused_interval", 0.0)),
            accumulated_drift=float(payload.get("accumulated_drift", 0.0)),
            execution_count=int(payload.get("execution_count", 0)),
            error_count=int(payload.get("error_count", 0)),
            state=SchedulerState(str(payload["state"])),
            pause_started_at=_parse_optional(payload.get("pause_started_at")),
            last_execution_time=_parse_optional(payload.get("last_execution_time")),
            last_boundary=int(payload.get("last_boundary", -1)),
            recovery_attempts=int(payload.get("recovery_attempts", 0)),
        )


def session_checksum(session: Session) -> str:
    """Integrity digest over the identity fields of a session."""

    material = "|".join(
        (
            session.id,
            session.actual_start_time.isoformat(),
            repr(float(session.planned_duration)),
        ),
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class PersistedSnapshot:
    """Session as written to storage."""

    session: Session
    persistence_timestamp: datetime
    checksum: str

    @classmethod
    def capture(cls, session: Session, *, at: datetime) -> PersistedSnapshot:
        return cls(
            session=Session.from_dict(session.to_dict()),
            persistence_timestamp=at,
            checksum=session_checksum(session),
        )

    @property
    def checksum_valid(self) -> bool:
        return self.checksum == session_checksum(self.session)


@dataclass(frozen=True, slots=True)
class SchedulerStatus:
    """Immutable view published after every tick and transition."""

    state: SchedulerState
    session_id: str | None
    progress_fraction: float
    time_remaining: float
    elapsed_effective: float
    accumulated_drift: float
    timing_accuracy: TimingAccuracy
    execution_count: int
    error_count: int
    execution_stats: ExecutionStats
    circuit_breaker_phase: BreakerPhase
    run_in_flight: bool
    last_error: str | None = None


def _iso_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_optional(value: object) -> datetime | None:
    if value is None:
        return None
    return from_iso(str(value))
