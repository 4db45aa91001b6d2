"""Lifecycle events published to notification and diagnostic collaborators."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from session_scheduler.errors import ProcessError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionStarted:
    session_id: str
    at: datetime


@dataclass(frozen=True, slots=True)
class SessionPaused:
    session_id: str
    at: datetime


@dataclass(frozen=True, slots=True)
class SessionResumed:
    session_id: str
    at: datetime


@dataclass(frozen=True, slots=True)
class SessionCompleted:
    session_id: str
    at: datetime
    execution_count: int
    error_count: int


@dataclass(frozen=True, slots=True)
class SessionFailed:
    session_id: str | None
    at: datetime
    error: ProcessError


@dataclass(frozen=True, slots=True)
class CircuitBreakerOpened:
    at: datetime
    consecutive_failures: int


@dataclass(frozen=True, slots=True)
class CircuitBreakerClosed:
    at: datetime


@dataclass(frozen=True, slots=True)
class DriftDegraded:
    session_id: str
    at: datetime
    amount: float


SchedulerEvent = (
    SessionStarted
    | SessionPaused
    | SessionResumed
    | SessionCompleted
    | SessionFailed
    | CircuitBreakerOpened
    | CircuitBreakerClosed
    | DriftDegraded
)

EventListener = Callable[[SchedulerEvent], None]


class EventBus:
    """Explicit observer list; the core writes, collaborators read."""

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, event: SchedulerEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Event listener failed for %s", type(event).__name__)


class EventRecorder:
    """Listener that keeps every event, handy for diagnostics and tests."""

    def __init__(self) -> None:
        self.events: list[SchedulerEvent] = []

    def __call__(self, event: SchedulerEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[SchedulerEvent]:
        return [event for event in self.events if isinstance(event, event_type)]
