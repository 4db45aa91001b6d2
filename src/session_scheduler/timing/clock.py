"""Injectable time sources for the scheduler loop and retry backoff."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta
from typing import Protocol

from session_scheduler.storage.common import utc_now


class Clock(Protocol):
    """Wall-clock reads plus a cancellable sleep."""

    def now(self) -> datetime:
        """Current timezone-aware UTC instant."""

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        """Block for ``seconds``; return True when woken by ``cancel``."""


class SystemClock:
    """Real time."""

    def now(self) -> datetime:
        return utc_now()

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        seconds = max(0.0, seconds)
        if cancel is None:
            time.sleep(seconds)
            return False
        return cancel.wait(seconds)


class ManualClock:
    """Virtual time that only moves when told to.

    ``sleep`` advances the clock instantly and records the requested delay, so
    hours of session time and whole backoff schedules run without waiting.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or utc_now()
        self._lock = threading.Lock()
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> datetime:
        with self._lock:
            self._now += timedelta(seconds=seconds)
            return self._now

    def set(self, instant: datetime) -> None:
        with self._lock:
            self._now = instant

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        if cancel is not None and cancel.is_set():
            return True
        self.sleeps.append(seconds)
        self.advance(max(0.0, seconds))
        return cancel is not None and cancel.is_set()
