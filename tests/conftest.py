"""Shared test fixtures."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from datetime import UTC, datetime

import pytest

from session_scheduler.config import SessionSettings, Settings
from session_scheduler.execution.models import CommandSpec, ProcessOutcome, Success
from session_scheduler.timing.clock import ManualClock

START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class ScriptedLauncher:
    """Launcher double returning queued outcomes, then a default one."""

    def __init__(
        self,
        outcomes: list[ProcessOutcome] | None = None,
        *,
        default: ProcessOutcome | None = None,
    ) -> None:
        self.outcomes = list(outcomes or [])
        self.default = default or Success(output="ok", duration=0.5)
        self.calls: list[dict[str, object]] = []

    def launch(
        self,
        command: CommandSpec,
        *,
        timeout_seconds: float,
        cancel: threading.Event | None = None,
        placeholders: Mapping[str, str] | None = None,
    ) -> ProcessOutcome:
        self.calls.append(
            {
                "command": command,
                "timeout_seconds": timeout_seconds,
                "placeholders": dict(placeholders or {}),
            },
        )
        if self.outcomes:
            return self.outcomes.pop(0)
        return self.default


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    """Settings with a coarse tick so hour-long simulations stay fast."""

    return Settings(
        db_path=tmp_path / "scheduler.db",
        session=SessionSettings(tick_interval_seconds=10.0),
    )


@pytest.fixture()
def scripted_launcher() -> type[ScriptedLauncher]:
    return ScriptedLauncher
