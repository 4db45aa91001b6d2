from __future__ import annotations

from pathlib import Path

import allure
import pytest

from session_scheduler.config import (
    DEFAULT_DB_PATH,
    CommandSettings,
    DriftSettings,
    RecoverySettings,
    RetrySettings,
    SessionSettings,
    Settings,
)
from session_scheduler.errors import Severity
from session_scheduler.execution.launcher import DEFAULT_ALLOWED_ENV

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def test_from_env_uses_product_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "SESSION_SCHEDULER_DB_PATH",
        "SESSION_SCHEDULER_SESSION_DURATION_SECONDS",
        "SESSION_SCHEDULER_TICK_INTERVAL_SECONDS",
        "SESSION_SCHEDULER_COMMAND",
        "SESSION_SCHEDULER_AUTO_RESTART",
        "SESSION_SCHEDULER_RETRY_BACKOFF_DELAYS",
        "SESSION_SCHEDULER_FATAL_SEVERITY",
        "SESSION_SCHEDULER_COMMAND_ALLOWED_ENV",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == Path(DEFAULT_DB_PATH)
    assert settings.session.duration_seconds == 18_000
    assert settings.session.tick_interval_seconds == 0.1
    assert settings.session.auto_restart is False
    assert settings.command.template == ""
    assert settings.command.allowed_env == DEFAULT_ALLOWED_ENV
    assert settings.retry.backoff_delays == (1.0, 2.0, 4.0, 8.0, 16.0)
    assert settings.error_policy.fatal_severity == Severity.HIGH
    settings.validate()


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SESSION_SCHEDULER_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("SESSION_SCHEDULER_SESSION_DURATION_SECONDS", "7200")
    monkeypatch.setenv("SESSION_SCHEDULER_CADENCE_INTERVAL_SECONDS", "900")
    monkeypatch.setenv("SESSION_SCHEDULER_AUTO_RESTART", "yes")
    monkeypatch.setenv("SESSION_SCHEDULER_COMMAND", "  notify-send {session_id}  ")
    monkeypatch.setenv("SESSION_SCHEDULER_COMMAND_ALLOWED_ENV", "PATH, HOME,,LANG")
    monkeypatch.setenv("SESSION_SCHEDULER_RETRY_BACKOFF_DELAYS", "0.5, 1.5")
    monkeypatch.setenv("SESSION_SCHEDULER_MAX_RECOVERY_ATTEMPTS", "3")
    monkeypatch.setenv("SESSION_SCHEDULER_FATAL_SEVERITY", "Medium")
    monkeypatch.setenv("SESSION_SCHEDULER_STORAGE_KEY", "desk")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.session.duration_seconds == 7200
    assert settings.session.cadence_interval_seconds == 900
    assert settings.session.auto_restart is True
    assert settings.command.template == "notify-send {session_id}"
    assert settings.command.allowed_env == ("PATH", "HOME", "LANG")
    assert settings.retry.backoff_delays == (0.5, 1.5)
    assert settings.drift.max_recovery_attempts == 3
    assert settings.error_policy.fatal_severity == Severity.MEDIUM
    assert settings.recovery.storage_key == "desk"


def test_from_env_prefers_explicit_db_path(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("SESSION_SCHEDULER_DB_PATH", str(tmp_path / "env.db"))

    settings = Settings.from_env(db_path=tmp_path / "cli.db")

    assert settings.db_path == tmp_path / "cli.db"


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("SESSION_SCHEDULER_TICK_INTERVAL_SECONDS", "fast", "Invalid number"),
        ("SESSION_SCHEDULER_RETRY_MAX_ATTEMPTS", "2.5", "Invalid integer"),
        ("SESSION_SCHEDULER_RETRY_BACKOFF_DELAYS", "1,soon", "Invalid number"),
        ("SESSION_SCHEDULER_FATAL_SEVERITY", "urgent", "Invalid severity"),
        ("SESSION_SCHEDULER_AUTO_RESTART", "maybe", "Invalid boolean value"),
    ],
)
def test_from_env_rejects_malformed_values(
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message) as error:
        Settings.from_env()

    assert name in str(error.value)


@pytest.mark.parametrize(
    ("settings", "variable"),
    [
        (
            Settings(session=SessionSettings(duration_seconds=0)),
            "SESSION_DURATION_SECONDS",
        ),
        (
            Settings(session=SessionSettings(tick_interval_seconds=-1)),
            "TICK_INTERVAL_SECONDS",
        ),
        (
            Settings(drift=DriftSettings(soft_threshold_seconds=5, hard_threshold_seconds=2)),
            "DRIFT_HARD_THRESHOLD_SECONDS",
        ),
        (
            Settings(drift=DriftSettings(recovery_interval_multiplier=0.5)),
            "RECOVERY_INTERVAL_MULTIPLIER",
        ),
        (
            Settings(command=CommandSettings(timeout_seconds=0)),
            "COMMAND_TIMEOUT_SECONDS",
        ),
        (
            Settings(retry=RetrySettings(backoff_delays=(1.0, -2.0))),
            "RETRY_BACKOFF_DELAYS",
        ),
        (
            Settings(recovery=RecoverySettings(tolerance_factor=0.9)),
            "RECOVERY_TOLERANCE_FACTOR",
        ),
    ],
)
def test_validate_rejects_out_of_range_values(settings: Settings, variable: str) -> None:
    with pytest.raises(ValueError, match=f"SESSION_SCHEDULER_{variable}"):
        settings.validate()


def test_validate_for_run_requires_a_command() -> None:
    with pytest.raises(ValueError, match="A command is required"):
        Settings().validate_for_run()


def test_validate_for_run_accepts_configured_command() -> None:
    Settings(command=CommandSettings(template="notify {session_id}")).validate_for_run()
