from __future__ import annotations

import shlex
import sys
from datetime import timedelta
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from session_scheduler import __version__
from session_scheduler.main import session_scheduler
from session_scheduler.storage.common import utc_now
from session_scheduler.storage.repository import SnapshotRepository
from session_scheduler.timing.models import PersistedSnapshot, Session

pytestmark = [
    allure.epic("Command Line"),
    allure.feature("Scheduler CLI"),
]


def _python(code: str) -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SESSION_SCHEDULER_COMMAND", raising=False)
    monkeypatch.delenv("SESSION_SCHEDULER_DB_PATH", raising=False)
    monkeypatch.delenv("SESSION_SCHEDULER_AUTO_RESTART", raising=False)


def test_version_option() -> None:
    result = CliRunner().invoke(session_scheduler, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_status_and_clear_on_empty_database(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    status = runner.invoke(session_scheduler, ["status", "--db-path", str(db_path)])
    cleared = runner.invoke(session_scheduler, ["clear", "--db-path", str(db_path)])

    assert status.exit_code == 0, status.output
    assert "Snapshot: none" in status.output
    assert "Stats: none" in status.output
    assert cleared.exit_code == 0, cleared.output
    assert "No snapshot to clear." in cleared.output


def test_status_reports_persisted_snapshot_then_clear_removes_it(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    now = utc_now()
    session = Session(planned_duration=18_000, actual_start_time=now - timedelta(minutes=5))
    repository = SnapshotRepository(db_path)
    repository.init_schema()
    repository.save(PersistedSnapshot.capture(session, at=now))
    repository.close()
    runner = CliRunner()

    status = runner.invoke(session_scheduler, ["status", "--db-path", str(db_path)])
    cleared = runner.invoke(session_scheduler, ["clear", "--db-path", str(db_path)])
    after = runner.invoke(session_scheduler, ["status", "--db-path", str(db_path)])

    assert status.exit_code == 0, status.output
    assert f"Snapshot: session={session.id} state=running" in status.output
    assert "checksum=ok" in status.output
    assert "Snapshot 'session' cleared." in cleared.output
    assert "Snapshot: none" in after.output


def test_probe_reports_success() -> None:
    result = CliRunner().invoke(
        session_scheduler,
        ["probe", "--command", _python("print('pong')"), "--timeout", "30"],
    )

    assert result.exit_code == 0, result.output
    assert "Probe outcome: success" in result.output
    assert "Output: pong" in result.output


def test_probe_failure_exits_non_zero() -> None:
    result = CliRunner().invoke(
        session_scheduler,
        ["probe", "--command", _python("import sys; sys.exit(3)")],
    )

    assert result.exit_code != 0
    assert "Probe outcome:" in result.output


def test_probe_requires_a_command() -> None:
    result = CliRunner().invoke(session_scheduler, ["probe"])

    assert result.exit_code != 0
    assert "A command is required" in result.output


def test_run_requires_a_command(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        session_scheduler,
        ["run", "--db-path", str(tmp_path / "cli.db"), "--duration", "1"],
    )

    assert result.exit_code != 0
    assert "A command is required" in result.output


def test_run_completes_a_short_session(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("SESSION_SCHEDULER_TICK_INTERVAL_SECONDS", "0.05")
    runner = CliRunner()

    result = runner.invoke(
        session_scheduler,
        [
            "run",
            "--db-path",
            str(db_path),
            "--command",
            _python("print('tick')"),
            "--duration",
            "0.3",
            "--no-restore",
            "--log-level",
            "WARNING",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Scheduler loop finished after" in result.output
    assert "(restored=no)" in result.output
    assert "State: completed" in result.output

    status = runner.invoke(session_scheduler, ["status", "--db-path", str(db_path)])
    assert "Snapshot: none" in status.output
    assert "Stats: runs=" in status.output


def test_run_after_error_retries_restored_session(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("SESSION_SCHEDULER_TICK_INTERVAL_SECONDS", "0.05")
    runner = CliRunner()

    failed = runner.invoke(
        session_scheduler,
        [
            "run",
            "--db-path",
            str(db_path),
            "--command",
            str(tmp_path / "definitely-missing-binary"),
            "--duration",
            "2",
            "--log-level",
            "WARNING",
        ],
    )

    assert failed.exit_code != 0
    assert "State: error" in failed.output
    status = runner.invoke(session_scheduler, ["status", "--db-path", str(db_path)])
    assert "state=error" in status.output

    recovered = runner.invoke(
        session_scheduler,
        [
            "run",
            "--db-path",
            str(db_path),
            "--command",
            _python("print('tick')"),
            "--duration",
            "0.5",
            "--log-level",
            "WARNING",
        ],
    )

    assert recovered.exit_code == 0, recovered.output
    assert "State: completed" in recovered.output
    status = runner.invoke(session_scheduler, ["status", "--db-path", str(db_path)])
    assert "Snapshot: none" in status.output
