"""CLI entrypoint for session-scheduler."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from session_scheduler import __version__
from session_scheduler.controllers import (
    ClearCommand,
    ProbeCommand,
    RunCommand,
    SchedulerCliController,
    StatusCommand,
)
from session_scheduler.timing.models import SchedulerState

click.rich_click.USE_MARKDOWN = True
SCHEDULER_CONTROLLER = SchedulerCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

CommandT = TypeVar("CommandT")
ResultT = TypeVar("ResultT")


@click.group()
@click.version_option(version=__version__, prog_name="session-scheduler")
def session_scheduler() -> None:
    """Run an external command on a fixed cadence across a multi-hour session."""


@session_scheduler.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--command",
    "command_template",
    default=None,
    help="Command to run; `{session_id}` and `{run_number}` are substituted.",
)
@click.option(
    "--duration",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Session length in seconds (default 18000).",
)
@click.option(
    "--cadence",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds between command runs (default 3600).",
)
@click.option(
    "--auto-restart/--no-auto-restart",
    default=False,
    show_default=True,
    help="Start a new session as soon as one completes.",
)
@click.option(
    "--restore/--no-restore",
    default=True,
    show_default=True,
    help="Resume a recent persisted session instead of starting fresh.",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging verbosity.",
)
def run(  # noqa: PLR0913
    db_path: Path | None,
    command_template: str | None,
    duration: float | None,
    cadence: float | None,
    auto_restart: bool,
    restore: bool,
    log_level: str,
) -> None:
    """Run the scheduler loop in the foreground until the session ends.

    SIGINT/SIGTERM persist the session so the next `run` can recover it.
    """

    _configure_logging(log_level)
    result = _call(
        SCHEDULER_CONTROLLER.run,
        RunCommand(
            db_path=db_path,
            command=command_template,
            duration_seconds=duration,
            cadence_seconds=cadence,
            auto_restart=auto_restart,
            restore=restore,
        ),
    )
    _emit_lines(result.lines)
    if result.state == SchedulerState.ERROR:
        raise click.ClickException("Session ended in error state.")


@session_scheduler.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def status(db_path: Path | None) -> None:
    """Show the persisted session snapshot and execution statistics."""

    _emit_lines(_call(SCHEDULER_CONTROLLER.status, StatusCommand(db_path=db_path)))


@session_scheduler.command("clear")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def clear(db_path: Path | None) -> None:
    """Delete the persisted session snapshot."""

    _emit_lines(_call(SCHEDULER_CONTROLLER.clear, ClearCommand(db_path=db_path)))


@session_scheduler.command("probe")
@click.option("--command", "command_template", default=None, help="Command to launch once.")
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Per-attempt timeout in seconds (default 30).",
)
def probe(command_template: str | None, timeout: float | None) -> None:
    """Launch the command once through the sandboxed launcher and classify the result."""

    result = _call(
        SCHEDULER_CONTROLLER.probe,
        ProbeCommand(command=command_template, timeout_seconds=timeout),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Probe failed.")


def _call(handler: Callable[[CommandT], ResultT], command: CommandT) -> ResultT:
    try:
        return handler(command)
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    session_scheduler()
