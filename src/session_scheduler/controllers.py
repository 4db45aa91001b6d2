"""Controllers for session scheduler CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from session_scheduler.config import Settings
from session_scheduler.events import EventBus, SchedulerEvent
from session_scheduler.execution.launcher import ProcessLauncher
from session_scheduler.execution.models import (
    CommandSpec,
    ExecutionStats,
    Success,
    describe_outcome,
)
from session_scheduler.storage.common import utc_now
from session_scheduler.storage.repository import SnapshotDecodeError, SnapshotRepository
from session_scheduler.timing.engine import build_scheduler
from session_scheduler.timing.models import SchedulerState, SchedulerStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunCommand:
    """CLI inputs for the foreground scheduler loop."""

    db_path: Path | None
    command: str | None
    duration_seconds: float | None
    cadence_seconds: float | None
    auto_restart: bool
    restore: bool


@dataclass(slots=True)
class RunResult:
    state: SchedulerState
    lines: list[str]


@dataclass(slots=True)
class StatusCommand:
    db_path: Path | None


@dataclass(slots=True)
class ClearCommand:
    db_path: Path | None


@dataclass(slots=True)
class ProbeCommand:
    """CLI inputs for a single launcher invocation."""

    command: str | None
    timeout_seconds: float | None


@dataclass(slots=True)
class ProbeResult:
    success: bool
    lines: list[str]


class SchedulerCliController:
    """Coordinates scheduler command execution."""

    def run(self, command: RunCommand) -> RunResult:
        settings = Settings.from_env(db_path=command.db_path)
        if command.command is not None:
            settings.command.template = command.command.strip()
        if command.duration_seconds is not None:
            settings.session.duration_seconds = command.duration_seconds
        if command.cadence_seconds is not None:
            settings.session.cadence_interval_seconds = command.cadence_seconds
        if command.auto_restart:
            settings.session.auto_restart = True
        settings.validate_for_run()

        events = EventBus()
        events.subscribe(_log_event)
        with _repository(settings) as repository:
            scheduler = build_scheduler(settings, repository=repository, events=events)
            restored = command.restore and scheduler.restore()
            if not restored:
                scheduler.start()
            elif scheduler.state == SchedulerState.ERROR:
                logger.info("Restored session is in error state, retrying")
                scheduler.retry_after_error()
            elif scheduler.state == SchedulerState.PAUSED:
                logger.info("Restored session is paused, resuming")
                scheduler.resume()
            ticks = scheduler.run_loop(exit_when_finished=True)
            status = scheduler.status()

        lines = [
            f"Scheduler loop finished after {ticks} ticks "
            f"(restored={'yes' if restored else 'no'}).",
        ]
        lines.extend(_format_status(status))
        return RunResult(state=status.state, lines=lines)

    def status(self, command: StatusCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            try:
                snapshot = repository.load()
            except SnapshotDecodeError as error:
                return [f"Snapshot: malformed ({error})"]
            stats = repository.load_stats()

        lines: list[str] = []
        if snapshot is None:
            lines.append("Snapshot: none")
        else:
            session = snapshot.session
            now = utc_now()
            lines.extend(
                [
                    f"Snapshot: session={session.id} state={session.state.value} "
                    f"persisted_at={snapshot.persistence_timestamp.isoformat()} "
                    f"checksum={'ok' if snapshot.checksum_valid else 'mismatch'}",
                    f"Progress: {session.progress_fraction(now):.1%} "
                    f"remaining={session.time_remaining(now):.0f}s "
                    f"drift={session.accumulated_drift:.2f}s",
                    f"Runs: executions={session.execution_count} errors={session.error_count} "
                    f"last_boundary={session.last_boundary}",
                ],
            )
        lines.append(_format_stats(stats))
        return lines

    def clear(self, command: ClearCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            removed = repository.clear()
        if removed:
            return [f"Snapshot {settings.recovery.storage_key!r} cleared."]
        return ["No snapshot to clear."]

    def probe(self, command: ProbeCommand) -> ProbeResult:
        settings = Settings.from_env()
        template = (command.command or settings.command.template).strip()
        if not template:
            raise ValueError(
                "A command is required. Set SESSION_SCHEDULER_COMMAND or pass --command.",
            )
        timeout_seconds = command.timeout_seconds or settings.command.timeout_seconds
        launcher = ProcessLauncher(
            allowed_env=settings.command.allowed_env,
            grace_seconds=settings.command.grace_seconds,
        )
        outcome = launcher.launch(
            CommandSpec(template=template, working_dir=settings.command.working_dir),
            timeout_seconds=timeout_seconds,
            placeholders={"session_id": "probe", "run_number": "0"},
        )
        lines = [f"Probe outcome: {describe_outcome(outcome)}"]
        if isinstance(outcome, Success):
            lines.append(f"Output: {outcome.output[:200]}")
        return ProbeResult(success=isinstance(outcome, Success), lines=lines)


@contextmanager
def _repository(settings: Settings) -> Iterator[SnapshotRepository]:
    repository = SnapshotRepository(
        settings.db_path,
        storage_key=settings.recovery.storage_key,
    )
    try:
        repository.init_schema()
        yield repository
    finally:
        repository.close()


def _log_event(event: SchedulerEvent) -> None:
    logger.info("Event %s: %s", type(event).__name__, event)


def _format_status(status: SchedulerStatus) -> list[str]:
    lines = [
        f"State: {status.state.value} session={status.session_id or '-'} "
        f"progress={status.progress_fraction:.1%} remaining={status.time_remaining:.0f}s",
        f"Runs: executions={status.execution_count} errors={status.error_count} "
        f"breaker={status.circuit_breaker_phase.value}",
    ]
    if status.last_error:
        lines.append(f"Last error: {status.last_error}")
    lines.append(_format_stats(status.execution_stats))
    return lines


def _format_stats(stats: ExecutionStats | None) -> str:
    if stats is None:
        return "Stats: none"
    return (
        f"Stats: runs={stats.total_runs} success={stats.success_count} "
        f"failure={stats.failure_count} success_rate={stats.success_rate:.1%} "
        f"avg_duration={stats.average_duration:.2f}s breaker_trips={stats.breaker_trips}"
    )
