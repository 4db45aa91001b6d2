"""Session scheduler: tick loop, drift tracking and lifecycle transitions."""

from __future__ import annotations

import logging
import queue
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from session_scheduler.config import Settings
from session_scheduler.errors import ErrorKind, ProcessError, is_fatal
from session_scheduler.events import (
    DriftDegraded,
    EventBus,
    SessionCompleted,
    SessionFailed,
    SessionPaused,
    SessionResumed,
    SessionStarted,
)
from session_scheduler.execution.circuit_breaker import CircuitBreaker
from session_scheduler.execution.launcher import ProcessLauncher
from session_scheduler.execution.models import (
    Cancelled,
    CommandSpec,
    Failure,
    ProcessOutcome,
    Success,
    Timeout,
)
from session_scheduler.execution.pipeline import ExecutionPipeline, RetryPolicy
from session_scheduler.storage.repository import SnapshotDecodeError, SnapshotRepository
from session_scheduler.timing.clock import Clock, SystemClock
from session_scheduler.timing.models import (
    PersistedSnapshot,
    SchedulerState,
    SchedulerStatus,
    Session,
    TimingAccuracy,
)
from session_scheduler.timing.recovery import RecoveryDecision, RecoveryReason, evaluate_snapshot

logger = logging.getLogger(__name__)

Dispatcher = Callable[[Callable[[], None]], None]


def thread_dispatcher(work: Callable[[], None]) -> None:
    """Run ``work`` on a daemon worker thread."""

    threading.Thread(target=work, daemon=True, name="session-scheduler-run").start()


def inline_dispatcher(work: Callable[[], None]) -> None:
    """Run ``work`` synchronously on the caller's thread."""

    work()


class SessionScheduler:
    """Owns the one active session and every state transition.

    Public operations and ``tick`` serialize on one re-entrant lock. Command
    runs execute through ``dispatcher`` (a daemon thread by default) and hand
    their outcome back through a queue that the next tick drains, so only the
    scheduler mutates the session.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        pipeline: ExecutionPipeline,
        clock: Clock | None = None,
        repository: SnapshotRepository | None = None,
        events: EventBus | None = None,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        self.settings = settings
        self.pipeline = pipeline
        self.clock = clock or SystemClock()
        self.repository = repository
        self.events = events or pipeline.events
        self.dispatcher = dispatcher or thread_dispatcher

        self._lock = threading.RLock()
        self._state = SchedulerState.IDLE
        self._session: Session | None = None
        self._results: queue.Queue[tuple[str, ProcessOutcome]] = queue.Queue()
        self._in_flight = threading.Event()
        self._run_cancel: threading.Event | None = None
        self._run_session_id: str | None = None
        self._dispatch_pending = False
        self._stop_requested = threading.Event()

        self._tick_interval = settings.session.tick_interval_seconds
        self._last_tick_at: datetime | None = None
        self._grid_anchor: datetime | None = None
        self._grid_ticks = 0
        self._last_persist_at: datetime | None = None
        self._accuracy = TimingAccuracy.HIGH_PRECISION
        self._last_error: str | None = None
        self._restored_pending = False
        self._system_suspended = False
        self._paused_by_sleep = False
        self._status = self._build_status(self.clock.now())

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def tick_interval(self) -> float:
        """Current tick period; coarser after a drift recovery attempt."""

        return self._tick_interval

    def status(self) -> SchedulerStatus:
        """Latest published status; safe to call from any thread."""

        return self._status

    def start(self) -> bool:
        with self._lock:
            if self._state not in (SchedulerState.IDLE, SchedulerState.COMPLETED):
                return self._invalid("start")
            self._start_session(self.clock.now())
            return True

    def pause(self) -> bool:
        with self._lock:
            if self._state != SchedulerState.RUNNING:
                return self._invalid("pause")
            self._pause(self.clock.now())
            return True

    def resume(self) -> bool:
        with self._lock:
            if self._state != SchedulerState.PAUSED:
                return self._invalid("resume")
            self._resume(self.clock.now())
            return True

    def stop(self) -> bool:
        with self._lock:
            if not self._state.is_active:
                return self._invalid("stop")
            now = self.clock.now()
            session = self._session
            self._cancel_run()
            self._session = None
            self._dispatch_pending = False
            self._set_state(SchedulerState.IDLE)
            self._clear_snapshot()
            self._save_stats()
            logger.info("Stopped session %s", session.id if session else None)
            self._publish_status(now)
            return True

    def reset(self) -> bool:
        """Return to IDLE from any state and drop execution statistics."""

        with self._lock:
            now = self.clock.now()
            self._cancel_run()
            self._session = None
            self._dispatch_pending = False
            self._last_error = None
            self._restored_pending = False
            self._paused_by_sleep = False
            self._accuracy = TimingAccuracy.HIGH_PRECISION
            self._tick_interval = self.settings.session.tick_interval_seconds
            self.pipeline.reset_stats()
            self._set_state(SchedulerState.IDLE)
            self._clear_snapshot()
            self._save_stats()
            self._publish_status(now)
            return True

    def retry_after_error(self) -> bool:
        with self._lock:
            session = self._session
            if self._state != SchedulerState.ERROR or session is None:
                return self._invalid("retry_after_error")
            now = self.clock.now()
            self._close_pause(session, now)
            session.accumulated_drift = 0.0
            session.recovery_attempts = 0
            self._tick_interval = self.settings.session.tick_interval_seconds
            self._accuracy = TimingAccuracy.HIGH_PRECISION
            self._last_error = None
            self._reset_grid(now)
            self._set_state(SchedulerState.RUNNING)
            self.events.publish(SessionResumed(session_id=session.id, at=now))
            self._dispatch(session)
            self._persist(now)
            self._publish_status(now)
            return True

    def notify_system_sleep(self) -> bool:
        """Pause an active session and cancel the running command."""

        with self._lock:
            self._system_suspended = True
            self._cancel_run()
            if self._state not in (SchedulerState.RUNNING, SchedulerState.RECOVERING):
                logger.info("System sleep with scheduler %s", self._state.value)
                return False
            self._paused_by_sleep = True
            self._pause(self.clock.now())
            return True

    def notify_system_wake(self) -> bool:
        """Resume a session that ``notify_system_sleep`` paused."""

        with self._lock:
            self._system_suspended = False
            if self._state != SchedulerState.PAUSED or not self._paused_by_sleep:
                logger.info("System wake with scheduler %s", self._state.value)
                self._paused_by_sleep = False
                return False
            self._resume(self.clock.now())
            return True

    def restore(self) -> bool:
        """Rebuild the session from a persisted snapshot at startup.

        Returns True when a session was restored into RECOVERING, PAUSED or
        ERROR. An ERROR session stays there until ``retry_after_error`` or
        ``reset``.
        """

        with self._lock:
            if self._state != SchedulerState.IDLE:
                return self._invalid("restore")
            if self.repository is None:
                return False
            now = self.clock.now()
            stats = self.repository.load_stats()
            if stats is not None:
                self.pipeline.restore_stats(stats)

            snapshot: PersistedSnapshot | None = None
            try:
                snapshot = self.repository.load()
            except SnapshotDecodeError as error:
                decision = RecoveryDecision(
                    viable=False,
                    reason=RecoveryReason.MALFORMED,
                    detail=str(error),
                )
            else:
                decision = evaluate_snapshot(
                    snapshot,
                    now=now,
                    recovery_window_seconds=self.settings.recovery.recovery_window_seconds,
                    tolerance_factor=self.settings.recovery.tolerance_factor,
                )
            if not decision.viable or snapshot is None:
                if decision.reason != RecoveryReason.ABSENT:
                    logger.warning(
                        "Discarding snapshot (%s): %s",
                        decision.reason.value,
                        decision.detail,
                    )
                    if decision.reason == RecoveryReason.CHECKSUM_MISMATCH:
                        self._last_error = (
                            f"{ErrorKind.CHECKSUM_MISMATCH.value}: {decision.detail}"
                        )
                    self.repository.clear()
                return False

            session = snapshot.session
            self._session = session
            resumable = session.state in (SchedulerState.RUNNING, SchedulerState.RECOVERING)
            if session.state == SchedulerState.ERROR:
                self._set_state(SchedulerState.ERROR)
            elif resumable and not self._system_suspended:
                self._restored_pending = True
                self._reset_grid(now)
                self._set_state(SchedulerState.RECOVERING)
            else:
                if session.pause_started_at is None:
                    session.pause_started_at = now
                self._set_state(SchedulerState.PAUSED)
            logger.info(
                "Restored session %s as %s (elapsed %.1fs)",
                session.id,
                self._state.value,
                session.elapsed_effective(now),
            )
            self._persist(now)
            self._publish_status(now)
            return True

    def tick(self) -> SchedulerStatus:
        """Advance the state machine once and publish the new status."""

        with self._lock:
            now = self.clock.now()
            self._drain_results(now)
            if self._state == SchedulerState.RECOVERING:
                self._advance_recovery(now)
            elif self._state == SchedulerState.RUNNING:
                self._tick_running(now)
            self._maybe_persist(now)
            self._publish_status(now)
            return self._status

    def run_loop(self, *, max_ticks: int | None = None, exit_when_finished: bool = False) -> int:
        """Tick on an absolute grid until stopped; return the number of ticks.

        SIGINT/SIGTERM request a stop; the session is persisted on the way
        out so a restart can recover it.
        """

        self._stop_requested.clear()
        ticks = 0
        with self._signal_handlers():
            try:
                while not self._stop_requested.is_set():
                    if max_ticks is not None and ticks >= max_ticks:
                        break
                    if self.clock.sleep(self._next_tick_delay(), self._stop_requested):
                        break
                    status = self.tick()
                    ticks += 1
                    if exit_when_finished and _finished(status.state):
                        logger.info("Scheduler finished in state %s", status.state.value)
                        break
            finally:
                self.shutdown()
        return ticks

    def request_stop(self) -> None:
        self._stop_requested.set()

    def shutdown(self) -> None:
        """Cancel the running command and persist what is left of the session."""

        with self._lock:
            self._stop_requested.set()
            self._cancel_run()
            now = self.clock.now()
            if self._session is not None and self._state not in (
                SchedulerState.IDLE,
                SchedulerState.COMPLETED,
            ):
                self._persist(now)
            self._save_stats()
            self._publish_status(now)

    def _start_session(self, now: datetime) -> None:
        session = Session(
            planned_duration=self.settings.session.duration_seconds,
            actual_start_time=now,
            last_boundary=0,
        )
        self._session = session
        self._tick_interval = self.settings.session.tick_interval_seconds
        self._accuracy = TimingAccuracy.HIGH_PRECISION
        self._last_error = None
        self._restored_pending = False
        self._paused_by_sleep = False
        self._reset_grid(now)
        self._set_state(SchedulerState.RUNNING)
        logger.info(
            "Started session %s for %.0fs (cadence %.0fs)",
            session.id,
            session.planned_duration,
            self.settings.session.cadence_interval_seconds,
        )
        self.events.publish(SessionStarted(session_id=session.id, at=now))
        self._dispatch(session)
        self._persist(now)
        self._publish_status(now)

    def _pause(self, now: datetime) -> None:
        session = self._require_session()
        session.pause_started_at = now
        self._restored_pending = False
        self._set_state(SchedulerState.PAUSED)
        self.events.publish(SessionPaused(session_id=session.id, at=now))
        self._persist(now)
        self._publish_status(now)

    def _resume(self, now: datetime) -> None:
        session = self._require_session()
        self._close_pause(session, now)
        self._recalibrate(session, now)
        self._paused_by_sleep = False
        self._set_state(SchedulerState.RUNNING)
        self.events.publish(SessionResumed(session_id=session.id, at=now))
        self._persist(now)
        self._publish_status(now)

    def _tick_running(self, now: datetime) -> None:
        session = self._require_session()
        self._measure_drift(session, now)
        if self._accuracy == TimingAccuracy.DEGRADED:
            self._set_state(SchedulerState.RECOVERING)
            logger.warning("Drift %.2fs beyond hard threshold", session.accumulated_drift)
            self.events.publish(
                DriftDegraded(session_id=session.id, at=now, amount=session.accumulated_drift),
            )
            self._persist(now)
            return

        elapsed = session.elapsed_effective(now)
        if elapsed >= session.planned_duration:
            self._complete(session, now)
            return

        boundary = int(elapsed // self.settings.session.cadence_interval_seconds)
        if boundary > session.last_boundary:
            session.last_boundary = boundary
            self._dispatch(session)
        elif self._dispatch_pending and not self._in_flight.is_set():
            self._dispatch(session)

    def _measure_drift(self, session: Session, now: datetime) -> None:
        previous = self._last_tick_at
        self._last_tick_at = now
        if previous is None:
            return
        actual_delta = (now - previous).total_seconds()
        expected_delta = self._tick_interval
        if actual_delta < 0:
            self._last_error = (
                f"{ErrorKind.CLOCK_SKEW.value}: clock moved back {-actual_delta:.2f}s"
            )
            logger.warning("Wall clock moved back by %.2fs, recalibrating", -actual_delta)
            self._reset_grid(now)
            return

        gap = actual_delta - expected_delta
        suspend_gap = self.settings.drift.suspend_gap_seconds
        if suspend_gap > 0 and gap > suspend_gap:
            logger.warning("Tick gap of %.1fs treated as system suspension", gap)
            session.paused_interval += gap
            self._reset_grid(now)
            return

        session.accumulated_drift += gap
        self._accuracy = self._classify_drift(session.accumulated_drift)

    def _classify_drift(self, drift: float) -> TimingAccuracy:
        magnitude = abs(drift)
        if magnitude <= self.settings.drift.soft_threshold_seconds:
            return TimingAccuracy.HIGH_PRECISION
        if magnitude <= self.settings.drift.hard_threshold_seconds:
            return TimingAccuracy.ACCEPTABLE
        return TimingAccuracy.DEGRADED

    def _advance_recovery(self, now: datetime) -> None:
        session = self._require_session()
        if self._restored_pending:
            self._restored_pending = False
            self._recalibrate(session, now)
            self._set_state(SchedulerState.RUNNING)
            self.events.publish(SessionResumed(session_id=session.id, at=now))
            self._persist(now)
            return

        drift_settings = self.settings.drift
        if session.recovery_attempts >= drift_settings.max_recovery_attempts:
            self._fail(
                session,
                ProcessError(
                    ErrorKind.DRIFT_CRITICAL,
                    f"drift {session.accumulated_drift:.2f}s after "
                    f"{session.recovery_attempts} recovery attempts",
                ),
                now,
            )
            return

        session.recovery_attempts += 1
        session.accumulated_drift /= 2
        self._tick_interval = (
            self.settings.session.tick_interval_seconds
            * drift_settings.recovery_interval_multiplier
        )
        self._reset_grid(now)
        self._accuracy = self._classify_drift(session.accumulated_drift)
        logger.info(
            "Drift recovery attempt %d/%d: drift %.2fs, tick interval %.2fs",
            session.recovery_attempts,
            drift_settings.max_recovery_attempts,
            session.accumulated_drift,
            self._tick_interval,
        )
        if self._accuracy != TimingAccuracy.DEGRADED:
            self._set_state(SchedulerState.RUNNING)
            self._persist(now)

    def _complete(self, session: Session, now: datetime) -> None:
        self._set_state(SchedulerState.COMPLETED)
        logger.info(
            "Session %s completed: %d runs, %d errors",
            session.id,
            session.execution_count,
            session.error_count,
        )
        self.events.publish(
            SessionCompleted(
                session_id=session.id,
                at=now,
                execution_count=session.execution_count,
                error_count=session.error_count,
            ),
        )
        self._clear_snapshot()
        self._save_stats()
        if self.settings.session.auto_restart:
            self._start_session(now)

    def _fail(self, session: Session, error: ProcessError, now: datetime) -> None:
        self._last_error = f"{error.kind.value}: {error.detail}"
        self._set_state(SchedulerState.ERROR)
        logger.error("Session %s failed: %s", session.id, error.to_details())
        self.events.publish(SessionFailed(session_id=session.id, at=now, error=error))
        self._persist(now)

    def _dispatch(self, session: Session) -> bool:
        if self._in_flight.is_set():
            if self._run_session_id != session.id:
                # A cancelled run of an earlier session is still winding down.
                logger.info(
                    "Deferring boundary %d of session %s until the previous run exits",
                    session.last_boundary,
                    session.id,
                )
                self._dispatch_pending = True
                return False
            logger.warning(
                "Skipping boundary %d of session %s: previous run still in flight",
                session.last_boundary,
                session.id,
            )
            return False

        self._dispatch_pending = False
        self._in_flight.set()
        self._run_session_id = session.id
        cancel = threading.Event()
        self._run_cancel = cancel
        session_id = session.id
        placeholders = {
            "session_id": session_id,
            "run_number": str(session.execution_count + session.error_count + 1),
        }
        results = self._results
        in_flight = self._in_flight
        pipeline = self.pipeline

        def _work() -> None:
            try:
                try:
                    outcome = pipeline.run_once(cancel=cancel, placeholders=placeholders)
                except Exception as error:  # noqa: BLE001
                    logger.exception("Command run crashed")
                    outcome = Failure(
                        ProcessError(ErrorKind.EXECUTION_FAILED, f"pipeline crashed: {error}"),
                        attempt=0,
                    )
                results.put((session_id, outcome))
            finally:
                in_flight.clear()

        logger.info(
            "Dispatching run for boundary %d of session %s",
            session.last_boundary,
            session_id,
        )
        self.dispatcher(_work)
        return True

    def _drain_results(self, now: datetime) -> None:
        while True:
            try:
                session_id, outcome = self._results.get_nowait()
            except queue.Empty:
                return
            self._apply_outcome(session_id, outcome, now)

    def _apply_outcome(self, session_id: str, outcome: ProcessOutcome, now: datetime) -> None:
        session = self._session
        if session is None or session.id != session_id:
            logger.debug("Dropping outcome for inactive session %s", session_id)
            return
        if isinstance(outcome, Cancelled):
            return

        session.last_execution_time = now
        if isinstance(outcome, Success):
            session.execution_count += 1
            return

        if isinstance(outcome, Timeout):
            error = ProcessError(
                ErrorKind.EXECUTION_TIMEOUT,
                f"timed out after {outcome.duration:.1f}s",
            )
        else:
            error = outcome.error
        session.error_count += 1
        self._last_error = f"{error.kind.value}: {error.detail}"
        if self._state.is_active and is_fatal(
            error,
            fatal_severity=self.settings.error_policy.fatal_severity,
        ):
            self._fail(session, error, now)

    def _cancel_run(self) -> None:
        if self._run_cancel is not None and self._in_flight.is_set():
            logger.info("Cancelling in-flight command run")
            self._run_cancel.set()

    def _close_pause(self, session: Session, now: datetime) -> None:
        if session.pause_started_at is None:
            return
        session.paused_interval += max(0.0, (now - session.pause_started_at).total_seconds())
        session.pause_started_at = None

    def _recalibrate(self, session: Session, now: datetime) -> None:
        if abs(session.accumulated_drift) > self.settings.drift.soft_threshold_seconds:
            session.accumulated_drift /= 2
        self._accuracy = self._classify_drift(session.accumulated_drift)
        self._reset_grid(now)

    def _reset_grid(self, now: datetime) -> None:
        self._last_tick_at = now
        self._grid_anchor = now
        self._grid_ticks = 0

    def _next_tick_delay(self) -> float:
        with self._lock:
            now = self.clock.now()
            anchor = self._grid_anchor
            if anchor is None:
                self._reset_grid(now)
                anchor = now
            self._grid_ticks += 1
            target = anchor + timedelta(seconds=self._grid_ticks * self._tick_interval)
            return max(0.0, (target - now).total_seconds())

    def _maybe_persist(self, now: datetime) -> None:
        if self._session is None or self._state in (SchedulerState.IDLE, SchedulerState.COMPLETED):
            return
        last = self._last_persist_at
        interval = self.settings.recovery.persist_interval_seconds
        if last is None or (now - last).total_seconds() >= interval:
            self._persist(now)
            self._save_stats()

    def _persist(self, now: datetime) -> None:
        if self.repository is None or self._session is None:
            return
        self.repository.save(PersistedSnapshot.capture(self._session, at=now))
        self._last_persist_at = now

    def _clear_snapshot(self) -> None:
        self._last_persist_at = None
        if self.repository is not None:
            self.repository.clear()

    def _save_stats(self) -> None:
        if self.repository is not None:
            self.repository.save_stats(self.pipeline.stats)

    def _set_state(self, state: SchedulerState) -> None:
        previous = self._state
        self._state = state
        if self._session is not None:
            self._session.state = state
        if previous != state:
            logger.info("Scheduler state %s -> %s", previous.value, state.value)

    def _require_session(self) -> Session:
        if self._session is None:
            raise RuntimeError(f"Scheduler in state {self._state.value} has no session.")
        return self._session

    def _invalid(self, operation: str) -> bool:
        logger.warning("Ignoring %s: scheduler is %s", operation, self._state.value)
        return False

    def _publish_status(self, now: datetime) -> None:
        self._status = self._build_status(now)

    def _build_status(self, now: datetime) -> SchedulerStatus:
        session = self._session
        breaker_state = self.pipeline.breaker_state
        if session is None:
            return SchedulerStatus(
                state=self._state,
                session_id=None,
                progress_fraction=0.0,
                time_remaining=0.0,
                elapsed_effective=0.0,
                accumulated_drift=0.0,
                timing_accuracy=self._accuracy,
                execution_count=0,
                error_count=0,
                execution_stats=self.pipeline.stats,
                circuit_breaker_phase=breaker_state.phase,
                run_in_flight=self._in_flight.is_set(),
                last_error=self._last_error,
            )
        return SchedulerStatus(
            state=self._state,
            session_id=session.id,
            progress_fraction=session.progress_fraction(now),
            time_remaining=session.time_remaining(now),
            elapsed_effective=session.elapsed_effective(now),
            accumulated_drift=session.accumulated_drift,
            timing_accuracy=self._accuracy,
            execution_count=session.execution_count,
            error_count=session.error_count,
            execution_stats=self.pipeline.stats,
            circuit_breaker_phase=breaker_state.phase,
            run_in_flight=self._in_flight.is_set(),
            last_error=self._last_error,
        )

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, stopping scheduler loop", name)
            self._stop_requested.set()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            yield
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
        finally:
            try:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
            except ValueError:
                pass


def build_scheduler(
    settings: Settings,
    *,
    clock: Clock | None = None,
    repository: SnapshotRepository | None = None,
    events: EventBus | None = None,
    launcher: ProcessLauncher | None = None,
) -> SessionScheduler:
    """Wire launcher, breaker, pipeline and scheduler from settings."""

    clock = clock or SystemClock()
    events = events or EventBus()
    breaker = CircuitBreaker(
        clock=clock,
        failure_threshold=settings.breaker.failure_threshold,
        cooldown_seconds=settings.breaker.cooldown_seconds,
        max_half_open_attempts=settings.breaker.max_half_open_attempts,
    )
    pipeline = ExecutionPipeline(
        launcher=launcher
        or ProcessLauncher(
            allowed_env=settings.command.allowed_env,
            grace_seconds=settings.command.grace_seconds,
        ),
        command=CommandSpec(
            template=settings.command.template,
            working_dir=settings.command.working_dir,
        ),
        breaker=breaker,
        clock=clock,
        retry_policy=RetryPolicy(
            max_attempts=settings.retry.max_attempts,
            backoff_delays=settings.retry.backoff_delays,
        ),
        events=events,
        timeout_seconds=settings.command.timeout_seconds,
    )
    return SessionScheduler(
        settings=settings,
        pipeline=pipeline,
        clock=clock,
        repository=repository,
        events=events,
    )


def _finished(state: SchedulerState) -> bool:
    return state in (SchedulerState.IDLE, SchedulerState.COMPLETED, SchedulerState.ERROR)
