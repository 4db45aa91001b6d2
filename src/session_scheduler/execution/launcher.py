"""Subprocess launcher for one sandboxed command invocation."""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import tempfile
import threading
import time
from collections.abc import Mapping
from typing import IO

from session_scheduler.errors import ErrorKind, ProcessError
from session_scheduler.execution.failure_classifier import (
    DEFAULT_OUTPUT_FAILURE_MARKERS,
    classify_exit,
    classify_spawn_error,
    validate_output,
)
from session_scheduler.execution.models import (
    Cancelled,
    CommandSpec,
    Failure,
    ProcessOutcome,
    Success,
    Timeout,
)

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_ENV: tuple[str, ...] = ("PATH", "HOME", "USER", "LANG", "LC_ALL")
_INJECTION_ENV_PREFIXES: tuple[str, ...] = ("LD_", "DYLD_")
_POSIX = os.name == "posix"


class CommandRenderError(ValueError):
    """Command template cannot be turned into an argv."""


class ProcessLauncher:
    """Execute one command attempt with a deadline and cooperative cancel."""

    def __init__(
        self,
        *,
        allowed_env: tuple[str, ...] = DEFAULT_ALLOWED_ENV,
        grace_seconds: float = 2.0,
        poll_interval_seconds: float = 0.05,
        failure_markers: tuple[str, ...] = DEFAULT_OUTPUT_FAILURE_MARKERS,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.allowed_env = allowed_env
        self.grace_seconds = grace_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.failure_markers = failure_markers
        self._environ = environ

    def launch(
        self,
        command: CommandSpec,
        *,
        timeout_seconds: float,
        cancel: threading.Event | None = None,
        placeholders: Mapping[str, str] | None = None,
    ) -> ProcessOutcome:
        """Run ``command`` once and classify what happened."""

        try:
            argv = build_argv(command.template, placeholders or {})
        except CommandRenderError as error:
            return Failure(ProcessError(ErrorKind.COMMAND_INVALID, str(error)), attempt=1)

        env = build_sandboxed_environment(
            os.environ if self._environ is None else self._environ,
            allowed=self.allowed_env,
            extra=command.extra_env,
        )
        if cancel is not None and cancel.is_set():
            return Cancelled()

        with (
            tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace") as stdout_handle,
            tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace") as stderr_handle,
        ):
            try:
                process = subprocess.Popen(  # noqa: S603
                    argv,
                    env=env,
                    cwd=command.working_dir,
                    stdin=subprocess.DEVNULL,
                    stdout=stdout_handle,
                    stderr=stderr_handle,
                    text=True,
                    start_new_session=_POSIX,
                )
            except OSError as error:
                process_error = classify_spawn_error(error, command_head=argv[0])
                logger.warning("Failed to start %s: %s", argv[0], process_error.kind.value)
                return Failure(process_error, attempt=1)

            logger.debug("Started %s pid=%s", argv[0], process.pid)
            return self._wait(
                process=process,
                timeout_seconds=timeout_seconds,
                cancel=cancel,
                stdout_handle=stdout_handle,
                stderr_handle=stderr_handle,
            )

    def _wait(
        self,
        *,
        process: subprocess.Popen[str],
        timeout_seconds: float,
        cancel: threading.Event | None,
        stdout_handle: IO[str],
        stderr_handle: IO[str],
    ) -> ProcessOutcome:
        start_monotonic = time.monotonic()
        while True:
            returncode = process.poll()
            elapsed = time.monotonic() - start_monotonic
            if returncode is not None:
                return self._classify_exit(
                    returncode=returncode,
                    duration=elapsed,
                    stdout=_read_all(stdout_handle),
                    stderr=_read_all(stderr_handle),
                )

            if elapsed >= timeout_seconds:
                logger.warning("Command pid=%s timed out after %.1fs", process.pid, elapsed)
                terminate_process(process, grace_seconds=self.grace_seconds)
                return Timeout(duration=elapsed)

            if cancel is not None and cancel.is_set():
                logger.info("Cancelling command pid=%s", process.pid)
                terminate_process(process, grace_seconds=self.grace_seconds)
                return Cancelled()

            wait_seconds = min(self.poll_interval_seconds, max(0.0, timeout_seconds - elapsed))
            if cancel is not None:
                cancel.wait(wait_seconds)
            else:
                time.sleep(wait_seconds)

    def _classify_exit(
        self,
        *,
        returncode: int,
        duration: float,
        stdout: str,
        stderr: str,
    ) -> ProcessOutcome:
        if returncode == 0:
            output_error = validate_output(stdout, failure_markers=self.failure_markers)
            if output_error is None:
                return Success(output=stdout.strip(), duration=duration)
            logger.warning("Command output rejected: %s", output_error.detail)
            return Failure(output_error, attempt=1)

        classification = classify_exit(exit_code=returncode, stdout=stdout, stderr=stderr)
        logger.warning(
            "Command exited with %s: %s",
            returncode,
            classification.to_event_details(),
        )
        return Failure(classification.error, attempt=1)


def build_argv(template: str, placeholders: Mapping[str, str]) -> list[str]:
    """Render placeholders (shell-quoted) and split into argv."""

    stripped = template.strip()
    if not stripped:
        raise CommandRenderError("Command template is empty.")
    quoted = {key: shlex.quote(str(value)) for key, value in placeholders.items()}
    try:
        rendered = stripped.format(**quoted) if "{" in stripped else stripped
    except KeyError as error:
        raise CommandRenderError(f"Unsupported command template placeholder: {error}") from error
    except (IndexError, ValueError) as error:
        raise CommandRenderError(f"Malformed command template: {error}") from error

    try:
        argv = shlex.split(rendered)
    except ValueError as error:
        raise CommandRenderError(f"Malformed command template: {error}") from error
    if not argv:
        raise CommandRenderError("Command template rendered empty command.")
    return argv


def build_sandboxed_environment(
    source: Mapping[str, str],
    *,
    allowed: tuple[str, ...],
    extra: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Copy only allow-listed variables and drop library-injection ones."""

    env = {name: source[name] for name in allowed if name in source}
    if extra:
        env.update(extra)
    return {
        name: value
        for name, value in env.items()
        if not name.startswith(_INJECTION_ENV_PREFIXES)
    }


def terminate_process(process: subprocess.Popen[str], *, grace_seconds: float) -> None:
    """SIGTERM, then SIGKILL once the grace period runs out.

    On POSIX the whole process group is signalled so shell wrappers do not
    leave their children behind.
    """

    try:
        _send_signal(process, signal.SIGTERM)
    except OSError:
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        try:
            _send_signal(process, signal.SIGKILL if _POSIX else signal.SIGTERM)
        except OSError:
            return
        try:
            process.wait(timeout=grace_seconds)
        except subprocess.TimeoutExpired:
            logger.error("Process %d did not exit after SIGKILL", process.pid)


def _send_signal(process: subprocess.Popen[str], signum: int) -> None:
    if _POSIX:
        try:
            os.killpg(process.pid, signum)
            return
        except ProcessLookupError:
            return
        except PermissionError:
            pass
    process.send_signal(signum)


def _read_all(handle: IO[str]) -> str:
    handle.flush()
    handle.seek(0)
    return handle.read()
