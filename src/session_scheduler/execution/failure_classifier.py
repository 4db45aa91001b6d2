"""Deterministic classification of command exits into the error taxonomy."""

from __future__ import annotations

import errno
import signal
from dataclasses import dataclass

from session_scheduler.errors import ErrorKind, ProcessError

FAILURE_CLASSIFIER_VERSION = 1

EXIT_PERMISSION_DENIED = 126
EXIT_COMMAND_NOT_FOUND = 127

DEFAULT_OUTPUT_FAILURE_MARKERS: tuple[str, ...] = (
    "command not found",
    "permission denied",
    "authentication failed",
    "network error",
    "timeout",
)

_COMMAND_NOT_FOUND_PATTERNS: tuple[str, ...] = (
    "command not found",
    "no such file or directory",
    "not recognized as an internal or external command",
)
_PERMISSION_PATTERNS: tuple[str, ...] = (
    "permission denied",
    "operation not permitted",
    "unauthorized",
    "forbidden",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "try again later",
)
_DNS_PATTERNS: tuple[str, ...] = (
    "could not resolve host",
    "name or service not known",
    "temporary failure in name resolution",
    "nodename nor servname",
    "dns",
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    "network",
    "connection refused",
    "connection reset",
    "timed out",
    "unreachable",
    "temporarily unavailable",
)
_MEMORY_PATTERNS: tuple[str, ...] = (
    "out of memory",
    "cannot allocate memory",
    "memoryerror",
)
_DISK_PATTERNS: tuple[str, ...] = (
    "no space left on device",
    "disk quota exceeded",
)

# Ordered: the first matching rule wins.
_STDERR_RULES: tuple[tuple[str, ErrorKind, tuple[str, ...]], ...] = (
    ("disk_exhausted", ErrorKind.DISK_EXHAUSTED, _DISK_PATTERNS),
    ("memory_exhausted", ErrorKind.MEMORY_EXHAUSTED, _MEMORY_PATTERNS),
    ("permission_denied", ErrorKind.PERMISSION_DENIED, _PERMISSION_PATTERNS),
    ("command_not_found", ErrorKind.COMMAND_NOT_FOUND, _COMMAND_NOT_FOUND_PATTERNS),
    ("rate_limited", ErrorKind.RATE_LIMITED, _RATE_LIMIT_PATTERNS),
    ("dns_failure", ErrorKind.DNS_FAILURE, _DNS_PATTERNS),
    ("network_unreachable", ErrorKind.NETWORK_UNREACHABLE, _NETWORK_PATTERNS),
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized classification result."""

    error: ProcessError
    matched_rule: str
    matched_pattern: str | None

    def to_event_details(self) -> dict[str, object]:
        """Serialize classifier diagnostics for logs."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
            **self.error.to_details(),
        }


def classify_exit(*, exit_code: int, stdout: str, stderr: str) -> FailureClassification:
    """Classify a non-zero exit from its code and captured output."""

    if exit_code == EXIT_PERMISSION_DENIED:
        return _classified(ErrorKind.PERMISSION_DENIED, "exit_code_126", None, exit_code, stderr)
    if exit_code == EXIT_COMMAND_NOT_FOUND:
        return _classified(ErrorKind.COMMAND_NOT_FOUND, "exit_code_127", None, exit_code, stderr)

    haystack = _normalize_text(stdout=stdout, stderr=stderr)
    for rule, kind, patterns in _STDERR_RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return _classified(kind, rule, pattern, exit_code, stderr)

    if exit_code < 0:
        return _classified(
            ErrorKind.EXECUTION_FAILED,
            "killed_by_signal",
            _signal_name(-exit_code),
            exit_code,
            stderr,
        )

    return _classified(ErrorKind.EXECUTION_FAILED, "fallback_unknown", None, exit_code, stderr)


def validate_output(
    output: str,
    *,
    failure_markers: tuple[str, ...] = DEFAULT_OUTPUT_FAILURE_MARKERS,
) -> ProcessError | None:
    """Reject empty output or output carrying a known failure marker."""

    trimmed = output.strip()
    if not trimmed:
        return ProcessError(ErrorKind.INVALID_OUTPUT, "empty output")
    pattern = _first_match(trimmed.lower(), failure_markers)
    if pattern is not None:
        return ProcessError(ErrorKind.INVALID_OUTPUT, f"output contains {pattern!r}")
    return None


def classify_spawn_error(error: OSError, *, command_head: str) -> ProcessError:
    """Map a failure to start the process into the taxonomy."""

    if isinstance(error, FileNotFoundError) or error.errno == errno.ENOENT:
        return ProcessError(ErrorKind.COMMAND_NOT_FOUND, f"command not found: {command_head}")
    if isinstance(error, PermissionError) or error.errno == errno.EACCES:
        return ProcessError(ErrorKind.PERMISSION_DENIED, f"permission denied: {command_head}")
    if error.errno == errno.ENOEXEC:
        return ProcessError(ErrorKind.COMMAND_INVALID, f"not a valid executable: {command_head}")
    if error.errno == errno.ENOMEM:
        return ProcessError(ErrorKind.MEMORY_EXHAUSTED, str(error))
    return ProcessError(ErrorKind.SPAWN_FAILED, f"failed to start {command_head}: {error}")


def _classified(
    kind: ErrorKind,
    rule: str,
    pattern: str | None,
    exit_code: int,
    stderr: str,
) -> FailureClassification:
    detail = f"exit code {exit_code}"
    preview = stderr.strip()
    if preview:
        detail = f"{detail}: {preview[:200]}"
    return FailureClassification(
        error=ProcessError(kind, detail),
        matched_rule=rule,
        matched_pattern=pattern,
    )


def _normalize_text(*, stdout: str, stderr: str) -> str:
    return f"{stderr}\n{stdout}".lower()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)
