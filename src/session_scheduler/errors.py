"""Closed failure taxonomy shared by the launcher, pipeline and scheduler."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Severity(str, Enum):
    """How much damage a failure does to the running session."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, other: Severity) -> bool:
        return self.rank >= other.rank


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class ErrorCategory(str, Enum):
    """Coarse grouping of failure kinds."""

    TIMING = "timing"
    PROCESS = "process"
    RESOURCE = "resource"
    NETWORK = "network"
    STATE = "state"


class ErrorKind(str, Enum):
    """Every failure the core can report."""

    CLOCK_SKEW = "clock_skew"
    DRIFT_CRITICAL = "drift_critical"
    COMMAND_NOT_FOUND = "command_not_found"
    PERMISSION_DENIED = "permission_denied"
    COMMAND_INVALID = "command_invalid"
    INVALID_OUTPUT = "invalid_output"
    CIRCUIT_BREAKER_OPEN = "circuit_breaker_open"
    ZOMBIE_PROCESS = "zombie_process"
    RATE_LIMITED = "rate_limited"
    EXECUTION_TIMEOUT = "execution_timeout"
    EXECUTION_FAILED = "execution_failed"
    SPAWN_FAILED = "spawn_failed"
    MEMORY_EXHAUSTED = "memory_exhausted"
    DISK_EXHAUSTED = "disk_exhausted"
    NETWORK_UNREACHABLE = "network_unreachable"
    DNS_FAILURE = "dns_failure"
    STATE_DESYNC = "state_desync"
    CHECKSUM_MISMATCH = "checksum_mismatch"


_TAXONOMY: dict[ErrorKind, tuple[ErrorCategory, Severity, bool]] = {
    ErrorKind.CLOCK_SKEW: (ErrorCategory.TIMING, Severity.HIGH, False),
    ErrorKind.DRIFT_CRITICAL: (ErrorCategory.TIMING, Severity.CRITICAL, False),
    ErrorKind.COMMAND_NOT_FOUND: (ErrorCategory.PROCESS, Severity.HIGH, False),
    ErrorKind.PERMISSION_DENIED: (ErrorCategory.PROCESS, Severity.HIGH, False),
    ErrorKind.COMMAND_INVALID: (ErrorCategory.PROCESS, Severity.HIGH, False),
    ErrorKind.INVALID_OUTPUT: (ErrorCategory.PROCESS, Severity.MEDIUM, False),
    ErrorKind.CIRCUIT_BREAKER_OPEN: (ErrorCategory.PROCESS, Severity.MEDIUM, False),
    ErrorKind.ZOMBIE_PROCESS: (ErrorCategory.PROCESS, Severity.MEDIUM, True),
    ErrorKind.RATE_LIMITED: (ErrorCategory.PROCESS, Severity.LOW, True),
    ErrorKind.EXECUTION_TIMEOUT: (ErrorCategory.PROCESS, Severity.MEDIUM, True),
    ErrorKind.EXECUTION_FAILED: (ErrorCategory.PROCESS, Severity.MEDIUM, True),
    ErrorKind.SPAWN_FAILED: (ErrorCategory.RESOURCE, Severity.MEDIUM, True),
    ErrorKind.MEMORY_EXHAUSTED: (ErrorCategory.RESOURCE, Severity.CRITICAL, False),
    ErrorKind.DISK_EXHAUSTED: (ErrorCategory.RESOURCE, Severity.CRITICAL, False),
    ErrorKind.NETWORK_UNREACHABLE: (ErrorCategory.NETWORK, Severity.MEDIUM, True),
    ErrorKind.DNS_FAILURE: (ErrorCategory.NETWORK, Severity.MEDIUM, True),
    ErrorKind.STATE_DESYNC: (ErrorCategory.STATE, Severity.CRITICAL, False),
    ErrorKind.CHECKSUM_MISMATCH: (ErrorCategory.STATE, Severity.CRITICAL, False),
}


@dataclass(frozen=True, slots=True)
class ProcessError:
    """One classified failure; presentation text lives with the caller."""

    kind: ErrorKind
    detail: str = ""

    @property
    def category(self) -> ErrorCategory:
        return _TAXONOMY[self.kind][0]

    @property
    def severity(self) -> Severity:
        return _TAXONOMY[self.kind][1]

    @property
    def retryable(self) -> bool:
        return _TAXONOMY[self.kind][2]

    def to_details(self) -> dict[str, object]:
        """Serialize for logs and persisted diagnostics."""

        return {
            "kind": self.kind.value,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "detail": self.detail,
        }


def is_fatal(error: ProcessError, *, fatal_severity: Severity) -> bool:
    """Whether the session must stop in ERROR because of this failure."""

    return not error.retryable and error.severity.at_least(fatal_severity)
