"""Runtime configuration for the session scheduler."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from session_scheduler.errors import Severity
from session_scheduler.execution.launcher import DEFAULT_ALLOWED_ENV

ENV_PREFIX = "SESSION_SCHEDULER_"
DEFAULT_DB_PATH = ".session_scheduler.db"


@dataclass(slots=True)
class SessionSettings:
    """Session horizon and scheduler loop cadence."""

    duration_seconds: float = 18_000.0
    tick_interval_seconds: float = 0.1
    cadence_interval_seconds: float = 3_600.0
    auto_restart: bool = False


@dataclass(slots=True)
class DriftSettings:
    """Drift thresholds and bounded recovery."""

    soft_threshold_seconds: float = 2.0
    hard_threshold_seconds: float = 10.0
    max_recovery_attempts: int = 5
    recovery_interval_multiplier: float = 2.0
    suspend_gap_seconds: float = 60.0


@dataclass(slots=True)
class CommandSettings:
    """The scheduled command and its sandbox."""

    template: str = ""
    working_dir: str | None = None
    timeout_seconds: float = 30.0
    grace_seconds: float = 2.0
    allowed_env: tuple[str, ...] = DEFAULT_ALLOWED_ENV


@dataclass(slots=True)
class RetrySettings:
    max_attempts: int = 5
    backoff_delays: tuple[float, ...] = (1.0, 2.0, 4.0, 8.0, 16.0)


@dataclass(slots=True)
class CircuitBreakerSettings:
    failure_threshold: int = 3
    cooldown_seconds: float = 300.0
    max_half_open_attempts: int = 1


@dataclass(slots=True)
class RecoverySettings:
    """Snapshot persistence and startup recovery."""

    persist_interval_seconds: float = 30.0
    recovery_window_seconds: float = 300.0
    tolerance_factor: float = 1.2
    storage_key: str = "session"


@dataclass(slots=True)
class ErrorPolicySettings:
    """Lowest severity of a non-retryable error that stops the session."""

    fatal_severity: Severity = Severity.HIGH


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(DEFAULT_DB_PATH)
    session: SessionSettings = field(default_factory=SessionSettings)
    drift: DriftSettings = field(default_factory=DriftSettings)
    command: CommandSettings = field(default_factory=CommandSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    breaker: CircuitBreakerSettings = field(default_factory=CircuitBreakerSettings)
    recovery: RecoverySettings = field(default_factory=RecoverySettings)
    error_policy: ErrorPolicySettings = field(default_factory=ErrorPolicySettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from ``SESSION_SCHEDULER_*`` variables with product defaults."""

        return cls(
            db_path=db_path or Path(os.getenv(f"{ENV_PREFIX}DB_PATH", DEFAULT_DB_PATH)),
            session=SessionSettings(
                duration_seconds=_env_float("SESSION_DURATION_SECONDS", 18_000.0),
                tick_interval_seconds=_env_float("TICK_INTERVAL_SECONDS", 0.1),
                cadence_interval_seconds=_env_float("CADENCE_INTERVAL_SECONDS", 3_600.0),
                auto_restart=_env_bool(f"{ENV_PREFIX}AUTO_RESTART", default=False),
            ),
            drift=DriftSettings(
                soft_threshold_seconds=_env_float("DRIFT_SOFT_THRESHOLD_SECONDS", 2.0),
                hard_threshold_seconds=_env_float("DRIFT_HARD_THRESHOLD_SECONDS", 10.0),
                max_recovery_attempts=_env_int("MAX_RECOVERY_ATTEMPTS", 5),
                recovery_interval_multiplier=_env_float("RECOVERY_INTERVAL_MULTIPLIER", 2.0),
                suspend_gap_seconds=_env_float("SUSPEND_GAP_SECONDS", 60.0),
            ),
            command=CommandSettings(
                template=os.getenv(f"{ENV_PREFIX}COMMAND", "").strip(),
                working_dir=os.getenv(f"{ENV_PREFIX}COMMAND_WORKDIR") or None,
                timeout_seconds=_env_float("COMMAND_TIMEOUT_SECONDS", 30.0),
                grace_seconds=_env_float("COMMAND_GRACE_SECONDS", 2.0),
                allowed_env=_env_tuple("COMMAND_ALLOWED_ENV", DEFAULT_ALLOWED_ENV),
            ),
            retry=RetrySettings(
                max_attempts=_env_int("RETRY_MAX_ATTEMPTS", 5),
                backoff_delays=tuple(
                    _parse_float(f"{ENV_PREFIX}RETRY_BACKOFF_DELAYS", item)
                    for item in _env_tuple("RETRY_BACKOFF_DELAYS", ("1", "2", "4", "8", "16"))
                ),
            ),
            breaker=CircuitBreakerSettings(
                failure_threshold=_env_int("BREAKER_FAILURE_THRESHOLD", 3),
                cooldown_seconds=_env_float("BREAKER_COOLDOWN_SECONDS", 300.0),
                max_half_open_attempts=_env_int("BREAKER_HALF_OPEN_ATTEMPTS", 1),
            ),
            recovery=RecoverySettings(
                persist_interval_seconds=_env_float("PERSIST_INTERVAL_SECONDS", 30.0),
                recovery_window_seconds=_env_float("RECOVERY_WINDOW_SECONDS", 300.0),
                tolerance_factor=_env_float("RECOVERY_TOLERANCE_FACTOR", 1.2),
                storage_key=os.getenv(f"{ENV_PREFIX}STORAGE_KEY", "session").strip() or "session",
            ),
            error_policy=ErrorPolicySettings(
                fatal_severity=_env_severity("FATAL_SEVERITY", Severity.HIGH),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error when values cannot drive a session."""

        session = self.session
        if session.duration_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}SESSION_DURATION_SECONDS must be > 0.")
        if session.tick_interval_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}TICK_INTERVAL_SECONDS must be > 0.")
        if session.cadence_interval_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}CADENCE_INTERVAL_SECONDS must be > 0.")

        drift = self.drift
        if drift.soft_threshold_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}DRIFT_SOFT_THRESHOLD_SECONDS must be > 0.")
        if drift.hard_threshold_seconds < drift.soft_threshold_seconds:
            raise ValueError(
                f"{ENV_PREFIX}DRIFT_HARD_THRESHOLD_SECONDS must be >= "
                f"{ENV_PREFIX}DRIFT_SOFT_THRESHOLD_SECONDS.",
            )
        if drift.max_recovery_attempts < 0:
            raise ValueError(f"{ENV_PREFIX}MAX_RECOVERY_ATTEMPTS must be >= 0.")
        if drift.recovery_interval_multiplier < 1:
            raise ValueError(f"{ENV_PREFIX}RECOVERY_INTERVAL_MULTIPLIER must be >= 1.")
        if drift.suspend_gap_seconds < 0:
            raise ValueError(f"{ENV_PREFIX}SUSPEND_GAP_SECONDS must be >= 0.")

        if self.command.timeout_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}COMMAND_TIMEOUT_SECONDS must be > 0.")
        if self.command.grace_seconds < 0:
            raise ValueError(f"{ENV_PREFIX}COMMAND_GRACE_SECONDS must be >= 0.")

        if self.retry.max_attempts <= 0:
            raise ValueError(f"{ENV_PREFIX}RETRY_MAX_ATTEMPTS must be > 0.")
        if any(delay < 0 for delay in self.retry.backoff_delays):
            raise ValueError(f"{ENV_PREFIX}RETRY_BACKOFF_DELAYS must be >= 0.")

        if self.breaker.failure_threshold <= 0:
            raise ValueError(f"{ENV_PREFIX}BREAKER_FAILURE_THRESHOLD must be > 0.")
        if self.breaker.cooldown_seconds < 0:
            raise ValueError(f"{ENV_PREFIX}BREAKER_COOLDOWN_SECONDS must be >= 0.")
        if self.breaker.max_half_open_attempts <= 0:
            raise ValueError(f"{ENV_PREFIX}BREAKER_HALF_OPEN_ATTEMPTS must be > 0.")

        recovery = self.recovery
        if recovery.persist_interval_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}PERSIST_INTERVAL_SECONDS must be > 0.")
        if recovery.recovery_window_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}RECOVERY_WINDOW_SECONDS must be > 0.")
        if recovery.tolerance_factor < 1:
            raise ValueError(f"{ENV_PREFIX}RECOVERY_TOLERANCE_FACTOR must be >= 1.")

    def validate_for_run(self) -> None:
        """Also require a command to execute."""

        self.validate()
        if not self.command.template:
            raise ValueError(
                f"A command is required. Set {ENV_PREFIX}COMMAND or pass --command.",
            )


def _env_float(suffix: str, default: float) -> float:
    name = f"{ENV_PREFIX}{suffix}"
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return _parse_float(name, value)


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number for {name}: {value!r}") from error


def _env_int(suffix: str, default: int) -> int:
    name = f"{ENV_PREFIX}{suffix}"
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer for {name}: {value!r}") from error


def _env_tuple(suffix: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(f"{ENV_PREFIX}{suffix}")
    if value is None or not value.strip():
        return default
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _env_severity(suffix: str, default: Severity) -> Severity:
    name = f"{ENV_PREFIX}{suffix}"
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return Severity(value.strip().lower())
    except ValueError as error:
        raise ValueError(f"Invalid severity for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
