"""Resilient execution of the scheduled external command."""

from session_scheduler.execution.circuit_breaker import CircuitBreaker
from session_scheduler.execution.launcher import ProcessLauncher
from session_scheduler.execution.models import (
    BreakerPhase,
    Cancelled,
    CircuitBreakerState,
    CommandSpec,
    ExecutionStats,
    Failure,
    ProcessOutcome,
    Success,
    Timeout,
)
from session_scheduler.execution.pipeline import ExecutionPipeline, RetryPolicy

__all__ = [
    "BreakerPhase",
    "Cancelled",
    "CircuitBreaker",
    "CircuitBreakerState",
    "CommandSpec",
    "ExecutionPipeline",
    "ExecutionStats",
    "Failure",
    "ProcessLauncher",
    "ProcessOutcome",
    "RetryPolicy",
    "Success",
    "Timeout",
]
