"""Startup viability check for a persisted session snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from session_scheduler.timing.models import PersistedSnapshot


class RecoveryReason(str, Enum):
    VIABLE = "viable"
    ABSENT = "absent"
    MALFORMED = "malformed"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    STALE = "stale"
    TOO_OLD = "too_old"


@dataclass(frozen=True, slots=True)
class RecoveryDecision:
    viable: bool
    reason: RecoveryReason
    detail: str = ""


def evaluate_snapshot(
    snapshot: PersistedSnapshot | None,
    *,
    now: datetime,
    recovery_window_seconds: float,
    tolerance_factor: float,
) -> RecoveryDecision:
    """Decide whether ``snapshot`` may be restored at ``now``.

    Stale means the snapshot was written ``recovery_window_seconds`` or more
    ago. Too old means the session itself began ``planned_duration *
    tolerance_factor`` or more ago.
    """

    if snapshot is None:
        return RecoveryDecision(viable=False, reason=RecoveryReason.ABSENT)
    if not snapshot.checksum_valid:
        return RecoveryDecision(
            viable=False,
            reason=RecoveryReason.CHECKSUM_MISMATCH,
            detail=f"session {snapshot.session.id} checksum does not match",
        )

    snapshot_age = (now - snapshot.persistence_timestamp).total_seconds()
    if snapshot_age >= recovery_window_seconds:
        return RecoveryDecision(
            viable=False,
            reason=RecoveryReason.STALE,
            detail=f"snapshot is {snapshot_age:.0f}s old",
        )

    session = snapshot.session
    session_age = (now - session.actual_start_time).total_seconds()
    if session_age >= session.planned_duration * tolerance_factor:
        return RecoveryDecision(
            viable=False,
            reason=RecoveryReason.TOO_OLD,
            detail=f"session started {session_age:.0f}s ago",
        )

    return RecoveryDecision(viable=True, reason=RecoveryReason.VIABLE)
