"""Snapshot persistence facade backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from sqlmodel import Session, SQLModel

from session_scheduler.execution.models import ExecutionStats
from session_scheduler.storage.common import as_utc, build_sqlite_engine, utc_now
from session_scheduler.storage.sqlmodel_models import (
    DEFAULT_STORAGE_KEY,
    ExecutionStatsRecord,
    SchedulerSnapshotRecord,
)
from session_scheduler.timing.models import PersistedSnapshot
from session_scheduler.timing.models import (
    Session as SchedulerSession,
)

logger = logging.getLogger(__name__)


class SnapshotDecodeError(ValueError):
    """Stored snapshot cannot be decoded into a session."""


class SnapshotRepository:
    """Single-slot snapshot store; every write overwrites the same key."""

    def __init__(
        self,
        db_path: Path,
        *,
        storage_key: str = DEFAULT_STORAGE_KEY,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.db_path = db_path
        self.storage_key = storage_key
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)
        self._write_lock = threading.Lock()

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Create tables when missing."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        SQLModel.metadata.create_all(self.engine)

    def save(self, snapshot: PersistedSnapshot) -> None:
        payload = json.dumps(snapshot.session.to_dict(), sort_keys=True)
        with self._write_lock, Session(self.engine) as session:
            row = session.get(SchedulerSnapshotRecord, self.storage_key)
            if row is None:
                row = SchedulerSnapshotRecord(
                    storage_key=self.storage_key,
                    payload=payload,
                    checksum=snapshot.checksum,
                    persisted_at=as_utc(snapshot.persistence_timestamp),
                )
            else:
                row.payload = payload
                row.checksum = snapshot.checksum
                row.persisted_at = as_utc(snapshot.persistence_timestamp)
            session.add(row)
            session.commit()
        logger.debug("Persisted snapshot for session %s", snapshot.session.id)

    def load(self) -> PersistedSnapshot | None:
        """Return the stored snapshot, ``None`` when absent.

        Raises ``SnapshotDecodeError`` when the row exists but cannot be
        decoded.
        """

        with Session(self.engine) as session:
            row = session.get(SchedulerSnapshotRecord, self.storage_key)
            if row is None:
                return None
            payload = row.payload
            checksum = row.checksum
            persisted_at = row.persisted_at

        try:
            decoded = json.loads(payload)
            if not isinstance(decoded, dict):
                raise TypeError("snapshot payload is not an object")
            scheduler_session = SchedulerSession.from_dict(decoded)
        except (KeyError, TypeError, ValueError) as error:
            raise SnapshotDecodeError(
                f"Malformed snapshot {self.storage_key!r}: {error}",
            ) from error
        return PersistedSnapshot(
            session=scheduler_session,
            persistence_timestamp=as_utc(persisted_at),
            checksum=checksum,
        )

    def clear(self) -> bool:
        """Delete the stored snapshot; return True when one existed."""

        with self._write_lock, Session(self.engine) as session:
            row = session.get(SchedulerSnapshotRecord, self.storage_key)
            if row is None:
                return False
            session.delete(row)
            session.commit()
        logger.debug("Cleared snapshot %s", self.storage_key)
        return True

    def save_stats(self, stats: ExecutionStats) -> None:
        payload = json.dumps(stats.to_dict(), sort_keys=True)
        with self._write_lock, Session(self.engine) as session:
            row = session.get(ExecutionStatsRecord, self.storage_key)
            if row is None:
                row = ExecutionStatsRecord(
                    storage_key=self.storage_key,
                    payload=payload,
                    updated_at=utc_now(),
                )
            else:
                row.payload = payload
                row.updated_at = utc_now()
            session.add(row)
            session.commit()

    def load_stats(self) -> ExecutionStats | None:
        with Session(self.engine) as session:
            row = session.get(ExecutionStatsRecord, self.storage_key)
            if row is None:
                return None
            payload = row.payload
        try:
            decoded = json.loads(payload)
            if not isinstance(decoded, dict):
                raise TypeError("stats payload is not an object")
            return ExecutionStats.from_dict(decoded)
        except (TypeError, ValueError) as error:
            logger.warning("Ignoring malformed execution stats: %s", error)
            return None
