"""SQLModel ORM tables for scheduler persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Text
from sqlmodel import Field, SQLModel

DEFAULT_STORAGE_KEY = "session"


class SchedulerSnapshotRecord(SQLModel, table=True):
    __tablename__ = "scheduler_snapshots"  # type: ignore[bad-override]

    storage_key: str = Field(primary_key=True)
    payload: str = Field(sa_column=Column(Text, nullable=False))
    checksum: str
    persisted_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ExecutionStatsRecord(SQLModel, table=True):
    __tablename__ = "execution_stats"  # type: ignore[bad-override]

    storage_key: str = Field(primary_key=True)
    payload: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
