"""
Resumable-run table.

Holds execution snapshots for runs waiting on input and the last summary of
every run, keyed by run id. The in-memory store serves single-process
deployments; the SQL store lets another process resume a run it did not start.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, String, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models import RunStatus, RunSummary, utc_now
from .state import ExecutionSnapshot


class RunStateStore(ABC):
    """Abstract base class for the resumable-run table.

    Reads and writes for distinct run ids must not interfere.
    """

    @abstractmethod
    def save_snapshot(self, snapshot: ExecutionSnapshot) -> None:
        pass

    @abstractmethod
    def load_snapshot(self, run_id: str) -> Optional[ExecutionSnapshot]:
        pass

    @abstractmethod
    def delete_snapshot(self, run_id: str) -> None:
        pass

    @abstractmethod
    def save_summary(self, summary: RunSummary) -> None:
        pass

    @abstractmethod
    def load_summary(self, run_id: str) -> Optional[RunSummary]:
        pass

    @abstractmethod
    def awaiting_runs(self) -> List[str]:
        """Ids of runs whose stored snapshot is awaiting input."""
        pass


class InMemoryRunStateStore(RunStateStore):
    """Process-local table. Records are stored serialized so callers never share state."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshots: Dict[str, Dict[str, Any]] = {}
        self._summaries: Dict[str, Dict[str, Any]] = {}

    def save_snapshot(self, snapshot: ExecutionSnapshot) -> None:
        payload = snapshot.model_dump(mode="json")
        with self._lock:
            self._snapshots[snapshot.run_id] = payload

    def load_snapshot(self, run_id: str) -> Optional[ExecutionSnapshot]:
        with self._lock:
            payload = self._snapshots.get(run_id)
        return ExecutionSnapshot.model_validate(payload) if payload else None

    def delete_snapshot(self, run_id: str) -> None:
        with self._lock:
            self._snapshots.pop(run_id, None)

    def save_summary(self, summary: RunSummary) -> None:
        payload = summary.model_dump(mode="json")
        with self._lock:
            self._summaries[summary.run_id] = payload

    def load_summary(self, run_id: str) -> Optional[RunSummary]:
        with self._lock:
            payload = self._summaries.get(run_id)
        return RunSummary.model_validate(payload) if payload else None

    def awaiting_runs(self) -> List[str]:
        with self._lock:
            return [
                run_id
                for run_id, payload in self._snapshots.items()
                if payload.get("status") == RunStatus.AWAITING_INPUT.value
            ]


class Base(DeclarativeBase):
    """Base class for run-state tables."""

    pass


class RunStateRecord(Base):
    __tablename__ = "run_state"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(32), index=True)
    snapshot: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    summary: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class SqlRunStateStore(RunStateStore):
    """SQLAlchemy-backed table; one row per run."""

    def __init__(self, url: str):
        if url.startswith("sqlite"):
            # SQLite configuration for development/testing
            self.engine = create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(url, pool_pre_ping=True, pool_recycle=3600)
        Base.metadata.create_all(bind=self.engine)
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def _upsert(self, run_id: str, status: str, **columns: Any) -> None:
        with self.session_factory() as db:
            record = db.get(RunStateRecord, run_id)
            if record is None:
                record = RunStateRecord(run_id=run_id, status=status)
                db.add(record)
            record.status = status
            for name, value in columns.items():
                setattr(record, name, value)
            record.updated_at = utc_now()
            db.commit()

    def save_snapshot(self, snapshot: ExecutionSnapshot) -> None:
        self._upsert(
            snapshot.run_id,
            snapshot.status.value,
            snapshot=snapshot.model_dump(mode="json"),
        )

    def load_snapshot(self, run_id: str) -> Optional[ExecutionSnapshot]:
        with self.session_factory() as db:
            record = db.get(RunStateRecord, run_id)
            if record is None or record.snapshot is None:
                return None
            return ExecutionSnapshot.model_validate(record.snapshot)

    def delete_snapshot(self, run_id: str) -> None:
        with self.session_factory() as db:
            record = db.get(RunStateRecord, run_id)
            if record is not None:
                record.snapshot = None
                record.updated_at = utc_now()
                db.commit()

    def save_summary(self, summary: RunSummary) -> None:
        self._upsert(
            summary.run_id,
            summary.status.value,
            summary=summary.model_dump(mode="json"),
        )

    def load_summary(self, run_id: str) -> Optional[RunSummary]:
        with self.session_factory() as db:
            record = db.get(RunStateRecord, run_id)
            if record is None or record.summary is None:
                return None
            return RunSummary.model_validate(record.summary)

    def awaiting_runs(self) -> List[str]:
        with self.session_factory() as db:
            rows = db.execute(
                select(RunStateRecord.run_id, RunStateRecord.snapshot).where(
                    RunStateRecord.snapshot.is_not(None)
                )
            ).all()
        return [
            run_id
            for run_id, snapshot in rows
            if snapshot and snapshot.get("status") == RunStatus.AWAITING_INPUT.value
        ]


def create_run_state_store(url: str) -> RunStateStore:
    """Factory function to create a RunStateStore.

    Args:
        url: "memory://" or a SQLAlchemy database URL such as "sqlite:///runs.db"
    """
    if url.startswith("memory://"):
        return InMemoryRunStateStore()
    return SqlRunStateStore(url)
