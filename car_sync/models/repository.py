"""Repository helpers for persistence models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .base import session_scope
from .sync_checkpoint import SyncCheckpointRecord
from .sync_run import SyncRunRecord


@dataclass(slots=True)
class SyncRunCreate:
    """Value object capturing the fields persisted for a sync run."""

    run_id: str
    status: str
    start_page: int = 1
    last_page: int = 0
    pages_processed: int = 0
    rows_processed: int = 0
    error_count: int = 0
    duration_seconds: float | None = None
    metrics: dict[str, Any] | None = None
    acceptance: dict[str, Any] | None = None
    error_details: list[Any] | None = None


class SyncRunRepository:
    """Data access helpers for :class:`SyncRunRecord`."""

    def __init__(self, session: Session):
        self._session = session

    def create(self, record_data: SyncRunCreate) -> SyncRunRecord:
        """Persist a new run record and return the mapped instance."""

        record = SyncRunRecord(
            run_id=record_data.run_id,
            status=record_data.status,
            start_page=record_data.start_page,
            last_page=record_data.last_page,
            pages_processed=record_data.pages_processed,
            rows_processed=record_data.rows_processed,
            error_count=record_data.error_count,
            duration_seconds=record_data.duration_seconds,
            metrics=record_data.metrics,
            acceptance=record_data.acceptance,
            error_details=record_data.error_details,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def latest(self, limit: int = 5) -> list[SyncRunRecord]:
        statement = (
            select(SyncRunRecord)
            .order_by(SyncRunRecord.created_at.desc(), SyncRunRecord.id.desc())
            .limit(limit)
        )
        return list(self._session.scalars(statement))


class SyncCheckpointRepository:
    """Load, upsert and delete the checkpoint row of a run identity."""

    def __init__(self, session: Session):
        self._session = session

    def get(self, run_identity: str) -> SyncCheckpointRecord | None:
        return self._session.get(SyncCheckpointRecord, run_identity)

    def upsert(
        self,
        run_identity: str,
        *,
        run_id: str,
        last_page: int,
        total_processed: int,
        start_time: int,
        last_update_time: int,
    ) -> SyncCheckpointRecord:
        record = self.get(run_identity)
        if record is None:
            record = SyncCheckpointRecord(run_identity=run_identity)
            self._session.add(record)
        record.run_id = run_id
        record.last_page = last_page
        record.total_processed = total_processed
        record.start_time = start_time
        record.last_update_time = last_update_time
        self._session.flush()
        return record

    def delete(self, run_identity: str) -> bool:
        record = self.get(run_identity)
        if record is None:
            return False
        self._session.delete(record)
        self._session.flush()
        return True


def persist_sync_run(record_data: SyncRunCreate) -> SyncRunRecord:
    """Create a sync run record using a managed database session."""

    with session_scope() as session:
        return SyncRunRepository(session).create(record_data)


def recent_sync_runs(limit: int = 5) -> list[SyncRunRecord]:
    """Return the most recent sync runs, newest first."""

    with session_scope() as session:
        return SyncRunRepository(session).latest(limit)
