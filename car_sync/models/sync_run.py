"""SQLAlchemy model recording the outcome of each sync run."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SyncRunRecord(Base):
    """Database representation of a finished (or failed) sync run."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    start_page: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_page: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pages_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rows_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    metrics: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    acceptance: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    error_details: Mapped[list[object] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        """Return a developer-friendly string representation."""

        return (
            f"<SyncRunRecord id={self.id} run={self.run_id} status={self.status} "
            f"pages={self.pages_processed} rows={self.rows_processed}>"
        )
