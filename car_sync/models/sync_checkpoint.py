"""Checkpoint rows shared by every instance of a sync deployment."""

from __future__ import annotations

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SyncCheckpointRecord(Base):
    """Latest checkpoint for one run identity. Times are epoch milliseconds."""

    __tablename__ = "sync_checkpoints"

    run_identity: Mapped[str] = mapped_column(String(128), primary_key=True)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False)
    last_page: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_update_time: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<SyncCheckpointRecord identity={self.run_identity} run={self.run_id} "
            f"last_page={self.last_page}>"
        )
