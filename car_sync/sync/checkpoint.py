"""Durable sync progress checkpoints."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import CheckpointError
from ..models.base import session_scope
from ..models.repository import SyncCheckpointRepository
from ..utils.config import GlobalSettings
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "checkpoint"})

DEFAULT_CHECKPOINT_PATH = Path("/tmp/sync-checkpoint.json")
DEFAULT_MAX_AGE_HOURS = 24.0


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""

    return int(time.time() * 1000)


def new_run_id() -> str:
    return f"sync-{now_ms()}-{uuid.uuid4().hex[:8]}"


@dataclass(slots=True)
class Checkpoint:
    """Progress of a run. Times are epoch milliseconds."""

    run_id: str
    last_page: int
    total_processed: int
    start_time: int
    last_update_time: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "lastPage": self.last_page,
            "totalProcessed": self.total_processed,
            "startTime": self.start_time,
            "lastUpdateTime": self.last_update_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Checkpoint:
        """Parse the persisted JSON shape. Raises ValueError on missing or bad keys."""

        try:
            return cls(
                run_id=str(data["runId"]),
                last_page=int(data["lastPage"]),
                total_processed=int(data["totalProcessed"]),
                start_time=int(data["startTime"]),
                last_update_time=int(data["lastUpdateTime"]),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Invalid checkpoint payload: {exc}") from exc


def is_fresh(
    checkpoint: Checkpoint,
    *,
    now: int | None = None,
    max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
) -> bool:
    """Return True when the checkpoint was updated within ``max_age_hours``."""

    current = now if now is not None else now_ms()
    age_ms = current - checkpoint.last_update_time
    return age_ms < max_age_hours * 3600 * 1000


class CheckpointStore(Protocol):
    """Where checkpoints live. Injected into the sync driver."""

    def load(self) -> Checkpoint | None:
        ...

    def save(self, checkpoint: Checkpoint) -> None:
        ...

    def clear(self) -> None:
        ...


class FileCheckpointStore:
    """JSON checkpoint on local disk."""

    def __init__(self, path: Path | str = DEFAULT_CHECKPOINT_PATH) -> None:
        self.path = Path(path)

    def load(self) -> Checkpoint | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("checkpoint file does not contain an object")
            return Checkpoint.from_dict(data)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable checkpoint %s: %s", self.path, exc)
            return None

    def save(self, checkpoint: Checkpoint) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(checkpoint.to_dict(), indent=2), encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as exc:
            raise CheckpointError(f"Failed to write checkpoint {self.path}: {exc}") from exc

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise CheckpointError(f"Failed to remove checkpoint {self.path}: {exc}") from exc


class DatabaseCheckpointStore:
    """Checkpoint row keyed by run identity, visible to every instance."""

    def __init__(self, run_identity: str) -> None:
        self.run_identity = run_identity

    def load(self) -> Checkpoint | None:
        with session_scope() as session:
            record = SyncCheckpointRepository(session).get(self.run_identity)
            if record is None:
                return None
            return Checkpoint(
                run_id=record.run_id,
                last_page=record.last_page,
                total_processed=record.total_processed,
                start_time=record.start_time,
                last_update_time=record.last_update_time,
            )

    def save(self, checkpoint: Checkpoint) -> None:
        try:
            with session_scope() as session:
                SyncCheckpointRepository(session).upsert(
                    self.run_identity,
                    run_id=checkpoint.run_id,
                    last_page=checkpoint.last_page,
                    total_processed=checkpoint.total_processed,
                    start_time=checkpoint.start_time,
                    last_update_time=checkpoint.last_update_time,
                )
        except SQLAlchemyError as exc:
            raise CheckpointError(f"Failed to persist checkpoint: {exc}") from exc

    def clear(self) -> None:
        try:
            with session_scope() as session:
                SyncCheckpointRepository(session).delete(self.run_identity)
        except SQLAlchemyError as exc:
            raise CheckpointError(f"Failed to remove checkpoint: {exc}") from exc


def build_checkpoint_store(settings: GlobalSettings) -> CheckpointStore:
    """Return the checkpoint store selected by ``CHECKPOINT_BACKEND``."""

    if settings.checkpoint_backend == "database":
        return DatabaseCheckpointStore(settings.run_identity)
    return FileCheckpointStore(settings.checkpoint_path)


def load_resumable(
    store: CheckpointStore,
    *,
    max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
    now: int | None = None,
) -> Checkpoint | None:
    """Return the stored checkpoint when it is fresh enough to resume from."""

    checkpoint = store.load()
    if checkpoint is None:
        return None
    if not is_fresh(checkpoint, now=now, max_age_hours=max_age_hours):
        logger.info(
            "Ignoring stale checkpoint from run %s (last page %s)",
            checkpoint.run_id,
            checkpoint.last_page,
        )
        return None
    return checkpoint
