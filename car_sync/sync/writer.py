"""Chunked staging writer with partial-failure isolation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from ..storage.base import StagingStore
from ..utils.logging import setup_logger
from .metrics import SyncMetrics

logger = setup_logger(__name__, context={"component": "writer"})


def chunked(rows: Sequence[Any], size: int) -> list[Sequence[Any]]:
    """Split ``rows`` into consecutive slices of at most ``size`` items."""

    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [rows[start : start + size] for start in range(0, len(rows), size)]


class BatchWriter:
    """Upsert rows into staging chunk by chunk.

    Up to ``parallel_chunks`` chunks are written concurrently, with a short
    pause between groups. A failing chunk is logged, counted and skipped;
    chunks already written are never lost.
    """

    def __init__(
        self,
        store: StagingStore,
        *,
        metrics: SyncMetrics,
        chunk_size: int = 500,
        parallel_chunks: int = 8,
        pause_seconds: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if parallel_chunks < 1:
            raise ValueError("parallel_chunks must be at least 1")
        self._store = store
        self._metrics = metrics
        self.chunk_size = chunk_size
        self.parallel_chunks = parallel_chunks
        self.pause_seconds = pause_seconds
        self._sleep = sleep

    async def write_batch(self, rows: Sequence[dict[str, Any]]) -> int:
        """Write ``rows`` and return how many were confirmed written. Never raises
        for chunk failures."""

        if not rows:
            return 0

        chunks = chunked(rows, self.chunk_size)
        written = 0
        for group_start in range(0, len(chunks), self.parallel_chunks):
            if group_start:
                await self._sleep(self.pause_seconds)
            group = chunks[group_start : group_start + self.parallel_chunks]
            results = await asyncio.gather(
                *(self._write_chunk(index, chunk) for index, chunk in enumerate(group, start=group_start))
            )
            written += sum(results)

        if written < len(rows):
            logger.warning(
                "Partial batch write: %s/%s rows written",
                written,
                len(rows),
                extra={"status": "partial"},
            )
        return written

    async def _write_chunk(self, index: int, chunk: Sequence[dict[str, Any]]) -> int:
        try:
            count = await self._store.upsert_rows(chunk)
        except Exception as exc:
            self._metrics.record_chunk(ok=False)
            logger.error(
                "Chunk %s (%s rows) failed: %s",
                index,
                len(chunk),
                exc,
                extra={"status": "error"},
            )
            return 0
        self._metrics.record_chunk(ok=True)
        return count
