"""Datastore interface consumed by the writer and the sync driver."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol


class StagingStore(Protocol):
    """Operations the sync needs from the datastore.

    Merge and deactivation are black-box procedures owned by the database.
    """

    async def upsert_rows(self, rows: Sequence[dict[str, Any]]) -> int:
        """Upsert rows keyed by ``id``; return the number of rows accepted."""
        ...

    async def clear_staging(self) -> None:
        ...

    async def merge_from_staging(self) -> Any:
        ...

    async def mark_missing_inactive(self) -> Any:
        ...

    async def fetch_existing_hashes(self, ids: Sequence[str]) -> dict[str, str]:
        """Return ``{id: data_hash}`` for ids already present in the primary table."""
        ...

    async def count_rows(self, table: str | None = None) -> int:
        ...
