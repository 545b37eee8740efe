"""Supabase (PostgREST) implementation of the staging store."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx

from ..exceptions import DatastoreError, StagingWriteError
from ..utils.config import GlobalSettings
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "supabase"})


class SupabaseStagingStore:
    """Talk to the Supabase REST API with the service-role key."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        service_role_key: str,
        staging_table: str = "cars_staging",
        primary_table: str = "cars",
        merge_rpc: str = "bulk_merge_from_staging",
        mark_inactive_rpc: str = "mark_missing_inactive",
    ) -> None:
        self._client = client
        self.base_url = base_url.rstrip("/")
        self._service_role_key = service_role_key
        self.staging_table = staging_table
        self.primary_table = primary_table
        self.merge_rpc = merge_rpc
        self.mark_inactive_rpc = mark_inactive_rpc

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: GlobalSettings) -> SupabaseStagingStore:
        return cls(
            client,
            base_url=settings.supabase_url or "",
            service_role_key=settings.supabase_service_role_key or "",
            staging_table=settings.staging_table,
            primary_table=settings.primary_table,
            merge_rpc=settings.merge_rpc,
            mark_inactive_rpc=settings.mark_inactive_rpc,
        )

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        headers.update(extra)
        return headers

    def _table_url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    async def _request(
        self,
        method: str,
        url: str,
        *,
        error_cls: type[DatastoreError] = DatastoreError,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method, url, headers=headers or self._headers(), **kwargs
            )
        except httpx.HTTPError as exc:
            raise error_cls(f"{method} {url} failed: {exc!r}") from exc
        if response.is_error:
            raise error_cls(
                f"{method} {url} returned HTTP {response.status_code}: {response.text[:200]}"
            )
        return response

    async def upsert_rows(self, rows: Sequence[dict[str, Any]]) -> int:
        """Upsert ``rows`` into staging, merging duplicates on ``id``."""

        if not rows:
            return 0
        try:
            await self._request(
                "POST",
                self._table_url(self.staging_table),
                params={"on_conflict": "id"},
                json=list(rows),
                headers=self._headers(Prefer="resolution=merge-duplicates,return=minimal"),
            )
        except DatastoreError as exc:
            raise StagingWriteError(str(exc), row_count=len(rows)) from exc
        return len(rows)

    async def clear_staging(self) -> None:
        await self._request(
            "DELETE",
            self._table_url(self.staging_table),
            params={"id": "neq."},
        )
        logger.info("Cleared staging table %s", self.staging_table)

    async def _rpc(self, name: str) -> Any:
        response = await self._request(
            "POST",
            f"{self.base_url}/rest/v1/rpc/{name}",
            json={},
        )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def merge_from_staging(self) -> Any:
        """Promote staging into the primary table."""

        result = await self._rpc(self.merge_rpc)
        logger.info("Merged staging into %s: %s", self.primary_table, result)
        return result

    async def mark_missing_inactive(self) -> Any:
        """Deactivate primary rows that were absent from the latest staging pass."""

        result = await self._rpc(self.mark_inactive_rpc)
        logger.info("Marked missing listings inactive: %s", result)
        return result

    async def fetch_existing_hashes(self, ids: Sequence[str]) -> dict[str, str]:
        if not ids:
            return {}
        id_filter = ",".join(f'"{identifier}"' for identifier in ids)
        response = await self._request(
            "GET",
            self._table_url(self.primary_table),
            params={"select": "id,data_hash", "id": f"in.({id_filter})"},
        )
        try:
            body = response.json()
        except ValueError as exc:
            raise DatastoreError("Hash lookup returned a body that is not JSON") from exc
        if not isinstance(body, list):
            raise DatastoreError("Unexpected response shape when fetching hashes")
        return {
            str(item["id"]): str(item["data_hash"])
            for item in body
            if isinstance(item, dict) and item.get("id") is not None and item.get("data_hash")
        }

    async def count_rows(self, table: str | None = None) -> int:
        """Return the exact row count of ``table`` (staging by default)."""

        target = table or self.staging_table
        response = await self._request(
            "HEAD",
            self._table_url(target),
            params={"select": "id"},
            headers=self._headers(Prefer="count=exact", Range="0-0"),
        )
        content_range = response.headers.get("content-range", "")
        _, _, total = content_range.partition("/")
        try:
            return int(total)
        except ValueError as exc:
            raise DatastoreError(f"Missing row count for {target}: {content_range!r}") from exc
