"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest

from car_sync.exceptions import StagingWriteError
from car_sync.models.base import reset_engine
from car_sync.utils.config import GlobalSettings, _get_settings_cached, get_settings

REQUIRED_ENV = {
    "SUPABASE_URL": "https://project.supabase.test",
    "SUPABASE_SERVICE_ROLE_KEY": "service-role-key",
    "API_BASE_URL": "https://api.cars.test/v1",
    "API_KEY": "api-key",
}


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Provide required variables, a throwaway SQLite database and checkpoint path."""

    for name, value in REQUIRED_ENV.items():
        monkeypatch.setenv(name, value)
    workdir = tmp_path_factory.mktemp("car-sync")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{workdir / 'sync.sqlite'}")
    monkeypatch.setenv("CHECKPOINT_PATH", str(workdir / "sync-checkpoint.json"))
    for name in ("CHECKPOINT_BACKEND", "SYNC_CONFIG_FILE", "MAX_PAGES", "CONCURRENCY"):
        monkeypatch.delenv(name, raising=False)

    get_settings(reload=True)
    yield
    reset_engine()
    _get_settings_cached.cache_clear()


@pytest.fixture
def settings_factory(tmp_path):
    """Build settings with explicit overrides on top of the test environment."""

    def _build(**overrides: Any) -> GlobalSettings:
        values: dict[str, Any] = {
            "supabase_url": REQUIRED_ENV["SUPABASE_URL"],
            "supabase_service_role_key": REQUIRED_ENV["SUPABASE_SERVICE_ROLE_KEY"],
            "api_base_url": REQUIRED_ENV["API_BASE_URL"],
            "api_key": REQUIRED_ENV["API_KEY"],
            "checkpoint_path": tmp_path / "checkpoint.json",
            "write_pause_seconds": 0.0,
        }
        values.update(overrides)
        return GlobalSettings(**values)

    return _build


def make_listing(index: int, **overrides: Any) -> dict[str, Any]:
    """Return a raw upstream listing shaped like the auction API payload."""

    listing: dict[str, Any] = {
        "id": str(10_000 + index),
        "manufacturer": {"id": 1, "name": "Hyundai"},
        "model": {"id": 7, "name": "Sonata"},
        "year": 2019,
        "title": f"Hyundai Sonata #{index}",
        "vin": f"KMHE341DBKA{index:06d}",
        "color": {"name": "white"},
        "fuel": {"name": "gasoline"},
        "transmission": {"name": "automatic"},
        "lots": [
            {
                "lot": f"LOT-{index}",
                "bid": 9000,
                "buy_now": 12500,
                "odometer": {"km": 42000},
                "images": {"normal": [f"https://img.test/{index}/1.jpg"], "big": []},
                "status": {"name": "sale"},
                "condition": {"name": "excellent"},
                "keys_available": True,
            }
        ],
    }
    listing.update(overrides)
    return listing


class InMemoryStagingStore:
    """Staging store fake recording every call made by the sync."""

    def __init__(self, *, failing_chunks: set[int] | None = None) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []
        self.upsert_calls = 0
        self.failing_chunks = failing_chunks or set()
        self.primary_hashes: dict[str, str] = {}
        self.written_ids: list[str] = []

    async def upsert_rows(self, rows: Sequence[dict[str, Any]]) -> int:
        index = self.upsert_calls
        self.upsert_calls += 1
        if index in self.failing_chunks:
            raise StagingWriteError("simulated chunk failure", row_count=len(rows))
        for row in rows:
            self.rows[row["id"]] = dict(row)
            self.written_ids.append(row["id"])
        return len(rows)

    async def clear_staging(self) -> None:
        self.calls.append("clear_staging")
        self.rows.clear()

    async def merge_from_staging(self) -> Any:
        self.calls.append("merge_from_staging")
        return {"merged": len(self.rows)}

    async def mark_missing_inactive(self) -> Any:
        self.calls.append("mark_missing_inactive")
        return {"deactivated": 0}

    async def fetch_existing_hashes(self, ids: Sequence[str]) -> dict[str, str]:
        return {identifier: self.primary_hashes[identifier] for identifier in ids if identifier in self.primary_hashes}

    async def count_rows(self, table: str | None = None) -> int:
        return len(self.rows)


async def no_sleep(_: float) -> None:
    """Sleep replacement that returns immediately."""

    return None


@pytest.fixture
def memory_store() -> InMemoryStagingStore:
    return InMemoryStagingStore()


@pytest.fixture
def listing_factory():
    return make_listing


@pytest.fixture
def store_factory():
    return InMemoryStagingStore


@pytest.fixture
def instant_sleep():
    return no_sleep
