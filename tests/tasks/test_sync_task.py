"""Tests for the scheduled Celery sync task."""

from unittest.mock import AsyncMock, patch

import pytest

from car_sync.exceptions import DatastoreError
from car_sync.sync.pipeline import SyncReport
from car_sync.tasks.celery_app import celery_app
from car_sync.tasks.sync import run_sync_job, sync_cars_task


def _report() -> SyncReport:
    return SyncReport(
        run_id="sync-1",
        status="completed",
        start_page=1,
        last_page=6,
        pages_processed=5,
        rows_processed=1000,
        stop_reason="empty_pages",
        reached_end=True,
        acceptance={"time_target": True},
    )


def test_beat_schedule_registers_sync() -> None:
    entry = celery_app.conf.beat_schedule["sync-cars"]

    assert entry["task"] == "sync_cars_task"
    assert entry["schedule"] == 360 * 60.0
    assert celery_app.conf.worker_prefetch_multiplier == 1


def test_task_is_registered_by_name() -> None:
    assert sync_cars_task.name == "sync_cars_task"
    assert "sync_cars_task" in celery_app.tasks


def test_run_sync_job_returns_summary() -> None:
    with patch("car_sync.tasks.sync.run_sync", new=AsyncMock(return_value=_report())) as mocked:
        result = run_sync_job(fresh=True)

    assert result["status"] == "completed"
    assert result["rows_processed"] == 1000
    assert result["errors"] == []
    assert mocked.await_args.kwargs == {"fresh": True}


def test_task_runs_eagerly() -> None:
    with patch("car_sync.tasks.sync.run_sync", new=AsyncMock(return_value=_report())):
        result = sync_cars_task.apply(kwargs={"fresh": False}).get()

    assert result["run_id"] == "sync-1"


def test_failures_propagate() -> None:
    with patch("car_sync.tasks.sync.run_sync", new=AsyncMock(side_effect=DatastoreError("merge failed"))):
        with pytest.raises(DatastoreError):
            run_sync_job()
