"""Celery task running the scheduled car sync."""

from __future__ import annotations

import asyncio
from typing import Any

from ..exceptions import CarSyncError
from ..sync.pipeline import run_sync
from ..utils.config import ensure_runtime_configuration, get_settings
from ..utils.logging import setup_logger
from .celery_app import celery_app

logger = setup_logger(__name__, context={"component": "celery"})


def run_sync_job(*, fresh: bool = False) -> dict[str, Any]:
    """Execute one sync synchronously for Celery workers."""

    settings = ensure_runtime_configuration(get_settings())
    try:
        report = asyncio.run(run_sync(settings, fresh=fresh))
    except CarSyncError:
        logger.exception("Scheduled sync failed", extra={"status": "error"})
        raise

    return {
        "status": report.status,
        "run_id": report.run_id,
        "pages_processed": report.pages_processed,
        "rows_processed": report.rows_processed,
        "errors": report.errors[: settings.error_report_limit],
        "acceptance": report.acceptance,
    }


@celery_app.task(name="sync_cars_task")
def sync_cars_task(fresh: bool = False) -> dict[str, Any]:
    """Run the car sync, resuming from a checkpoint when one exists."""

    return run_sync_job(fresh=fresh)


__all__ = ["run_sync_job", "sync_cars_task"]
