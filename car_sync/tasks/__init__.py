"""Celery task package exposing the configured app and sync task."""

from __future__ import annotations

from .celery_app import celery_app as app
from .sync import run_sync_job, sync_cars_task

__all__ = [
    "app",
    "run_sync_job",
    "sync_cars_task",
]
