"""Celery application configuration for car_sync."""

from __future__ import annotations

from celery import Celery

from ..utils.config import get_settings


def _resolve_redis_url() -> str:
    """Return the Redis URL configured for the application."""

    settings = get_settings()
    return settings.redis_url or "redis://localhost:6379/0"


celery_app = Celery(
    "car_sync",
    broker=_resolve_redis_url(),
    backend=_resolve_redis_url(),
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_hijack_root_logger=False,
    # One long-running sync per worker process.
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    beat_schedule={
        "sync-cars": {
            "task": "sync_cars_task",
            "schedule": get_settings().sync_schedule_minutes * 60.0,
        },
    },
)

celery_app.autodiscover_tasks(["car_sync.tasks"], related_name="sync")
