"""Celery application setup for loyalty background jobs."""

from __future__ import annotations

from celery import Celery

from rewardly_api.core.settings import settings


def _resolve_backend_url() -> str:
    if settings.celery_result_backend:
        return settings.celery_result_backend
    return settings.redis_url


def _resolve_broker_url() -> str:
    if settings.celery_broker_url:
        return settings.celery_broker_url
    return settings.redis_url


celery_app = Celery(
    "rewardly_api",
    broker=_resolve_broker_url(),
    backend=_resolve_backend_url(),
)

celery_app.conf.update(
    task_default_queue=settings.celery_default_queue,
    timezone="UTC",
    broker_connection_retry_on_startup=True,
    beat_schedule={
        "loyalty-expiry-sweep": {
            "task": "loyalty.expire_stale",
            "schedule": float(settings.loyalty_expiry_interval_seconds),
            "options": {"queue": settings.loyalty_expiry_task_queue},
        },
    },
)

celery_app.autodiscover_tasks(["rewardly_api.celery_tasks"])

__all__ = ["celery_app"]
