from __future__ import annotations

from loguru import logger

from rewardly_api.celery_app import celery_app
from rewardly_api.core.settings import settings
from rewardly_api.tasks.loyalty_expiry import run_loyalty_expiry_sync


@celery_app.task(
    name="loyalty.expire_stale",
    queue=settings.loyalty_expiry_task_queue,
)
def expire_stale_loyalty_records(limit: int | None = None) -> dict[str, object]:
    """Celery entrypoint for the loyalty expiry sweep."""

    try:
        return run_loyalty_expiry_sync(limit=limit)
    except Exception as exc:  # pragma: no cover - Celery handles retries/logging
        logger.exception("Loyalty expiry sweep failed", limit=limit)
        raise exc
