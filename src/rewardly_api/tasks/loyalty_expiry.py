"""Loyalty expiry sweep runners for Celery, cron and the command line."""

from __future__ import annotations

import argparse
import asyncio
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from rewardly_api.db.session import async_session
from rewardly_api.jobs.loyalty.expiry import run_loyalty_expiry_sweep

SessionFactory = Callable[[], Any]


async def run_loyalty_expiry(
    *,
    session_factory: SessionFactory | None = None,
    now: datetime | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    summary = await run_loyalty_expiry_sweep(
        session_factory=session_factory or async_session,
        now=now,
        limit=limit,
    )
    logger.info("Loyalty expiry sweep evaluated", summary=summary)
    return summary


def run_loyalty_expiry_sync(
    *,
    session_factory: SessionFactory | None = None,
    now: datetime | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    """Convenience wrapper so Celery/cron integrations can call the async sweep."""

    return asyncio.run(run_loyalty_expiry(session_factory=session_factory, now=now, limit=limit))


def cli() -> None:
    parser = argparse.ArgumentParser(description="Expire stale redemptions, orphan holds and stale daily offers.")
    parser.add_argument("--limit", type=int, default=None, help="Maximum redemptions to expire in this run")
    parser.add_argument(
        "--now",
        dest="now",
        type=str,
        default=None,
        help="Optional ISO timestamp to evaluate expiry against; defaults to the current time",
    )
    args = parser.parse_args()

    now = datetime.fromisoformat(args.now) if args.now else None
    run_loyalty_expiry_sync(now=now, limit=args.limit)


if __name__ == "__main__":  # pragma: no cover
    cli()


__all__ = ["run_loyalty_expiry", "run_loyalty_expiry_sync"]
