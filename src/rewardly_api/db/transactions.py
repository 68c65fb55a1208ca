"""Optimistic transaction runner with bounded retries."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from rewardly_api.core.settings import settings
from rewardly_api.domain.loyalty.errors import ConflictError
from rewardly_api.observability.loyalty import get_loyalty_store
from rewardly_api.observability.tracing import loyalty_span

T = TypeVar("T")

# PostgreSQL serialization_failure / deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_retryable_conflict(exc: BaseException) -> bool:
    """Return True when the error is a transient write conflict worth retrying."""

    if isinstance(exc, (StaleDataError, IntegrityError)):
        return True
    if isinstance(exc, DBAPIError):
        orig = getattr(exc, "orig", None)
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in _RETRYABLE_SQLSTATES:
            return True
        message = str(orig or exc).lower()
        return "database is locked" in message or "deadlock" in message
    return False


async def run_transaction(
    session: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    operation: str,
    attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    """Run ``work`` and commit, re-running the whole body on write conflicts.

    ``work`` must re-read everything it depends on: a conflict rolls the session
    back and expires every loaded instance before the next attempt. Domain errors
    raised by ``work`` roll back and propagate untouched.
    """

    budget = max(attempts or settings.transaction_retry_attempts, 1)
    delay = settings.transaction_retry_backoff_seconds if backoff_seconds is None else backoff_seconds
    last_error: BaseException | None = None

    for attempt in range(1, budget + 1):
        try:
            with loyalty_span(operation, attempt=attempt):
                result = await work()
                await session.commit()
            return result
        except Exception as exc:
            await session.rollback()
            if not is_retryable_conflict(exc):
                raise
            last_error = exc
            get_loyalty_store().record_conflict(operation)
            logger.warning(
                "Transaction conflict, retrying",
                operation=operation,
                attempt=attempt,
                budget=budget,
                error=type(exc).__name__,
            )
            if attempt < budget and delay > 0:
                await asyncio.sleep(delay * attempt)

    logger.error("Transaction retry budget exhausted", operation=operation, budget=budget)
    raise ConflictError(
        f"{operation} could not complete under contention, please retry"
    ) from last_error


__all__ = ["is_retryable_conflict", "run_transaction"]
