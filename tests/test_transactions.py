import sqlite3

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from rewardly_api.db.transactions import is_retryable_conflict, run_transaction
from rewardly_api.domain.loyalty.errors import ConflictError, InvalidInputError


def test_retryable_conflict_classification() -> None:
    locked = OperationalError("UPDATE point_balances", {}, sqlite3.OperationalError("database is locked"))
    syntax = OperationalError("SELEC 1", {}, sqlite3.OperationalError("syntax error"))

    assert is_retryable_conflict(StaleDataError("stale"))
    assert is_retryable_conflict(locked)
    assert not is_retryable_conflict(syntax)
    assert not is_retryable_conflict(InvalidInputError())


@pytest.mark.asyncio
async def test_conflicts_are_retried(session_factory, reset_loyalty_store) -> None:
    attempts: list[int] = []

    async def work() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise StaleDataError("row changed underneath us")
        return "done"

    async with session_factory() as session:
        result = await run_transaction(session, work, operation="test.retry", backoff_seconds=0)

    assert result == "done"
    assert len(attempts) == 3
    conflicts = reset_loyalty_store.snapshot().conflicts
    assert conflicts["total"] == 2
    assert conflicts["operation:test.retry"] == 2


@pytest.mark.asyncio
async def test_exhausted_retries_surface_conflict(session_factory) -> None:
    async def work() -> None:
        raise StaleDataError("always stale")

    async with session_factory() as session:
        with pytest.raises(ConflictError) as exc_info:
            await run_transaction(session, work, operation="test.exhaust", attempts=2, backoff_seconds=0)

    assert isinstance(exc_info.value.__cause__, StaleDataError)


@pytest.mark.asyncio
async def test_business_errors_are_not_retried(session_factory) -> None:
    attempts: list[int] = []

    async def work() -> None:
        attempts.append(1)
        raise InvalidInputError("bad input")

    async with session_factory() as session:
        with pytest.raises(InvalidInputError):
            await run_transaction(session, work, operation="test.business", backoff_seconds=0)

    assert attempts == [1]
