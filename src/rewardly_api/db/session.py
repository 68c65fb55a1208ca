"""Async engine and session wiring."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rewardly_api.core.settings import settings


def _engine_options(database_url: str) -> dict[str, object]:
    options: dict[str, object] = {"echo": settings.database_echo, "future": True}
    if database_url.startswith("sqlite"):
        # Writers wait on the database lock instead of failing immediately.
        options["connect_args"] = {"timeout": 15}
    else:
        options["pool_pre_ping"] = True
    return options


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a scoped async session."""

    async with async_session() as session:
        yield session


__all__ = ["async_session", "engine", "get_session"]
