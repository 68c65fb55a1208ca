"""Per-(customer, seller) points balances."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.domain.loyalty.clock import ensure_utc, utcnow
from rewardly_api.domain.loyalty.errors import InsufficientPointsError, InvalidPointsError
from rewardly_api.models.loyalty import PointBalance, PointTransaction, PointTransactionType


@dataclass(frozen=True)
class LedgerWrite:
    """Result of an atomic balance increment."""

    points: int
    version: int

    @property
    def created(self) -> bool:
        """True when the increment inserted the balance row."""

        return self.version == 1


@dataclass
class BalanceView:
    seller_id: str
    points: int
    points_on_hold: int
    available_points: int
    last_updated: datetime | None


class LedgerStore:
    """Reads and writes ``PointBalance`` rows inside the caller's transaction.

    Increments are single-statement upserts. Decrements are ORM writes checked
    against the row version, so they only belong inside ``run_transaction``.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_record(self, user_id: str, seller_id: str) -> PointBalance | None:
        stmt = (
            select(PointBalance)
            .where(PointBalance.user_id == user_id, PointBalance.seller_id == seller_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_balance(self, user_id: str, seller_id: str) -> int:
        stmt = select(PointBalance.points).where(
            PointBalance.user_id == user_id, PointBalance.seller_id == seller_id
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one_or_none() or 0)

    async def increment(
        self,
        user_id: str,
        seller_id: str,
        delta: int,
        *,
        now: datetime | None = None,
    ) -> LedgerWrite:
        """Add a signed ``delta``, creating the balance on first earn.

        A negative delta only applies while the result still covers the points
        on hold; otherwise ``InsufficientPointsError`` is raised and nothing is
        written.
        """

        if isinstance(delta, bool) or not isinstance(delta, int):
            raise InvalidPointsError("Points delta must be an integer")
        moment = ensure_utc(now) or utcnow()
        table = PointBalance.__table__

        if delta < 0:
            stmt = (
                update(table)
                .where(
                    table.c.user_id == user_id,
                    table.c.seller_id == seller_id,
                    table.c.points + delta >= table.c.points_on_hold,
                )
                .values(points=table.c.points + delta, version=table.c.version + 1, last_updated=moment)
                .returning(table.c.points, table.c.version)
            )
            row = (await self._session.execute(stmt)).one_or_none()
            if row is None:
                available = await self.get_balance(user_id, seller_id)
                raise InsufficientPointsError(available=available, requested=-delta)
        else:
            insert = postgresql.insert if self._dialect_name() == "postgresql" else sqlite.insert
            stmt = (
                insert(table)
                .values(
                    id=uuid4(),
                    user_id=user_id,
                    seller_id=seller_id,
                    points=delta,
                    points_on_hold=0,
                    version=1,
                    created_at=moment,
                    last_updated=moment,
                )
                .on_conflict_do_update(
                    index_elements=[table.c.user_id, table.c.seller_id],
                    set_={
                        "points": table.c.points + delta,
                        "version": table.c.version + 1,
                        "last_updated": moment,
                    },
                )
                .returning(table.c.points, table.c.version)
            )
            row = (await self._session.execute(stmt)).one()
        logger.debug(
            "Incremented points balance",
            user_id=user_id,
            seller_id=seller_id,
            delta=delta,
            balance=row.points,
        )
        return LedgerWrite(points=int(row.points), version=int(row.version))

    async def decrement(self, record: PointBalance, points: int, *, now: datetime | None = None) -> int:
        if points <= 0:
            raise InvalidPointsError()
        if record.points < points:
            raise InsufficientPointsError(available=record.points, requested=points)
        record.points = record.points - points
        record.last_updated = ensure_utc(now) or utcnow()
        await self._session.flush()
        return record.points

    async def list_balances(self, user_id: str) -> list[BalanceView]:
        stmt = (
            select(PointBalance)
            .where(PointBalance.user_id == user_id)
            .order_by(PointBalance.last_updated.desc())
        )
        result = await self._session.execute(stmt)
        return [
            BalanceView(
                seller_id=row.seller_id,
                points=row.points,
                points_on_hold=row.points_on_hold,
                available_points=max(row.points - row.points_on_hold, 0),
                last_updated=ensure_utc(row.last_updated),
            )
            for row in result.scalars().all()
        ]

    async def list_transactions(
        self,
        user_id: str,
        *,
        seller_id: str | None = None,
        entry_type: PointTransactionType | None = None,
        limit: int = 10,
    ) -> list[PointTransaction]:
        """Newest-first activity history for a customer."""

        stmt = select(PointTransaction).where(PointTransaction.user_id == user_id)
        if seller_id:
            stmt = stmt.where(PointTransaction.seller_id == seller_id)
        if entry_type is not None:
            stmt = stmt.where(PointTransaction.entry_type == entry_type)
        stmt = stmt.order_by(PointTransaction.occurred_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    def _dialect_name(self) -> str:
        return self._session.get_bind().dialect.name


__all__ = ["BalanceView", "LedgerStore", "LedgerWrite"]
