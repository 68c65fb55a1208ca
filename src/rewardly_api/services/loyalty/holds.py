"""Point holds backing pending redemptions."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.domain.loyalty.clock import ensure_utc, utcnow
from rewardly_api.domain.loyalty.errors import InsufficientPointsError, InvalidPointsError
from rewardly_api.models.loyalty import HoldStatus, PointHold, Redemption, RedemptionStatus
from rewardly_api.observability.loyalty import get_loyalty_store

from .ledger import LedgerStore


class HoldManager:
    """Reserve and release points against a customer's seller balance.

    Reservation bumps the balance row, so two reservations racing on the same
    pair cannot both pass the availability check: the loser fails its version
    check and the surrounding ``run_transaction`` re-runs it.
    """

    def __init__(self, session: AsyncSession, *, ledger: LedgerStore | None = None) -> None:
        self._session = session
        self._ledger = ledger or LedgerStore(session)

    async def reserved_total(self, user_id: str, seller_id: str) -> int:
        stmt = select(func.coalesce(func.sum(PointHold.points), 0)).where(
            PointHold.user_id == user_id,
            PointHold.seller_id == seller_id,
            PointHold.status == HoldStatus.RESERVED,
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def compute_available(self, user_id: str, seller_id: str) -> int:
        balance = await self._ledger.get_balance(user_id, seller_id)
        return balance - await self.reserved_total(user_id, seller_id)

    async def reserve(
        self,
        user_id: str,
        seller_id: str,
        points: int,
        redemption_id: str,
        *,
        now: datetime | None = None,
    ) -> PointHold:
        if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
            raise InvalidPointsError()

        record = await self._ledger.get_record(user_id, seller_id)
        balance = record.points if record else 0
        reserved = await self.reserved_total(user_id, seller_id)
        available = balance - reserved
        if record is None or available < points:
            raise InsufficientPointsError(available=max(available, 0), requested=points)

        hold = PointHold(
            user_id=user_id,
            seller_id=seller_id,
            redemption_id=redemption_id,
            points=points,
            status=HoldStatus.RESERVED,
            created_at=ensure_utc(now) or utcnow(),
        )
        self._session.add(hold)
        record.points_on_hold = reserved + points
        await self._session.flush()

        get_loyalty_store().record_hold("reserved")
        logger.info(
            "Reserved points",
            user_id=user_id,
            seller_id=seller_id,
            redemption_id=redemption_id,
            points=points,
            available_after=available - points,
        )
        return hold

    async def get_for_redemption(self, redemption_id: str) -> PointHold | None:
        stmt = (
            select(PointHold)
            .where(PointHold.redemption_id == redemption_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def release(
        self,
        hold_id: UUID,
        *,
        reason: str,
        now: datetime | None = None,
    ) -> PointHold | None:
        hold = await self._session.get(PointHold, hold_id, populate_existing=True)
        return await self._release(hold, reason=reason, now=now)

    async def release_for_redemption(
        self,
        redemption_id: str,
        *,
        reason: str,
        now: datetime | None = None,
    ) -> PointHold | None:
        hold = await self.get_for_redemption(redemption_id)
        return await self._release(hold, reason=reason, now=now)

    async def list_orphaned(self, *, limit: int | None = None) -> list[PointHold]:
        """Reserved holds whose redemption is missing or already terminal."""

        stmt = (
            select(PointHold)
            .outerjoin(Redemption, Redemption.id == PointHold.redemption_id)
            .where(PointHold.status == HoldStatus.RESERVED)
            .where((Redemption.id.is_(None)) | (Redemption.status != RedemptionStatus.PENDING))
            .order_by(PointHold.created_at.asc())
        )
        if limit:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def _release(
        self,
        hold: PointHold | None,
        *,
        reason: str,
        now: datetime | None,
    ) -> PointHold | None:
        if hold is None or hold.status == HoldStatus.RELEASED:
            return hold

        hold.status = HoldStatus.RELEASED
        hold.released_at = ensure_utc(now) or utcnow()
        hold.release_reason = reason

        record = await self._ledger.get_record(hold.user_id, hold.seller_id)
        if record is not None:
            record.points_on_hold = max((record.points_on_hold or 0) - hold.points, 0)
        await self._session.flush()

        get_loyalty_store().record_hold("released", reason=reason)
        logger.info(
            "Released point hold",
            hold_id=str(hold.id),
            redemption_id=hold.redemption_id,
            points=hold.points,
            reason=reason,
        )
        return hold


__all__ = ["HoldManager"]
