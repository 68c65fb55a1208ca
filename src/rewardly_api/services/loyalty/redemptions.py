"""Redemption lifecycle: create with hold, then commit, cancel or expire."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.core.settings import settings
from rewardly_api.db.transactions import run_transaction
from rewardly_api.domain.loyalty.clock import ensure_utc, utcnow
from rewardly_api.domain.loyalty.errors import (
    AlreadyProcessedError,
    ExpiredError,
    ForbiddenError,
    InsufficientPointsError,
    InvalidInputError,
    InvalidPointsError,
    LoyaltyError,
    NotFoundError,
)
from rewardly_api.domain.loyalty.qr import (
    RedemptionQRPayload,
    build_redemption_payload,
    generate_redemption_id,
    parse_redemption_payload,
)
from rewardly_api.models.loyalty import (
    HoldStatus,
    PointTransaction,
    PointTransactionSource,
    PointTransactionType,
    Redemption,
    RedemptionStatus,
)
from rewardly_api.observability.loyalty import get_loyalty_store
from rewardly_api.services.notifications import LoyaltyNotifier

from .holds import HoldManager
from .ledger import LedgerStore
from .sellers import SellerConfigCache, SellerStatsWriter

_ALLOWED_TRANSITIONS: dict[RedemptionStatus, set[RedemptionStatus]] = {
    RedemptionStatus.PENDING: {
        RedemptionStatus.REDEEMED,
        RedemptionStatus.CANCELLED,
        RedemptionStatus.EXPIRED,
    },
    RedemptionStatus.REDEEMED: set(),
    RedemptionStatus.CANCELLED: set(),
    RedemptionStatus.EXPIRED: set(),
}

QR_EXPIRED_NOTE = "QR expired"
INSUFFICIENT_POINTS_NOTE = "Insufficient points"


@dataclass
class RedemptionReceipt:
    """A freshly created redemption and the QR payload the customer shows."""

    redemption: Redemption
    qr_payload: RedemptionQRPayload


@dataclass
class ExpirySweepResult:
    expired: int = 0
    orphan_holds_released: int = 0
    expired_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, int]:
        return {"expired": self.expired, "orphan_holds_released": self.orphan_holds_released}


@dataclass
class _Outcome:
    """Committed transition plus the error to surface once it is durable."""

    redemption: Redemption
    error: LoyaltyError | None = None


class RedemptionStateMachine:
    """Owns every status change of a redemption and its hold.

    A redemption leaves ``pending`` exactly once. Each terminal transition
    releases the hold in the same transaction as the status change.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        seller_cache: SellerConfigCache | None = None,
        notifier: Optional[LoyaltyNotifier] = None,
        ttl: timedelta | None = None,
    ) -> None:
        self._session = session
        self._ledger = LedgerStore(session)
        self._holds = HoldManager(session, ledger=self._ledger)
        self._stats = SellerStatsWriter(session)
        self._seller_cache = seller_cache or SellerConfigCache()
        self._notifier = notifier
        self._ttl = ttl if ttl is not None else timedelta(seconds=settings.redemption_ttl_seconds)

    async def create(
        self,
        user_id: str,
        seller_id: str,
        points: int,
        *,
        offer_id: str | None = None,
        offer_name: str | None = None,
        customer_notes: str | None = None,
        now: datetime | None = None,
    ) -> RedemptionReceipt:
        if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
            raise InvalidPointsError()
        await self._seller_cache.get(self._session, seller_id)

        moment = ensure_utc(now) or utcnow()
        redemption_id = generate_redemption_id(moment)
        payload = build_redemption_payload(
            redemption_id=redemption_id,
            seller_id=seller_id,
            user_id=user_id,
            points=points,
            issued_at=moment,
        )
        metadata = {"customer_notes": customer_notes} if customer_notes else {}

        async def work() -> Redemption:
            await self._holds.reserve(user_id, seller_id, points, redemption_id, now=moment)
            redemption = Redemption(
                id=redemption_id,
                user_id=user_id,
                seller_id=seller_id,
                points=points,
                offer_id=offer_id,
                offer_name=offer_name,
                status=RedemptionStatus.PENDING,
                qr_data=payload.encode(),
                metadata_json=metadata,
                created_at=moment,
                updated_at=moment,
                expires_at=moment + self._ttl,
            )
            self._session.add(redemption)
            await self._session.flush()
            return redemption

        redemption = await run_transaction(self._session, work, operation="redemption.create")
        get_loyalty_store().record_redemption_transition("created")
        logger.info(
            "Created redemption",
            redemption_id=redemption_id,
            user_id=user_id,
            seller_id=seller_id,
            points=points,
            expires_at=redemption.expires_at.isoformat(),
        )
        return RedemptionReceipt(redemption=redemption, qr_payload=payload)

    async def commit(
        self,
        seller_id: str,
        redemption_id: str,
        *,
        seller_notes: str | None = None,
        qr_payload: RedemptionQRPayload | None = None,
        now: datetime | None = None,
    ) -> Redemption:
        """Seller scan of the customer's QR: spend the held points.

        When the scanned ``qr_payload`` is given it must match the payload issued
        at creation, nonce included.
        """

        moment = ensure_utc(now) or utcnow()

        async def work() -> _Outcome:
            redemption = await self._load(redemption_id)
            if redemption.seller_id != seller_id:
                raise ForbiddenError("Redemption belongs to a different seller")
            if qr_payload is not None and parse_redemption_payload(redemption.qr_data or "") != qr_payload:
                raise InvalidInputError("Redemption QR does not match this redemption")
            self._ensure_pending(redemption)

            if self._is_stale(redemption, moment):
                await self._finish(redemption, RedemptionStatus.EXPIRED, moment, note=QR_EXPIRED_NOTE)
                return _Outcome(redemption, ExpiredError("Redemption QR has expired"))

            record = await self._ledger.get_record(redemption.user_id, seller_id)
            balance = record.points if record else 0
            if record is None or balance < redemption.points:
                await self._finish(
                    redemption, RedemptionStatus.CANCELLED, moment, note=INSUFFICIENT_POINTS_NOTE
                )
                return _Outcome(
                    redemption,
                    InsufficientPointsError(available=balance, requested=redemption.points),
                )

            await self._ledger.decrement(record, redemption.points, now=moment)
            self._session.add(
                PointTransaction(
                    user_id=redemption.user_id,
                    seller_id=seller_id,
                    entry_type=PointTransactionType.REDEEM,
                    points=-redemption.points,
                    source=PointTransactionSource.REDEMPTION,
                    redemption_id=redemption.id,
                    description=f"Redeemed {redemption.points} points via QR",
                    metadata_json={"offer_id": redemption.offer_id} if redemption.offer_id else None,
                    occurred_at=moment,
                )
            )
            await self._stats.record_redemption(seller_id, points=redemption.points)
            redemption.redeemed_at = moment
            await self._finish(redemption, RedemptionStatus.REDEEMED, moment, note=seller_notes)
            return _Outcome(redemption)

        outcome = await run_transaction(self._session, work, operation="redemption.commit")
        redemption = outcome.redemption
        if outcome.error is not None:
            logger.warning(
                "Redemption commit rejected",
                redemption_id=redemption_id,
                seller_id=seller_id,
                status=redemption.status.value,
                reason=outcome.error.kind,
            )
            raise outcome.error

        logger.info(
            "Committed redemption",
            redemption_id=redemption_id,
            seller_id=seller_id,
            user_id=redemption.user_id,
            points=redemption.points,
        )
        await self._notify_redeemed(redemption)
        return redemption

    async def cancel(
        self,
        user_id: str,
        redemption_id: str,
        *,
        now: datetime | None = None,
    ) -> Redemption:
        moment = ensure_utc(now) or utcnow()

        async def work() -> Redemption:
            redemption = await self._load(redemption_id)
            if redemption.user_id != user_id:
                raise ForbiddenError("Only the customer who created the redemption can cancel it")
            self._ensure_pending(redemption)
            await self._finish(redemption, RedemptionStatus.CANCELLED, moment)
            return redemption

        redemption = await run_transaction(self._session, work, operation="redemption.cancel")
        logger.info("Cancelled redemption", redemption_id=redemption_id, user_id=user_id)
        return redemption

    async def expire(self, redemption_id: str, *, now: datetime | None = None) -> Redemption:
        moment = ensure_utc(now) or utcnow()

        async def work() -> Redemption:
            redemption = await self._load(redemption_id)
            self._ensure_pending(redemption)
            if not self._is_stale(redemption, moment):
                raise InvalidInputError("Redemption has not expired yet")
            await self._finish(redemption, RedemptionStatus.EXPIRED, moment, note=QR_EXPIRED_NOTE)
            return redemption

        redemption = await run_transaction(self._session, work, operation="redemption.expire")
        logger.info("Expired redemption", redemption_id=redemption_id)
        return redemption

    async def expire_stale(
        self,
        *,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> ExpirySweepResult:
        """Expire every pending redemption past its deadline and reconcile stray holds."""

        moment = ensure_utc(now) or utcnow()
        result = ExpirySweepResult()

        stmt = (
            select(Redemption.id)
            .where(Redemption.status == RedemptionStatus.PENDING, Redemption.expires_at <= moment)
            .order_by(Redemption.expires_at.asc())
        )
        if limit:
            stmt = stmt.limit(limit)
        stale_ids = list((await self._session.execute(stmt)).scalars().all())

        for redemption_id in stale_ids:

            async def work(redemption_id: str = redemption_id) -> bool:
                redemption = await self._session.get(Redemption, redemption_id, populate_existing=True)
                if redemption is None or redemption.status != RedemptionStatus.PENDING:
                    return False
                if not self._is_stale(redemption, moment):
                    return False
                await self._finish(redemption, RedemptionStatus.EXPIRED, moment, note=QR_EXPIRED_NOTE)
                return True

            if await run_transaction(self._session, work, operation="redemption.expire"):
                result.expired += 1
                result.expired_ids.append(redemption_id)

        orphan_ids = [hold.redemption_id for hold in await self._holds.list_orphaned(limit=limit)]
        for redemption_id in orphan_ids:

            async def release(redemption_id: str = redemption_id) -> bool:
                hold = await self._holds.get_for_redemption(redemption_id)
                if hold is None or hold.status == HoldStatus.RELEASED:
                    return False
                owner = await self._session.get(Redemption, redemption_id, populate_existing=True)
                if owner is not None and owner.status == RedemptionStatus.PENDING:
                    return False
                await self._holds.release_for_redemption(redemption_id, reason="reconciled", now=moment)
                return True

            if await run_transaction(self._session, release, operation="hold.reconcile"):
                result.orphan_holds_released += 1

        if result.expired or result.orphan_holds_released:
            logger.info("Expired stale redemptions", **result.as_dict())
        return result

    async def get_for_user(
        self,
        user_id: str,
        redemption_id: str,
        *,
        now: datetime | None = None,
    ) -> Redemption:
        """Status polling for the customer; a stale pending redemption is expired on read."""

        moment = ensure_utc(now) or utcnow()
        redemption = await self._load(redemption_id)
        if redemption.user_id != user_id:
            raise ForbiddenError("Redemption belongs to a different customer")
        if redemption.status == RedemptionStatus.PENDING and self._is_stale(redemption, moment):
            try:
                redemption = await self.expire(redemption_id, now=moment)
            except AlreadyProcessedError:
                # Committed or cancelled concurrently; report the settled state.
                redemption = await self._load(redemption_id)
        return redemption

    async def list_for_user(
        self,
        user_id: str,
        *,
        status: RedemptionStatus | None = None,
        limit: int = 50,
    ) -> Sequence[Redemption]:
        stmt = select(Redemption).where(Redemption.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Redemption.status == status)
        stmt = stmt.order_by(Redemption.created_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_for_seller(
        self,
        seller_id: str,
        *,
        status: RedemptionStatus | None = None,
        limit: int = 50,
    ) -> Sequence[Redemption]:
        stmt = select(Redemption).where(Redemption.seller_id == seller_id)
        if status is not None:
            stmt = stmt.where(Redemption.status == status)
        stmt = stmt.order_by(Redemption.created_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def _load(self, redemption_id: str) -> Redemption:
        redemption = await self._session.get(Redemption, redemption_id, populate_existing=True)
        if redemption is None:
            raise NotFoundError("Redemption not found")
        return redemption

    @staticmethod
    def _ensure_pending(redemption: Redemption) -> None:
        if redemption.status != RedemptionStatus.PENDING:
            raise AlreadyProcessedError(status=redemption.status.value)

    @staticmethod
    def _is_stale(redemption: Redemption, now: datetime) -> bool:
        return now >= ensure_utc(redemption.expires_at)

    async def _finish(
        self,
        redemption: Redemption,
        target: RedemptionStatus,
        now: datetime,
        *,
        note: str | None = None,
    ) -> None:
        current = RedemptionStatus(redemption.status)
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise AlreadyProcessedError(status=current.value)

        redemption.status = target
        redemption.updated_at = now
        if note:
            redemption.metadata_json = {**(redemption.metadata_json or {}), "seller_notes": note}
        await self._holds.release_for_redemption(redemption.id, reason=target.value, now=now)
        await self._session.flush()

        get_loyalty_store().record_redemption_transition(target.value, points=redemption.points)
        logger.debug(
            "Redemption transition",
            redemption_id=redemption.id,
            from_status=current.value,
            to_status=target.value,
        )

    async def _notify_redeemed(self, redemption: Redemption) -> None:
        if self._notifier is None:
            return
        try:
            config = await self._seller_cache.get(self._session, redemption.seller_id)
            shop_name = config.shop_name
        except LoyaltyError:
            shop_name = "the store"
        await self._notifier.notify_redemption_completed(
            user_id=redemption.user_id,
            seller_id=redemption.seller_id,
            shop_name=shop_name,
            redemption_id=redemption.id,
            points=redemption.points,
        )


__all__ = ["ExpirySweepResult", "RedemptionReceipt", "RedemptionStateMachine"]
