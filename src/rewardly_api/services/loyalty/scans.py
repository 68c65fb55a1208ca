"""Scan/earn processing: validate a scan and credit the customer's ledger."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.core.settings import settings
from rewardly_api.db.transactions import run_transaction
from rewardly_api.domain.loyalty.clock import ensure_utc, utcnow
from rewardly_api.domain.loyalty.errors import (
    InvalidInputError,
    InvalidTokenError,
    LoyaltyError,
    TooFarFromStoreError,
    TooSoonError,
)
from rewardly_api.domain.loyalty.geo import haversine_distance_meters
from rewardly_api.domain.loyalty.qr import encode_earn_payload, generate_earn_token, parse_earn_token
from rewardly_api.domain.loyalty.rewards import calculate_reward_points
from rewardly_api.models.customer_profile import CustomerEarnToken, CustomerProfile
from rewardly_api.models.loyalty import PointTransaction, PointTransactionSource, PointTransactionType
from rewardly_api.observability.loyalty import get_loyalty_store
from rewardly_api.services.notifications import LoyaltyNotifier

from .ledger import LedgerStore
from .sellers import SellerConfig, SellerConfigCache, SellerStatsWriter


@dataclass
class EarnTokenReceipt:
    user_id: str
    token: str
    qr_payload: str


@dataclass
class ScanResult:
    """Outcome of a credited scan."""

    user_id: str
    seller_id: str
    points_earned: int
    base_points: int
    bonus_points: int
    is_first_scan: bool
    balance: int
    transaction_id: UUID
    source: PointTransactionSource


class ScanProcessor:
    """Credits points for customer earn-QR scans and successful payments.

    Every check runs inside the crediting transaction, so a rejected scan leaves
    no trace and two scans of the same token cannot both pass the cooldown.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        seller_cache: SellerConfigCache | None = None,
        notifier: Optional[LoyaltyNotifier] = None,
        cooldown: timedelta | None = None,
    ) -> None:
        self._session = session
        self._ledger = LedgerStore(session)
        self._stats = SellerStatsWriter(session)
        self._seller_cache = seller_cache or SellerConfigCache()
        self._notifier = notifier
        self._cooldown = cooldown if cooldown is not None else timedelta(seconds=settings.scan_cooldown_seconds)

    async def issue_earn_token(self, user_id: str) -> EarnTokenReceipt:
        """Return the customer's personal earn QR, creating it on first use."""

        async def work() -> CustomerEarnToken:
            existing = await self._find_token_for_user(user_id)
            if existing is not None:
                return existing
            if await self._session.get(CustomerProfile, user_id) is None:
                self._session.add(CustomerProfile(id=user_id))
            record = CustomerEarnToken(token=generate_earn_token(), user_id=user_id)
            self._session.add(record)
            await self._session.flush()
            logger.info("Issued customer earn token", user_id=user_id)
            return record

        record = await run_transaction(self._session, work, operation="earn_token.issue")
        return EarnTokenReceipt(
            user_id=user_id,
            token=record.token,
            qr_payload=encode_earn_payload(record.token),
        )

    async def process_user_scan(
        self,
        seller_id: str,
        *,
        amount: Decimal | float | int | str,
        qr_data: str | None = None,
        token: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        now: datetime | None = None,
    ) -> ScanResult:
        """Seller scans a customer's personal earn QR at the counter."""

        moment = ensure_utc(now) or utcnow()
        store = get_loyalty_store()
        try:
            resolved_token = parse_earn_token(qr_data) if qr_data else (token or "").strip() or None
            if not resolved_token:
                raise InvalidTokenError()
            spend = _parse_amount(amount)
            config = await self._seller_cache.get(self._session, seller_id)

            async def work() -> ScanResult:
                earn_token = await self._session.get(
                    CustomerEarnToken, resolved_token, populate_existing=True
                )
                if earn_token is None:
                    raise InvalidTokenError()
                self._ensure_cooled_down(earn_token, moment)
                config.ensure_subscription_active(moment)
                await self._stats.ensure_within_monthly_limit(config, moment)
                self._ensure_within_geofence(config, latitude, longitude)

                earn_token.last_used_at = moment
                return await self._credit(
                    earn_token.user_id,
                    config,
                    spend,
                    source=PointTransactionSource.USER_QR,
                    now=moment,
                )

            result = await run_transaction(self._session, work, operation="scan.user_qr")
        except LoyaltyError as exc:
            store.record_scan(exc.kind)
            logger.info("Rejected scan", seller_id=seller_id, reason=exc.kind)
            raise

        await self._after_credit(result, config)
        return result

    async def process_payment_reward(
        self,
        user_id: str,
        seller_id: str,
        amount: Decimal | float | int | str,
        *,
        payment_reference: str | None = None,
        now: datetime | None = None,
    ) -> ScanResult:
        """Credit points for a confirmed in-app payment."""

        moment = ensure_utc(now) or utcnow()
        store = get_loyalty_store()
        try:
            spend = _parse_amount(amount)
            config = await self._seller_cache.get(self._session, seller_id)

            async def work() -> ScanResult:
                config.ensure_subscription_active(moment)
                await self._stats.ensure_within_monthly_limit(config, moment)
                return await self._credit(
                    user_id,
                    config,
                    spend,
                    source=PointTransactionSource.PAYMENT,
                    now=moment,
                    metadata={"payment_reference": payment_reference} if payment_reference else None,
                )

            result = await run_transaction(self._session, work, operation="scan.payment")
        except LoyaltyError as exc:
            store.record_scan(exc.kind)
            logger.info("Rejected payment reward", seller_id=seller_id, user_id=user_id, reason=exc.kind)
            raise

        await self._after_credit(result, config)
        return result

    async def _credit(
        self,
        user_id: str,
        config: SellerConfig,
        spend: Decimal,
        *,
        source: PointTransactionSource,
        now: datetime,
        metadata: dict | None = None,
    ) -> ScanResult:
        base_points = calculate_reward_points(spend, config.reward)
        write = await self._ledger.increment(user_id, config.seller_id, base_points, now=now)
        first_scan = write.created

        bonus_points = 0
        if first_scan and config.reward.first_scan_bonus_points > 0:
            bonus_points = config.reward.first_scan_bonus_points
            write = await self._ledger.increment(user_id, config.seller_id, bonus_points, now=now)
        total = base_points + bonus_points

        entry = PointTransaction(
            user_id=user_id,
            seller_id=config.seller_id,
            entry_type=PointTransactionType.EARN,
            points=total,
            amount=spend,
            base_points=base_points,
            bonus_points=bonus_points,
            source=source,
            description=_describe_earn(total, config.shop_name, bonus_points),
            metadata_json={**(metadata or {}), "is_first_scan": first_scan},
            occurred_at=now,
        )
        self._session.add(entry)

        await self._stats.record_scan(
            config.seller_id,
            points=total,
            new_customer=first_scan,
            now=now,
            limit=config.monthly_scan_limit,
        )
        await self._record_customer_stats(user_id, total)
        await self._session.flush()

        return ScanResult(
            user_id=user_id,
            seller_id=config.seller_id,
            points_earned=total,
            base_points=base_points,
            bonus_points=bonus_points,
            is_first_scan=first_scan,
            balance=write.points,
            transaction_id=entry.id,
            source=source,
        )

    async def _record_customer_stats(self, user_id: str, points: int) -> None:
        result = await self._session.execute(
            update(CustomerProfile)
            .where(CustomerProfile.id == user_id)
            .values(
                total_points_earned=CustomerProfile.total_points_earned + points,
                total_scans=CustomerProfile.total_scans + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self._session.add(CustomerProfile(id=user_id, total_points_earned=points, total_scans=1))

    async def _after_credit(self, result: ScanResult, config: SellerConfig) -> None:
        get_loyalty_store().record_scan(
            "accepted", points=result.points_earned, bonus_points=result.bonus_points
        )
        logger.info(
            "Credited scan",
            user_id=result.user_id,
            seller_id=result.seller_id,
            source=result.source.value,
            points=result.points_earned,
            bonus_points=result.bonus_points,
            balance=result.balance,
        )
        if self._notifier is not None:
            await self._notifier.notify_points_earned(
                user_id=result.user_id,
                seller_id=result.seller_id,
                shop_name=config.shop_name,
                points=result.points_earned,
                bonus_points=result.bonus_points,
            )

    def _ensure_cooled_down(self, earn_token: CustomerEarnToken, now: datetime) -> None:
        last_used = ensure_utc(earn_token.last_used_at)
        if last_used is None:
            return
        elapsed = now - last_used
        if elapsed < self._cooldown:
            remaining = self._cooldown - elapsed
            raise TooSoonError(retry_after_seconds=max(math.ceil(remaining.total_seconds()), 1))

    @staticmethod
    def _ensure_within_geofence(
        config: SellerConfig,
        latitude: float | None,
        longitude: float | None,
    ) -> None:
        if not config.has_location:
            return
        if latitude is None or longitude is None:
            raise InvalidInputError("Seller location is required to scan at this store")
        distance = haversine_distance_meters(config.latitude, config.longitude, latitude, longitude)
        if distance > config.radius_meters:
            raise TooFarFromStoreError(
                max_distance_meters=config.radius_meters,
                distance_meters=round(distance, 1),
            )

    async def _find_token_for_user(self, user_id: str) -> CustomerEarnToken | None:
        result = await self._session.execute(
            select(CustomerEarnToken).where(CustomerEarnToken.user_id == user_id)
        )
        return result.scalar_one_or_none()


def _parse_amount(value: Decimal | float | int | str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidInputError("Amount must be a number")
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInputError("Amount must be a number") from exc
    if not parsed.is_finite() or parsed < 0:
        raise InvalidInputError("Amount must be a non-negative number")
    return parsed


def _describe_earn(points: int, shop_name: str, bonus_points: int) -> str:
    if bonus_points:
        return f"Earned {points} points at {shop_name} (first visit bonus {bonus_points})"
    return f"Earned {points} points at {shop_name}"


__all__ = ["EarnTokenReceipt", "ScanProcessor", "ScanResult"]
