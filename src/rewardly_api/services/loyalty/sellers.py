"""Seller configuration lookup, plan gating and aggregate counters."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, MutableMapping

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.core.settings import settings
from rewardly_api.domain.loyalty.clock import ensure_utc, month_period, utcnow
from rewardly_api.domain.loyalty.errors import (
    MonthlyLimitReachedError,
    SellerNotFoundError,
    SubscriptionExpiredError,
    SubscriptionInactiveError,
)
from rewardly_api.domain.loyalty.rewards import RewardConfig
from rewardly_api.models.seller import (
    SellerMonthlyScan,
    SellerProfile,
    SubscriptionStatus,
    SubscriptionTier,
)

UNLIMITED_SCANS = 999_999


@dataclass(frozen=True)
class SellerConfig:
    """Immutable view of the seller settings the loyalty core reads."""

    seller_id: str
    shop_name: str
    subscription_tier: SubscriptionTier
    subscription_status: SubscriptionStatus
    subscription_expires_at: datetime | None
    monthly_scan_limit: int
    reward: RewardConfig
    latitude: float | None = None
    longitude: float | None = None
    geofence_radius_meters: float | None = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def radius_meters(self) -> float:
        return self.geofence_radius_meters or settings.default_geofence_radius_meters

    def ensure_subscription_active(self, now: datetime) -> None:
        if self.subscription_status != SubscriptionStatus.ACTIVE:
            raise SubscriptionInactiveError()
        expires_at = ensure_utc(self.subscription_expires_at)
        if expires_at is not None and expires_at <= ensure_utc(now):
            raise SubscriptionExpiredError()

    @classmethod
    def from_profile(cls, profile: SellerProfile) -> "SellerConfig":
        tier = SubscriptionTier(profile.subscription_tier or SubscriptionTier.FREE)
        return cls(
            seller_id=profile.id,
            shop_name=profile.shop_name,
            subscription_tier=tier,
            subscription_status=SubscriptionStatus(profile.subscription_status or SubscriptionStatus.ACTIVE),
            subscription_expires_at=ensure_utc(profile.subscription_expires_at),
            monthly_scan_limit=profile.monthly_scan_limit or plan_scan_limit(tier),
            reward=RewardConfig.from_mapping(profile.reward_config),
            latitude=profile.latitude,
            longitude=profile.longitude,
            geofence_radius_meters=profile.geofence_radius_meters,
        )


def plan_scan_limit(tier: SubscriptionTier) -> int:
    if tier == SubscriptionTier.FREE:
        return settings.free_tier_monthly_scan_limit
    return UNLIMITED_SCANS


SellerLoader = Callable[[AsyncSession, str], Awaitable[SellerConfig | None]]


async def load_seller_config(session: AsyncSession, seller_id: str) -> SellerConfig | None:
    profile = await session.get(SellerProfile, seller_id)
    if profile is None:
        return None
    return SellerConfig.from_profile(profile)


@dataclass(slots=True)
class _CacheEntry:
    config: SellerConfig
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


class SellerConfigCache:
    """TTL cache in front of seller profile reads.

    One instance is built at application startup and shared by requests through
    ``app.state``; seller onboarding calls :meth:`invalidate` after edits.
    """

    def __init__(
        self,
        loader: SellerLoader | None = None,
        *,
        ttl: timedelta | None = None,
    ) -> None:
        self._loader = loader or load_seller_config
        self._ttl = ttl if ttl is not None else timedelta(seconds=settings.seller_config_cache_ttl_seconds)
        self._cache: MutableMapping[str, _CacheEntry] = {}
        self._locks: MutableMapping[str, asyncio.Lock] = {}

    async def get(self, session: AsyncSession, seller_id: str) -> SellerConfig:
        """Return the seller's configuration or raise ``SellerNotFoundError``."""

        cached = self._cache.get(seller_id)
        if cached and cached.is_valid(utcnow()):
            return cached.config

        lock = self._locks.setdefault(seller_id, asyncio.Lock())
        try:
            async with lock:
                cached = self._cache.get(seller_id)
                if cached and cached.is_valid(utcnow()):
                    return cached.config

                self._prune(utcnow())
                config = await self._loader(session, seller_id)
                if config is None:
                    self._cache.pop(seller_id, None)
                    raise SellerNotFoundError()
                if self._ttl > timedelta(0):
                    self._cache[seller_id] = _CacheEntry(config=config, expires_at=utcnow() + self._ttl)
                return config
        finally:
            if not lock.locked() and self._locks.get(seller_id) is lock:
                del self._locks[seller_id]

    def _prune(self, now: datetime) -> None:
        for key in [key for key, entry in self._cache.items() if not entry.is_valid(now)]:
            del self._cache[key]

    def invalidate(self, seller_id: str | None = None) -> None:
        if seller_id is None:
            self._cache.clear()
            return
        self._cache.pop(seller_id, None)

    def __len__(self) -> int:
        return len(self._cache)


class SellerStatsWriter:
    """Atomic counter updates on seller aggregates."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def monthly_scan_count(self, seller_id: str, now: datetime) -> int:
        stmt = select(SellerMonthlyScan.scan_count).where(
            SellerMonthlyScan.seller_id == seller_id,
            SellerMonthlyScan.period == month_period(now),
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one_or_none() or 0)

    async def ensure_within_monthly_limit(self, config: SellerConfig, now: datetime) -> int:
        used = await self.monthly_scan_count(config.seller_id, now)
        if used >= config.monthly_scan_limit:
            logger.info(
                "Seller reached monthly scan limit",
                seller_id=config.seller_id,
                used=used,
                limit=config.monthly_scan_limit,
            )
            raise MonthlyLimitReachedError(limit=config.monthly_scan_limit)
        return used

    async def record_scan(
        self,
        seller_id: str,
        *,
        points: int,
        new_customer: bool,
        now: datetime,
        limit: int | None = None,
    ) -> None:
        """Bump seller aggregates and the month counter.

        With ``limit`` set the month counter only moves while it is below the
        limit; a scan that loses that race raises ``MonthlyLimitReachedError``.
        """

        values = {
            "total_scans": SellerProfile.total_scans + 1,
            "total_points_distributed": SellerProfile.total_points_distributed + points,
        }
        if new_customer:
            values["active_customers"] = SellerProfile.active_customers + 1
        await self._session.execute(
            update(SellerProfile)
            .where(SellerProfile.id == seller_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        period = month_period(now)
        conditions = [SellerMonthlyScan.seller_id == seller_id, SellerMonthlyScan.period == period]
        if limit is not None:
            conditions.append(SellerMonthlyScan.scan_count < limit)
        result = await self._session.execute(
            update(SellerMonthlyScan)
            .where(*conditions)
            .values(
                scan_count=SellerMonthlyScan.scan_count + 1,
                points_distributed=SellerMonthlyScan.points_distributed + points,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if limit is not None and (limit <= 0 or await self.monthly_scan_count(seller_id, now) > 0):
                raise MonthlyLimitReachedError(limit=limit)
            # A concurrent first scan of the month surfaces as IntegrityError and is retried.
            self._session.add(
                SellerMonthlyScan(
                    seller_id=seller_id,
                    period=period,
                    scan_count=1,
                    points_distributed=points,
                )
            )
            await self._session.flush()

    async def record_redemption(self, seller_id: str, *, points: int) -> None:
        await self._session.execute(
            update(SellerProfile)
            .where(SellerProfile.id == seller_id)
            .values(
                total_points_redeemed=SellerProfile.total_points_redeemed + points,
                total_redemptions=SellerProfile.total_redemptions + 1,
            )
            .execution_options(synchronize_session=False)
        )

    async def monthly_breakdown(self, seller_id: str) -> dict[str, int]:
        stmt = select(SellerMonthlyScan.period, SellerMonthlyScan.scan_count).where(
            SellerMonthlyScan.seller_id == seller_id
        )
        result = await self._session.execute(stmt)
        return {period: int(count) for period, count in result.all()}


__all__ = [
    "SellerConfig",
    "SellerConfigCache",
    "SellerStatsWriter",
    "UNLIMITED_SCANS",
    "load_seller_config",
    "plan_scan_limit",
]
