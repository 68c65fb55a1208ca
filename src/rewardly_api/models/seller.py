"""Seller configuration and aggregate stats models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    Float,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from rewardly_api.db.base import Base


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class SellerProfile(Base):
    """Seller account as seen by the loyalty core.

    Profile fields are owned by the seller onboarding flow; the loyalty core only
    writes the aggregate counters at the bottom.
    """

    __tablename__ = "seller_profiles"

    id = Column(String(64), primary_key=True)
    shop_name = Column(String, nullable=False)
    owner_name = Column(String, nullable=True)
    subscription_tier = Column(
        SqlEnum(
            SubscriptionTier,
            name="seller_subscription_tier",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=SubscriptionTier.FREE,
        server_default=SubscriptionTier.FREE.value,
    )
    subscription_status = Column(
        SqlEnum(
            SubscriptionStatus,
            name="seller_subscription_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        server_default=SubscriptionStatus.ACTIVE.value,
    )
    subscription_expires_at = Column(DateTime(timezone=True), nullable=True)
    monthly_scan_limit = Column(Integer, nullable=True)
    reward_config = Column(JSON, nullable=False, default=dict)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    geofence_radius_meters = Column(Float, nullable=True)

    total_scans = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_distributed = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    total_redemptions = Column(Integer, nullable=False, default=0, server_default="0")
    active_customers = Column(Integer, nullable=False, default=0, server_default="0")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class SellerMonthlyScan(Base):
    """Per-month scan counter backing the plan limit and the monthly breakdown."""

    __tablename__ = "seller_monthly_scans"
    __table_args__ = (
        UniqueConstraint("seller_id", "period", name="uq_seller_monthly_scans_seller_period"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    seller_id = Column(String(64), nullable=False, index=True)
    period = Column(String(16), nullable=False)
    scan_count = Column(Integer, nullable=False, default=0, server_default="0")
    points_distributed = Column(Integer, nullable=False, default=0, server_default="0")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class SellerDailyOffer(Base):
    """Perk a seller may hand out as the daily offer."""

    __tablename__ = "seller_daily_offers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    seller_id = Column(String(64), nullable=False, index=True)
    offer_id = Column(String(64), nullable=False)
    title = Column(String, nullable=False)
    min_spend = Column(Numeric(12, 2), nullable=True)
    terms = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


__all__ = [
    "SellerDailyOffer",
    "SellerMonthlyScan",
    "SellerProfile",
    "SubscriptionStatus",
    "SubscriptionTier",
]
