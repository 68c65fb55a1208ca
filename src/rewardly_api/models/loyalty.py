"""Points ledger, hold and redemption models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    Index,
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


class HoldStatus(str, Enum):
    RESERVED = "reserved"
    RELEASED = "released"


class RedemptionStatus(str, Enum):
    """Redemption lifecycle; everything except ``pending`` is terminal."""

    PENDING = "pending"
    REDEEMED = "redeemed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not RedemptionStatus.PENDING


class PointTransactionType(str, Enum):
    EARN = "earn"
    REDEEM = "redeem"


class PointTransactionSource(str, Enum):
    USER_QR = "user_qr"
    PAYMENT = "payment"
    REDEMPTION = "redemption"


class PointBalance(Base):
    """Points a customer holds with a single seller.

    ``version`` is the optimistic concurrency token: ORM writes are checked
    against it and the atomic earn upsert bumps it, so a read-check-write racing
    with any other writer fails with ``StaleDataError`` and is retried.
    """

    __tablename__ = "point_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "seller_id", name="uq_point_balances_user_seller"),
        CheckConstraint("points >= 0", name="points_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    seller_id = Column(String(64), nullable=False, index=True)
    points = Column(Integer, nullable=False, default=0, server_default="0")
    points_on_hold = Column(Integer, nullable=False, default=0, server_default="0")
    version = Column(Integer, nullable=False, default=1, server_default="1")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}


class PointHold(Base):
    """Points reserved for a pending redemption."""

    __tablename__ = "point_holds"
    __table_args__ = (
        Index("ix_point_holds_pair_status", "user_id", "seller_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(String(64), nullable=False)
    seller_id = Column(String(64), nullable=False)
    redemption_id = Column(String(64), nullable=False, unique=True)
    points = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(
            HoldStatus,
            name="point_hold_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=HoldStatus.RESERVED,
        server_default=HoldStatus.RESERVED.value,
    )
    release_reason = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    released_at = Column(DateTime(timezone=True), nullable=True)


class Redemption(Base):
    """Customer request to spend points at a seller, confirmed by a seller scan."""

    __tablename__ = "redemptions"
    __table_args__ = (
        Index("ix_redemptions_status_expires_at", "status", "expires_at"),
    )

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    seller_id = Column(String(64), nullable=False, index=True)
    points = Column(Integer, nullable=False)
    offer_id = Column(String(64), nullable=True)
    offer_name = Column(String, nullable=True)
    status = Column(
        SqlEnum(
            RedemptionStatus,
            name="redemption_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=RedemptionStatus.PENDING,
        server_default=RedemptionStatus.PENDING.value,
    )
    qr_data = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1, server_default="1")
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def seller_notes(self) -> str | None:
        return (self.metadata_json or {}).get("seller_notes")

    @property
    def customer_notes(self) -> str | None:
        return (self.metadata_json or {}).get("customer_notes")


class PointTransaction(Base):
    """Customer-visible activity history entry (earn or redeem)."""

    __tablename__ = "point_transactions"
    __table_args__ = (
        Index("ix_point_transactions_user_occurred", "user_id", "occurred_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(String(64), nullable=False)
    seller_id = Column(String(64), nullable=False, index=True)
    entry_type = Column(
        SqlEnum(
            PointTransactionType,
            name="point_transaction_type",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    points = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=True)
    base_points = Column(Integer, nullable=False, default=0, server_default="0")
    bonus_points = Column(Integer, nullable=False, default=0, server_default="0")
    source = Column(
        SqlEnum(
            PointTransactionSource,
            name="point_transaction_source",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    redemption_id = Column(String(64), nullable=True)
    description = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


__all__ = [
    "HoldStatus",
    "PointBalance",
    "PointHold",
    "PointTransaction",
    "PointTransactionSource",
    "PointTransactionType",
    "Redemption",
    "RedemptionStatus",
]
