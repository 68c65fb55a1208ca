"""Daily perk claims and their one-time redeem codes."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, Date, DateTime, Enum as SqlEnum, Index, Integer, Numeric, String, Text, func

from rewardly_api.db.base import Base


class OfferClaimStatus(str, Enum):
    ASSIGNED = "ASSIGNED"
    CLAIMED = "CLAIMED"
    REDEEMED = "REDEEMED"
    EXPIRED = "EXPIRED"


class OfferCodeStatus(str, Enum):
    PENDING = "PENDING"
    REDEEMED = "REDEEMED"
    EXPIRED = "EXPIRED"


class OfferClaim(Base):
    """The perk a customer drew from a seller on a given day.

    Issuing a code is a version-checked write, so two concurrent requests
    cannot both attach a code to the same claim.
    """

    __tablename__ = "offer_claims"
    __table_args__ = (
        Index("ix_offer_claims_date_status", "claim_date", "status"),
    )

    user_id = Column(String(64), primary_key=True)
    seller_id = Column(String(64), primary_key=True)
    claim_date = Column(Date, primary_key=True)
    offer_id = Column(String(64), nullable=False)
    title = Column(String, nullable=False)
    min_spend = Column(Numeric(12, 2), nullable=True)
    terms = Column(Text, nullable=True)
    status = Column(
        SqlEnum(
            OfferClaimStatus,
            name="offer_claim_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=OfferClaimStatus.ASSIGNED,
        server_default=OfferClaimStatus.ASSIGNED.value,
    )
    redeem_code = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1, server_default="1")

    __mapper_args__ = {"version_id_col": version}

    @property
    def claim_id(self) -> str:
        return f"{self.user_id}_{self.seller_id}_{self.claim_date.isoformat()}"


class OfferRedemptionCode(Base):
    __tablename__ = "offer_redemption_codes"
    __table_args__ = (
        Index("ix_offer_redemption_codes_claim", "user_id", "seller_id", "claim_date"),
    )

    code = Column(String(32), primary_key=True)
    user_id = Column(String(64), nullable=False)
    seller_id = Column(String(64), nullable=False)
    offer_id = Column(String(64), nullable=False)
    claim_date = Column(Date, nullable=False)
    status = Column(
        SqlEnum(
            OfferCodeStatus,
            name="offer_code_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=OfferCodeStatus.PENDING,
        server_default=OfferCodeStatus.PENDING.value,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)


__all__ = ["OfferClaim", "OfferClaimStatus", "OfferCodeStatus", "OfferRedemptionCode"]
