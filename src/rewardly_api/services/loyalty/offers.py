"""Daily perk flow: assign today's offer, issue a code, verify it at the counter."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.core.settings import settings
from rewardly_api.db.transactions import run_transaction
from rewardly_api.domain.loyalty.clock import ensure_utc, local_date, utcnow
from rewardly_api.domain.loyalty.errors import (
    AlreadyRedeemedError,
    ConflictError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
)
from rewardly_api.domain.loyalty.qr import generate_redeem_code
from rewardly_api.models.offer import (
    OfferClaim,
    OfferClaimStatus,
    OfferCodeStatus,
    OfferRedemptionCode,
)
from rewardly_api.models.seller import SellerDailyOffer
from rewardly_api.observability.loyalty import get_loyalty_store

from .sellers import SellerConfigCache

_CODE_GENERATION_ATTEMPTS = 5


@dataclass
class OfferStatusView:
    claim_date: date
    claim: Optional[OfferClaim]
    code: Optional[OfferRedemptionCode]

    @property
    def status(self) -> str | None:
        return self.claim.status.value if self.claim else None


@dataclass
class OfferVerification:
    code: OfferRedemptionCode
    claim: Optional[OfferClaim]


@dataclass
class OfferExpiryResult:
    claim_date: date
    claims_expired: int = 0
    codes_expired: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"offer_claims_expired": self.claims_expired, "offer_codes_expired": self.codes_expired}


class OfferService:
    """One perk per customer, seller and local day, redeemable once."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        seller_cache: SellerConfigCache | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._session = session
        self._seller_cache = seller_cache or SellerConfigCache()
        self._rng = rng or random.SystemRandom()

    def claim_date_for(self, now: datetime | None = None) -> date:
        return local_date(ensure_utc(now) or utcnow(), settings.offer_timezone)

    async def assign_today_offer(
        self,
        user_id: str,
        seller_id: str,
        *,
        now: datetime | None = None,
    ) -> OfferClaim:
        """Return today's claim for the pair, drawing a random active offer the first time."""

        claim_date = self.claim_date_for(now)
        await self._seller_cache.get(self._session, seller_id)

        async def work() -> tuple[OfferClaim, bool]:
            existing = await self._get_claim(user_id, seller_id, claim_date)
            if existing is not None:
                return existing, False

            result = await self._session.execute(
                select(SellerDailyOffer)
                .where(SellerDailyOffer.seller_id == seller_id, SellerDailyOffer.is_active.is_(True))
                .order_by(SellerDailyOffer.offer_id.asc())
            )
            offers = list(result.scalars().all())
            if not offers:
                raise NotFoundError("No offers available for this seller today")

            offer = self._rng.choice(offers)
            claim = OfferClaim(
                user_id=user_id,
                seller_id=seller_id,
                claim_date=claim_date,
                offer_id=offer.offer_id,
                title=offer.title,
                min_spend=offer.min_spend,
                terms=offer.terms,
                status=OfferClaimStatus.ASSIGNED,
            )
            self._session.add(claim)
            await self._session.flush()
            return claim, True

        claim, created = await run_transaction(self._session, work, operation="offer.assign")
        if created:
            get_loyalty_store().record_offer_event("assigned")
            logger.info(
                "Assigned daily offer",
                user_id=user_id,
                seller_id=seller_id,
                offer_id=claim.offer_id,
                claim_date=claim_date.isoformat(),
            )
        return claim

    async def generate_redeem_code(
        self,
        user_id: str,
        seller_id: str,
        *,
        now: datetime | None = None,
    ) -> OfferRedemptionCode:
        claim_date = self.claim_date_for(now)

        async def work() -> tuple[OfferRedemptionCode, bool]:
            claim = await self._get_claim(user_id, seller_id, claim_date)
            if claim is None:
                raise NotFoundError("No offer claimed today")
            if claim.status == OfferClaimStatus.REDEEMED:
                raise AlreadyRedeemedError("Offer already redeemed today")
            if claim.status == OfferClaimStatus.EXPIRED:
                raise ExpiredError("Today's offer has expired")

            if claim.redeem_code:
                existing = await self._session.get(
                    OfferRedemptionCode, claim.redeem_code, populate_existing=True
                )
                if existing is not None:
                    return existing, False

            code = await self._unique_code()
            record = OfferRedemptionCode(
                code=code,
                user_id=user_id,
                seller_id=seller_id,
                offer_id=claim.offer_id,
                claim_date=claim_date,
                status=OfferCodeStatus.PENDING,
            )
            self._session.add(record)
            claim.redeem_code = code
            claim.status = OfferClaimStatus.CLAIMED
            await self._session.flush()
            return record, True

        record, created = await run_transaction(self._session, work, operation="offer.code")
        if created:
            get_loyalty_store().record_offer_event("code_issued")
            logger.info("Issued offer redeem code", user_id=user_id, seller_id=seller_id, code=record.code)
        return record

    async def verify_redeem_code(
        self,
        seller_id: str,
        code: str,
        *,
        now: datetime | None = None,
    ) -> OfferVerification:
        """Seller-side verification; the code flips to REDEEMED at most once."""

        normalized = (code or "").strip().upper()
        moment = ensure_utc(now) or utcnow()

        async def work() -> OfferVerification:
            record = await self._session.get(OfferRedemptionCode, normalized, populate_existing=True)
            if record is None:
                raise NotFoundError("Invalid redeem code")
            if record.seller_id != seller_id:
                raise ForbiddenError("Code belongs to a different seller")
            if record.status == OfferCodeStatus.REDEEMED:
                raise AlreadyRedeemedError()
            if record.status == OfferCodeStatus.EXPIRED:
                raise ExpiredError("Redeem code has expired")

            claim = await self._get_claim(record.user_id, record.seller_id, record.claim_date)
            if claim is None or claim.redeem_code != record.code:
                raise NotFoundError("Offer claim not found")
            if claim.status == OfferClaimStatus.REDEEMED:
                raise AlreadyRedeemedError()
            if claim.status == OfferClaimStatus.EXPIRED:
                raise ExpiredError("Today's offer has expired")

            guarded = await self._session.execute(
                update(OfferRedemptionCode)
                .where(
                    OfferRedemptionCode.code == normalized,
                    OfferRedemptionCode.status == OfferCodeStatus.PENDING,
                )
                .values(status=OfferCodeStatus.REDEEMED, redeemed_at=moment)
                .execution_options(synchronize_session=False)
            )
            if guarded.rowcount == 0:
                raise AlreadyRedeemedError()

            claimed = await self._session.execute(
                update(OfferClaim)
                .where(
                    OfferClaim.user_id == record.user_id,
                    OfferClaim.seller_id == record.seller_id,
                    OfferClaim.claim_date == record.claim_date,
                    OfferClaim.redeem_code == record.code,
                    OfferClaim.status.in_([OfferClaimStatus.ASSIGNED, OfferClaimStatus.CLAIMED]),
                )
                .values(
                    status=OfferClaimStatus.REDEEMED,
                    redeemed_at=moment,
                    version=OfferClaim.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                raise AlreadyRedeemedError()
            await self._session.refresh(record)
            claim = await self._get_claim(record.user_id, record.seller_id, record.claim_date)
            return OfferVerification(code=record, claim=claim)

        try:
            verification = await run_transaction(self._session, work, operation="offer.verify")
        except AlreadyRedeemedError:
            get_loyalty_store().record_offer_event("verify_rejected")
            raise
        get_loyalty_store().record_offer_event("redeemed")
        logger.info(
            "Verified offer redeem code",
            seller_id=seller_id,
            code=normalized,
            user_id=verification.code.user_id,
        )
        return verification

    async def get_today_status(
        self,
        user_id: str,
        seller_id: str,
        *,
        now: datetime | None = None,
    ) -> OfferStatusView:
        claim_date = self.claim_date_for(now)
        claim = await self._get_claim(user_id, seller_id, claim_date)
        code = None
        if claim is not None and claim.redeem_code:
            code = await self._session.get(OfferRedemptionCode, claim.redeem_code, populate_existing=True)
        return OfferStatusView(claim_date=claim_date, claim=claim, code=code)

    async def expire_unredeemed(
        self,
        claim_date: date,
        *,
        now: datetime | None = None,
    ) -> OfferExpiryResult:
        """Expire open claims and pending codes dated on or before ``claim_date``."""

        moment = ensure_utc(now) or utcnow()

        async def work() -> OfferExpiryResult:
            claims = await self._session.execute(
                update(OfferClaim)
                .where(
                    OfferClaim.claim_date <= claim_date,
                    OfferClaim.status.in_([OfferClaimStatus.ASSIGNED, OfferClaimStatus.CLAIMED]),
                )
                .values(status=OfferClaimStatus.EXPIRED, expired_at=moment, version=OfferClaim.version + 1)
                .execution_options(synchronize_session=False)
            )
            codes = await self._session.execute(
                update(OfferRedemptionCode)
                .where(
                    OfferRedemptionCode.claim_date <= claim_date,
                    OfferRedemptionCode.status == OfferCodeStatus.PENDING,
                )
                .values(status=OfferCodeStatus.EXPIRED, expired_at=moment)
                .execution_options(synchronize_session=False)
            )
            return OfferExpiryResult(
                claim_date=claim_date,
                claims_expired=claims.rowcount or 0,
                codes_expired=codes.rowcount or 0,
            )

        result = await run_transaction(self._session, work, operation="offer.expire")
        if result.claims_expired or result.codes_expired:
            get_loyalty_store().record_offer_event("expired")
            logger.info("Expired unredeemed offers", claim_date=claim_date.isoformat(), **result.as_dict())
        return result

    async def _get_claim(self, user_id: str, seller_id: str, claim_date: date) -> OfferClaim | None:
        return await self._session.get(
            OfferClaim,
            (user_id, seller_id, claim_date),
            populate_existing=True,
        )

    async def _unique_code(self) -> str:
        for _ in range(_CODE_GENERATION_ATTEMPTS):
            candidate = generate_redeem_code(settings.offer_code_prefix, settings.offer_code_length)
            if await self._session.get(OfferRedemptionCode, candidate) is None:
                return candidate
        raise ConflictError("Could not allocate a unique redeem code")


__all__ = [
    "OfferExpiryResult",
    "OfferService",
    "OfferStatusView",
    "OfferVerification",
]
