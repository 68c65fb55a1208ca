"""Daily perk endpoints."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.api.dependencies.loyalty import get_seller_cache
from rewardly_api.api.dependencies.session import CallerIdentity, require_caller
from rewardly_api.api.errors import to_http_exception
from rewardly_api.db.session import get_session
from rewardly_api.domain.loyalty.clock import ensure_utc
from rewardly_api.domain.loyalty.errors import LoyaltyError
from rewardly_api.models.offer import OfferClaim, OfferRedemptionCode
from rewardly_api.services.loyalty import OfferService, SellerConfigCache

router = APIRouter(prefix="/loyalty/offers", tags=["loyalty"])


class OfferClaimResponse(BaseModel):
    claimId: str
    userId: str
    sellerId: str
    claimDate: date
    offerId: str
    title: str
    minSpend: Optional[Decimal]
    terms: Optional[str]
    status: str
    redeemCode: Optional[str]
    redeemedAt: Optional[datetime]


class RedeemCodeResponse(BaseModel):
    code: str
    userId: str
    sellerId: str
    offerId: str
    claimDate: date
    status: str
    redeemedAt: Optional[datetime]


class OfferTodayResponse(BaseModel):
    claimDate: date
    status: Optional[str]
    claim: Optional[OfferClaimResponse]
    code: Optional[RedeemCodeResponse]


class VerifyCodeRequest(BaseModel):
    code: str


class VerifyCodeResponse(BaseModel):
    code: RedeemCodeResponse
    claim: Optional[OfferClaimResponse]


def _claim(claim: OfferClaim) -> OfferClaimResponse:
    return OfferClaimResponse(
        claimId=claim.claim_id,
        userId=claim.user_id,
        sellerId=claim.seller_id,
        claimDate=claim.claim_date,
        offerId=claim.offer_id,
        title=claim.title,
        minSpend=claim.min_spend,
        terms=claim.terms,
        status=claim.status.value,
        redeemCode=claim.redeem_code,
        redeemedAt=ensure_utc(claim.redeemed_at),
    )


def _code(record: OfferRedemptionCode) -> RedeemCodeResponse:
    return RedeemCodeResponse(
        code=record.code,
        userId=record.user_id,
        sellerId=record.seller_id,
        offerId=record.offer_id,
        claimDate=record.claim_date,
        status=record.status.value,
        redeemedAt=ensure_utc(record.redeemed_at),
    )


@router.post("/verify", response_model=VerifyCodeResponse, summary="Seller verifies a perk redeem code")
async def verify_redeem_code(
    payload: VerifyCodeRequest,
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
    seller_cache: SellerConfigCache = Depends(get_seller_cache),
) -> VerifyCodeResponse:
    try:
        verification = await OfferService(session, seller_cache=seller_cache).verify_redeem_code(
            caller.uid, payload.code
        )
    except LoyaltyError as exc:
        raise to_http_exception(exc) from exc
    return VerifyCodeResponse(
        code=_code(verification.code),
        claim=_claim(verification.claim) if verification.claim else None,
    )


@router.post("/{seller_id}/claim", response_model=OfferClaimResponse, summary="Draw today's perk at a seller")
async def assign_today_offer(
    seller_id: str,
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
    seller_cache: SellerConfigCache = Depends(get_seller_cache),
) -> OfferClaimResponse:
    try:
        claim = await OfferService(session, seller_cache=seller_cache).assign_today_offer(caller.uid, seller_id)
    except LoyaltyError as exc:
        raise to_http_exception(exc) from exc
    return _claim(claim)


@router.post("/{seller_id}/code", response_model=RedeemCodeResponse, summary="Issue the redeem code for today's perk")
async def generate_redeem_code(
    seller_id: str,
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
    seller_cache: SellerConfigCache = Depends(get_seller_cache),
) -> RedeemCodeResponse:
    try:
        record = await OfferService(session, seller_cache=seller_cache).generate_redeem_code(caller.uid, seller_id)
    except LoyaltyError as exc:
        raise to_http_exception(exc) from exc
    return _code(record)


@router.get("/{seller_id}/today", response_model=OfferTodayResponse, summary="Today's perk status at a seller")
async def get_today_status(
    seller_id: str,
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
) -> OfferTodayResponse:
    view = await OfferService(session).get_today_status(caller.uid, seller_id)
    return OfferTodayResponse(
        claimDate=view.claim_date,
        status=view.status,
        claim=_claim(view.claim) if view.claim else None,
        code=_code(view.code) if view.code else None,
    )
