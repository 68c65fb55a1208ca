"""Earn endpoints: personal earn QR, seller scans and payment rewards."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.api.dependencies.loyalty import get_notifier, get_seller_cache
from rewardly_api.api.dependencies.security import require_internal_api_key
from rewardly_api.api.dependencies.session import CallerIdentity, require_caller
from rewardly_api.api.errors import to_http_exception
from rewardly_api.db.session import get_session
from rewardly_api.domain.loyalty.errors import LoyaltyError
from rewardly_api.services.loyalty import ScanProcessor, ScanResult, SellerConfigCache
from rewardly_api.services.notifications import LoyaltyNotifier

router = APIRouter(prefix="/loyalty", tags=["loyalty"])


class EarnTokenResponse(BaseModel):
    userId: str
    token: str
    qrData: str


class UserScanRequest(BaseModel):
    qrData: Optional[str] = Field(default=None, description="Raw payload read from the customer's earn QR")
    token: Optional[str] = Field(default=None, description="Bare earn token when the payload was already decoded")
    amount: Decimal = Field(..., description="Purchase amount the reward is calculated from")
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class PaymentRewardRequest(BaseModel):
    userId: str
    sellerId: str
    amount: Decimal
    paymentReference: Optional[str] = None


class ScanResponse(BaseModel):
    userId: str
    sellerId: str
    pointsEarned: int
    basePoints: int
    bonusPoints: int
    isFirstScan: bool
    balance: int
    transactionId: UUID
    source: str


def _to_response(result: ScanResult) -> ScanResponse:
    return ScanResponse(
        userId=result.user_id,
        sellerId=result.seller_id,
        pointsEarned=result.points_earned,
        basePoints=result.base_points,
        bonusPoints=result.bonus_points,
        isFirstScan=result.is_first_scan,
        balance=result.balance,
        transactionId=result.transaction_id,
        source=result.source.value,
    )


@router.post("/earn-token", response_model=EarnTokenResponse, summary="Issue the caller's personal earn QR")
async def issue_earn_token(
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
) -> EarnTokenResponse:
    try:
        receipt = await ScanProcessor(session).issue_earn_token(caller.uid)
    except LoyaltyError as exc:
        raise to_http_exception(exc) from exc
    return EarnTokenResponse(userId=receipt.user_id, token=receipt.token, qrData=receipt.qr_payload)


@router.post(
    "/scans",
    response_model=ScanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Seller scans a customer's earn QR",
)
async def process_user_scan(
    payload: UserScanRequest,
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
    seller_cache: SellerConfigCache = Depends(get_seller_cache),
    notifier: LoyaltyNotifier = Depends(get_notifier),
) -> ScanResponse:
    processor = ScanProcessor(session, seller_cache=seller_cache, notifier=notifier)
    try:
        result = await processor.process_user_scan(
            caller.uid,
            amount=payload.amount,
            qr_data=payload.qrData,
            token=payload.token,
            latitude=payload.latitude,
            longitude=payload.longitude,
        )
    except LoyaltyError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(result)


@router.post(
    "/payments/rewards",
    response_model=ScanResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_internal_api_key)],
    summary="Credit points for a confirmed payment",
)
async def process_payment_reward(
    payload: PaymentRewardRequest,
    session: AsyncSession = Depends(get_session),
    seller_cache: SellerConfigCache = Depends(get_seller_cache),
    notifier: LoyaltyNotifier = Depends(get_notifier),
) -> ScanResponse:
    processor = ScanProcessor(session, seller_cache=seller_cache, notifier=notifier)
    try:
        result = await processor.process_payment_reward(
            payload.userId,
            payload.sellerId,
            payload.amount,
            payment_reference=payload.paymentReference,
        )
    except LoyaltyError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(result)
