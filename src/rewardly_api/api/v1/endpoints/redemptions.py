"""Redemption endpoints for customers (create, poll, cancel) and sellers (commit)."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.api.dependencies.loyalty import get_notifier, get_seller_cache
from rewardly_api.api.dependencies.session import CallerIdentity, require_caller
from rewardly_api.api.errors import to_http_exception
from rewardly_api.db.session import get_session
from rewardly_api.domain.loyalty.clock import ensure_utc
from rewardly_api.domain.loyalty.errors import InvalidInputError, LoyaltyError
from rewardly_api.domain.loyalty.qr import parse_redemption_payload
from rewardly_api.models.loyalty import Redemption, RedemptionStatus
from rewardly_api.services.loyalty import RedemptionStateMachine, SellerConfigCache
from rewardly_api.services.notifications import LoyaltyNotifier

router = APIRouter(prefix="/loyalty", tags=["loyalty"])


class RedemptionCreateRequest(BaseModel):
    sellerId: str
    points: int = Field(..., description="Whole points to redeem")
    offerId: Optional[str] = None
    offerName: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class RedemptionCommitRequest(BaseModel):
    qrData: Optional[str] = Field(default=None, description="Raw payload read from the customer's QR")
    redemptionId: Optional[str] = None
    sellerNotes: Optional[str] = Field(default=None, max_length=500)


class RedemptionQRPayloadResponse(BaseModel):
    type: str
    redemption_id: str
    seller_id: str
    user_id: str
    points: int
    timestamp: int
    hash: str


class RedemptionResponse(BaseModel):
    id: str
    userId: str
    sellerId: str
    points: int
    offerId: Optional[str]
    offerName: Optional[str]
    status: str
    createdAt: datetime
    updatedAt: datetime
    expiresAt: datetime
    redeemedAt: Optional[datetime]
    sellerNotes: Optional[str]
    customerNotes: Optional[str]
    qrData: Optional[str] = None


class RedemptionCreateResponse(BaseModel):
    redemption: RedemptionResponse
    qrData: str
    qrPayload: RedemptionQRPayloadResponse


class RedemptionListResponse(BaseModel):
    redemptions: List[RedemptionResponse]


def _serialize(redemption: Redemption, *, include_qr: bool = False) -> RedemptionResponse:
    return RedemptionResponse(
        id=redemption.id,
        userId=redemption.user_id,
        sellerId=redemption.seller_id,
        points=redemption.points,
        offerId=redemption.offer_id,
        offerName=redemption.offer_name,
        status=RedemptionStatus(redemption.status).value,
        createdAt=ensure_utc(redemption.created_at),
        updatedAt=ensure_utc(redemption.updated_at),
        expiresAt=ensure_utc(redemption.expires_at),
        redeemedAt=ensure_utc(redemption.redeemed_at),
        sellerNotes=redemption.seller_notes,
        customerNotes=redemption.customer_notes,
        qrData=redemption.qr_data if include_qr else None,
    )


def _parse_status(value: Optional[str]) -> Optional[RedemptionStatus]:
    if not value:
        return None
    try:
        return RedemptionStatus(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unsupported redemption status: {value}") from exc


@router.post(
    "/redemptions",
    response_model=RedemptionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Reserve points and issue a redemption QR",
)
async def create_redemption(
    payload: RedemptionCreateRequest,
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
    seller_cache: SellerConfigCache = Depends(get_seller_cache),
) -> RedemptionCreateResponse:
    machine = RedemptionStateMachine(session, seller_cache=seller_cache)
    try:
        receipt = await machine.create(
            caller.uid,
            payload.sellerId,
            payload.points,
            offer_id=payload.offerId,
            offer_name=payload.offerName,
            customer_notes=payload.notes,
        )
    except LoyaltyError as exc:
        raise to_http_exception(exc) from exc
    qr = receipt.qr_payload
    return RedemptionCreateResponse(
        redemption=_serialize(receipt.redemption),
        qrData=qr.encode(),
        qrPayload=RedemptionQRPayloadResponse(
            type=qr.type,
            redemption_id=qr.redemption_id,
            seller_id=qr.seller_id,
            user_id=qr.user_id,
            points=qr.points,
            timestamp=qr.timestamp,
            hash=qr.hash,
        ),
    )


@router.get("/redemptions", response_model=RedemptionListResponse, summary="List the caller's redemptions")
async def list_redemptions(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
) -> RedemptionListResponse:
    machine = RedemptionStateMachine(session)
    items = await machine.list_for_user(caller.uid, status=_parse_status(status_filter), limit=limit)
    return RedemptionListResponse(redemptions=[_serialize(item) for item in items])


@router.get(
    "/redemptions/{redemption_id}",
    response_model=RedemptionResponse,
    summary="Poll a redemption's status and re-fetch its QR",
)
async def get_redemption(
    redemption_id: str,
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    machine = RedemptionStateMachine(session)
    try:
        redemption = await machine.get_for_user(caller.uid, redemption_id)
    except LoyaltyError as exc:
        raise to_http_exception(exc) from exc
    return _serialize(redemption, include_qr=True)


@router.post(
    "/redemptions/{redemption_id}/cancel",
    response_model=RedemptionResponse,
    summary="Cancel a pending redemption and release its hold",
)
async def cancel_redemption(
    redemption_id: str,
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    machine = RedemptionStateMachine(session)
    try:
        redemption = await machine.cancel(caller.uid, redemption_id)
    except LoyaltyError as exc:
        raise to_http_exception(exc) from exc
    return _serialize(redemption)


@router.post(
    "/seller/redemptions/commit",
    response_model=RedemptionResponse,
    summary="Seller confirms a scanned redemption QR",
)
async def commit_redemption(
    payload: RedemptionCommitRequest,
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
    seller_cache: SellerConfigCache = Depends(get_seller_cache),
    notifier: LoyaltyNotifier = Depends(get_notifier),
) -> RedemptionResponse:
    machine = RedemptionStateMachine(session, seller_cache=seller_cache, notifier=notifier)
    try:
        redemption_id = payload.redemptionId
        parsed = None
        if payload.qrData:
            parsed = parse_redemption_payload(payload.qrData)
            if parsed is None:
                raise InvalidInputError("Invalid redemption QR")
            redemption_id = parsed.redemption_id
        if not redemption_id:
            raise InvalidInputError("Redemption QR or id is required")
        redemption = await machine.commit(
            caller.uid,
            redemption_id,
            seller_notes=payload.sellerNotes,
            qr_payload=parsed,
        )
    except LoyaltyError as exc:
        raise to_http_exception(exc) from exc
    return _serialize(redemption)


@router.get(
    "/seller/redemptions",
    response_model=RedemptionListResponse,
    summary="List redemptions at the calling seller",
)
async def list_seller_redemptions(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
) -> RedemptionListResponse:
    machine = RedemptionStateMachine(session)
    items = await machine.list_for_seller(caller.uid, status=_parse_status(status_filter), limit=limit)
    return RedemptionListResponse(redemptions=[_serialize(item) for item in items])
