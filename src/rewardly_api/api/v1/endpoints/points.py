"""Customer wallet endpoints: balances per seller and activity history."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.api.dependencies.session import CallerIdentity, require_caller
from rewardly_api.db.session import get_session
from rewardly_api.domain.loyalty.clock import ensure_utc
from rewardly_api.models.loyalty import PointTransactionSource, PointTransactionType
from rewardly_api.services.loyalty import HoldManager, LedgerStore

router = APIRouter(prefix="/loyalty/points", tags=["loyalty"])


class PointBalanceResponse(BaseModel):
    sellerId: str
    points: int
    pointsOnHold: int
    availablePoints: int
    lastUpdated: Optional[datetime] = None


class WalletResponse(BaseModel):
    userId: str
    balances: List[PointBalanceResponse]
    totalPoints: int


@router.get("", response_model=WalletResponse, summary="List the caller's balances")
async def list_balances(
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
) -> WalletResponse:
    balances = await LedgerStore(session).list_balances(caller.uid)
    return WalletResponse(
        userId=caller.uid,
        balances=[
            PointBalanceResponse(
                sellerId=view.seller_id,
                points=view.points,
                pointsOnHold=view.points_on_hold,
                availablePoints=view.available_points,
                lastUpdated=view.last_updated,
            )
            for view in balances
        ],
        totalPoints=sum(view.points for view in balances),
    )


class PointTransactionResponse(BaseModel):
    id: str
    sellerId: str
    type: str
    source: str
    points: int
    basePoints: int
    bonusPoints: int
    amount: Optional[float] = None
    redemptionId: Optional[str] = None
    description: Optional[str] = None
    occurredAt: datetime


class PointTransactionListResponse(BaseModel):
    userId: str
    transactions: List[PointTransactionResponse]


@router.get(
    "/transactions",
    response_model=PointTransactionListResponse,
    summary="The caller's earn and redeem history, newest first",
)
async def list_transactions(
    entry_type: Optional[str] = Query(None, alias="type"),
    seller_id: Optional[str] = Query(None, alias="sellerId"),
    limit: int = Query(10, ge=1, le=100),
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
) -> PointTransactionListResponse:
    kind = None
    if entry_type:
        try:
            kind = PointTransactionType(entry_type)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Unsupported transaction type: {entry_type}") from exc

    entries = await LedgerStore(session).list_transactions(
        caller.uid, seller_id=seller_id, entry_type=kind, limit=limit
    )
    return PointTransactionListResponse(
        userId=caller.uid,
        transactions=[
            PointTransactionResponse(
                id=str(entry.id),
                sellerId=entry.seller_id,
                type=PointTransactionType(entry.entry_type).value,
                source=PointTransactionSource(entry.source).value,
                points=entry.points,
                basePoints=entry.base_points,
                bonusPoints=entry.bonus_points,
                amount=float(entry.amount) if entry.amount is not None else None,
                redemptionId=entry.redemption_id,
                description=entry.description,
                occurredAt=ensure_utc(entry.occurred_at),
            )
            for entry in entries
        ],
    )


@router.get("/{seller_id}", response_model=PointBalanceResponse, summary="Balance with a single seller")
async def get_balance(
    seller_id: str,
    caller: CallerIdentity = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
) -> PointBalanceResponse:
    ledger = LedgerStore(session)
    holds = HoldManager(session, ledger=ledger)
    record = await ledger.get_record(caller.uid, seller_id)
    points = record.points if record else 0
    reserved = await holds.reserved_total(caller.uid, seller_id)
    return PointBalanceResponse(
        sellerId=seller_id,
        points=points,
        pointsOnHold=reserved,
        availablePoints=points - reserved,
        lastUpdated=ensure_utc(record.last_updated) if record else None,
    )
