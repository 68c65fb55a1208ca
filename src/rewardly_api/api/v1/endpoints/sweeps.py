"""Internal trigger for the loyalty expiry sweep."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.api.dependencies.security import require_internal_api_key
from rewardly_api.db.session import get_session
from rewardly_api.jobs.loyalty.expiry import run_loyalty_expiry_sweep

router = APIRouter(
    prefix="/loyalty/sweeps",
    tags=["loyalty"],
    dependencies=[Depends(require_internal_api_key)],
)


@router.post("/expire", summary="Expire stale redemptions, orphan holds and stale perks")
async def trigger_expiry_sweep(
    limit: int | None = Query(None, ge=1, le=5000),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await run_loyalty_expiry_sweep(session_factory=lambda: session, limit=limit)
