"""Loyalty expiry sweep: stale redemptions, orphan holds and yesterday's perks."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.core.settings import settings
from rewardly_api.domain.loyalty.clock import ensure_utc, utcnow
from rewardly_api.observability.loyalty import get_loyalty_store
from rewardly_api.services.loyalty import OfferService, RedemptionStateMachine

# meta: job: loyalty-expiry-sweep

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def run_loyalty_expiry_sweep(
    *,
    session_factory: SessionFactory,
    now: datetime | None = None,
    limit: int | None = None,
) -> Dict[str, Any]:
    """Expire stale redemptions and the previous day's unredeemed offers.

    Safe to run concurrently with live traffic and with itself: every transition
    is re-checked inside its own transaction.
    """

    moment = ensure_utc(now) or utcnow()
    batch = limit or settings.loyalty_expiry_batch_size

    maybe_session = session_factory()
    session = maybe_session if isinstance(maybe_session, AsyncSession) else await maybe_session

    async with session as managed_session:
        redemptions = await RedemptionStateMachine(managed_session).expire_stale(now=moment, limit=batch)

        offers = OfferService(managed_session)
        previous_day = offers.claim_date_for(moment) - timedelta(days=1)
        offer_result = await offers.expire_unredeemed(previous_day, now=moment)

    summary: Dict[str, Any] = {
        **redemptions.as_dict(),
        **offer_result.as_dict(),
        "offer_claim_date": previous_day.isoformat(),
        "ran_at": moment.isoformat(),
    }
    get_loyalty_store().record_sweep(
        {key: value for key, value in summary.items() if isinstance(value, int)}
    )
    logger.bind(summary=summary).info("Loyalty expiry sweep completed")
    return summary


__all__ = ["run_loyalty_expiry_sweep"]
