"""Shared loyalty collaborators resolved per request."""

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.db.session import get_session
from rewardly_api.services.loyalty import SellerConfigCache
from rewardly_api.services.notifications import LoyaltyNotifier, PushBackend, build_push_backend


def get_seller_cache(request: Request) -> SellerConfigCache:
    cache = getattr(request.app.state, "seller_config_cache", None)
    if cache is None:
        cache = SellerConfigCache()
        request.app.state.seller_config_cache = cache
    return cache


def get_push_backend(request: Request) -> PushBackend | None:
    if not hasattr(request.app.state, "push_backend"):
        request.app.state.push_backend = build_push_backend()
    return request.app.state.push_backend


async def get_notifier(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> LoyaltyNotifier:
    return LoyaltyNotifier(session, backend=get_push_backend(request))
