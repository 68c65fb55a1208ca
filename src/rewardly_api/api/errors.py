"""Translate loyalty business errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from rewardly_api.domain.loyalty.errors import LoyaltyError, TooSoonError

_STATUS_BY_KIND: dict[str, int] = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "seller_not_found": status.HTTP_404_NOT_FOUND,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "already_processed": status.HTTP_409_CONFLICT,
    "already_redeemed": status.HTTP_409_CONFLICT,
    "insufficient_points": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "expired": status.HTTP_410_GONE,
    "invalid_input": status.HTTP_400_BAD_REQUEST,
    "invalid_points": status.HTTP_400_BAD_REQUEST,
    "invalid_token": status.HTTP_400_BAD_REQUEST,
    "too_soon": status.HTTP_429_TOO_MANY_REQUESTS,
    "monthly_limit_reached": status.HTTP_429_TOO_MANY_REQUESTS,
    "subscription_inactive": status.HTTP_403_FORBIDDEN,
    "subscription_expired": status.HTTP_403_FORBIDDEN,
    "too_far_from_store": status.HTTP_403_FORBIDDEN,
}


def status_for(error: LoyaltyError) -> int:
    return _STATUS_BY_KIND.get(error.kind, status.HTTP_400_BAD_REQUEST)


def to_http_exception(error: LoyaltyError) -> HTTPException:
    headers = None
    if isinstance(error, TooSoonError) and error.retry_after_seconds:
        headers = {"Retry-After": str(error.retry_after_seconds)}
    return HTTPException(status_code=status_for(error), detail=error.as_dict(), headers=headers)


__all__ = ["status_for", "to_http_exception"]
