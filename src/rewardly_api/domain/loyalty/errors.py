"""Error taxonomy for the points ledger and redemption flows."""

from __future__ import annotations


class LoyaltyError(RuntimeError):
    """Base exception for loyalty business-rule rejections.

    ``kind`` is a stable identifier surfaced to API clients; the message is
    meant for humans.
    """

    kind: str = "loyalty_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message())
        self.message = str(self.args[0])

    @classmethod
    def default_message(cls) -> str:
        return cls.kind.replace("_", " ").capitalize()

    def as_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class NotFoundError(LoyaltyError):
    kind = "not_found"


class SellerNotFoundError(NotFoundError):
    kind = "seller_not_found"

    @classmethod
    def default_message(cls) -> str:
        return "Seller not found"


class ForbiddenError(LoyaltyError):
    kind = "forbidden"


class AlreadyProcessedError(LoyaltyError):
    """Raised when a terminal redemption is touched again."""

    kind = "already_processed"

    def __init__(self, status: str | None = None, message: str | None = None) -> None:
        self.status = status
        if message is None and status:
            message = f"Redemption already {status}"
        super().__init__(message)


class AlreadyRedeemedError(LoyaltyError):
    kind = "already_redeemed"

    @classmethod
    def default_message(cls) -> str:
        return "Code already redeemed"


class InsufficientPointsError(LoyaltyError):
    kind = "insufficient_points"

    def __init__(self, available: int | None = None, requested: int | None = None) -> None:
        self.available = available
        self.requested = requested
        message = None
        if available is not None:
            message = f"Insufficient available points. Available: {available}"
        super().__init__(message)


class ExpiredError(LoyaltyError):
    kind = "expired"


class InvalidInputError(LoyaltyError):
    kind = "invalid_input"


class InvalidPointsError(InvalidInputError):
    kind = "invalid_points"

    @classmethod
    def default_message(cls) -> str:
        return "Points must be a positive whole number"


class InvalidTokenError(LoyaltyError):
    kind = "invalid_token"

    @classmethod
    def default_message(cls) -> str:
        return "Invalid user QR"


class TooSoonError(LoyaltyError):
    kind = "too_soon"

    def __init__(self, retry_after_seconds: int | None = None) -> None:
        self.retry_after_seconds = retry_after_seconds
        message = None
        if retry_after_seconds is not None:
            message = f"QR scanned too recently, retry in {retry_after_seconds}s"
        super().__init__(message)


class SubscriptionInactiveError(LoyaltyError):
    kind = "subscription_inactive"


class SubscriptionExpiredError(LoyaltyError):
    kind = "subscription_expired"


class MonthlyLimitReachedError(LoyaltyError):
    kind = "monthly_limit_reached"

    def __init__(self, limit: int | None = None) -> None:
        self.limit = limit
        message = f"Monthly scan limit of {limit} reached" if limit is not None else None
        super().__init__(message)


class TooFarFromStoreError(LoyaltyError):
    kind = "too_far_from_store"

    def __init__(self, max_distance_meters: float | None = None, distance_meters: float | None = None) -> None:
        self.max_distance_meters = max_distance_meters
        self.distance_meters = distance_meters
        message = None
        if max_distance_meters is not None:
            message = f"Too far from store. Must be within {max_distance_meters:g}m"
        super().__init__(message)


class ConflictError(LoyaltyError):
    kind = "conflict"


__all__ = [
    "AlreadyProcessedError",
    "AlreadyRedeemedError",
    "ConflictError",
    "ExpiredError",
    "ForbiddenError",
    "InsufficientPointsError",
    "InvalidInputError",
    "InvalidPointsError",
    "InvalidTokenError",
    "LoyaltyError",
    "MonthlyLimitReachedError",
    "NotFoundError",
    "SellerNotFoundError",
    "SubscriptionExpiredError",
    "SubscriptionInactiveError",
    "TooFarFromStoreError",
    "TooSoonError",
]
