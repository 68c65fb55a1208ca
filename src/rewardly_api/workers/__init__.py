"""Background workers supporting async processing."""

from .loyalty_expiry import LoyaltyExpiryWorker

__all__ = ["LoyaltyExpiryWorker"]
