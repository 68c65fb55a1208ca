"""SQLAlchemy models package."""

# Import all models
from .customer_profile import CustomerEarnToken, CustomerProfile  # noqa: F401
from .loyalty import (  # noqa: F401
    HoldStatus,
    PointBalance,
    PointHold,
    PointTransaction,
    PointTransactionSource,
    PointTransactionType,
    Redemption,
    RedemptionStatus,
)
from .offer import OfferClaim, OfferClaimStatus, OfferCodeStatus, OfferRedemptionCode  # noqa: F401
from .seller import (  # noqa: F401
    SellerDailyOffer,
    SellerMonthlyScan,
    SellerProfile,
    SubscriptionStatus,
    SubscriptionTier,
)
