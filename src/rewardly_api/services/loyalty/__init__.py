"""Loyalty service exports."""

from .holds import HoldManager  # noqa: F401
from .ledger import BalanceView, LedgerStore, LedgerWrite  # noqa: F401
from .offers import (  # noqa: F401
    OfferExpiryResult,
    OfferService,
    OfferStatusView,
    OfferVerification,
)
from .redemptions import (  # noqa: F401
    ExpirySweepResult,
    RedemptionReceipt,
    RedemptionStateMachine,
)
from .scans import EarnTokenReceipt, ScanProcessor, ScanResult  # noqa: F401
from .sellers import (  # noqa: F401
    SellerConfig,
    SellerConfigCache,
    SellerStatsWriter,
    load_seller_config,
)
