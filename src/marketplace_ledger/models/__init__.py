"""ORM models."""

from marketplace_ledger.models.base import Base, TimestampMixin, UpdatedAtMixin, utcnow
from marketplace_ledger.models.ledger import FinancialTransaction, UserBalance
from marketplace_ledger.models.marketplace import (
    Commission,
    DigitalProductPurchase,
    EventRegistration,
    FeaturedListing,
    LodgingBooking,
    MarketplaceOrder,
    PerformanceBooking,
    PlatformSubscription,
    ServiceBooking,
    Tip,
)
from marketplace_ledger.models.payments import Payment, PlatformFeeRecord
from marketplace_ledger.models.payouts import Payout, PayoutMethod

__all__ = [
    "Base",
    "TimestampMixin",
    "UpdatedAtMixin",
    "utcnow",
    "FinancialTransaction",
    "UserBalance",
    "Commission",
    "DigitalProductPurchase",
    "EventRegistration",
    "FeaturedListing",
    "LodgingBooking",
    "MarketplaceOrder",
    "PerformanceBooking",
    "PlatformSubscription",
    "ServiceBooking",
    "Tip",
    "Payment",
    "PlatformFeeRecord",
    "Payout",
    "PayoutMethod",
]
