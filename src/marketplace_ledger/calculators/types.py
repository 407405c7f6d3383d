"""Type definitions for fee calculation."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any


class TransactionCategory(str, Enum):
    """Commission categories. Each has its own base commission rate."""

    MARKETPLACE = "marketplace"
    DIGITAL_PRODUCT = "digital_product"
    SERVICE_BOOKING = "service_booking"
    COMMISSION = "commission"
    SUBSCRIPTION = "subscription"
    TIP = "tip"
    FEATURED_LISTING = "featured_listing"


@dataclass(frozen=True)
class Money:
    """An amount in a specific currency."""

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            raise TypeError("Money amount must be a Decimal")
        object.__setattr__(self, "currency", self.currency.upper())

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


@dataclass(frozen=True)
class PricingTier:
    """Tier selection for commission overrides.

    A subscription tier takes precedence over a percentage tier, which
    takes precedence over the platform default.
    """

    percentage_tier: str | None = None
    subscription_tier: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.percentage_tier and not self.subscription_tier


@dataclass(frozen=True)
class FeeCalculation:
    """Derived fee breakdown for one transaction.

    total = subtotal + payment_processing_fee
    creator_payout = subtotal - platform_fee
    total_fees = platform_fee + payment_processing_fee
    """

    subtotal: Decimal
    platform_fee: Decimal
    payment_processing_fee: Decimal
    total_fees: Decimal
    creator_payout: Decimal
    total: Decimal
    currency: str
    commission_rate: Decimal
    category: TransactionCategory

    def to_dict(self) -> dict[str, Any]:
        """Serialize with amounts as strings."""
        return {
            "subtotal": str(self.subtotal),
            "platform_fee": str(self.platform_fee),
            "payment_processing_fee": str(self.payment_processing_fee),
            "total_fees": str(self.total_fees),
            "creator_payout": str(self.creator_payout),
            "total": str(self.total),
            "currency": self.currency,
            "commission_rate": str(self.commission_rate),
            "category": self.category.value,
        }
