"""Fee calculator.

Pure and stateless: given an amount, a category and an optional pricing
tier, computes what the buyer pays and what the payee nets.

Platform fee = subtotal x commission rate, raised to the currency's floor
when the rate is non-zero, and never more than the subtotal. Processing
fee = subtotal x processing rate + the currency's fixed fee; it is paid by
the buyer on top of the subtotal and is not subject to tiers.
"""

from __future__ import annotations

from decimal import Decimal

from marketplace_ledger.calculators.fee_schedule import DEFAULT_FEE_SCHEDULE, FeeSchedule
from marketplace_ledger.calculators.types import (
    FeeCalculation,
    Money,
    PricingTier,
    TransactionCategory,
)
from marketplace_ledger.exceptions import UnknownPricingTierError


class FeeCalculator:
    """Computes FeeCalculation values from an injected FeeSchedule."""

    def __init__(self, schedule: FeeSchedule = DEFAULT_FEE_SCHEDULE):
        self.schedule = schedule

    def validate_tier(self, pricing_tier: PricingTier | None) -> None:
        """Raise UnknownPricingTierError for tier names not in the schedule."""
        if pricing_tier is None:
            return
        if (
            pricing_tier.subscription_tier
            and pricing_tier.subscription_tier not in self.schedule.subscription_tiers
        ):
            raise UnknownPricingTierError(pricing_tier.subscription_tier)
        if (
            pricing_tier.percentage_tier
            and pricing_tier.percentage_tier not in self.schedule.percentage_tiers
        ):
            raise UnknownPricingTierError(pricing_tier.percentage_tier)

    def resolve_commission_rate(
        self,
        category: TransactionCategory,
        pricing_tier: PricingTier | None = None,
    ) -> Decimal:
        """Resolve the commission rate: subscription > percentage > default.

        A tier that does not list ``category`` falls through to the next
        source.
        """
        self.validate_tier(pricing_tier)
        category = TransactionCategory(category)

        if pricing_tier is not None:
            if pricing_tier.subscription_tier:
                overrides = self.schedule.subscription_tiers[pricing_tier.subscription_tier]
                if category in overrides:
                    return overrides[category]
            if pricing_tier.percentage_tier:
                overrides = self.schedule.percentage_tiers[pricing_tier.percentage_tier]
                if category in overrides:
                    return overrides[category]

        return self.schedule.commission_rates[category]

    def calculate(
        self,
        amount: Money,
        category: TransactionCategory,
        pricing_tier: PricingTier | None = None,
    ) -> FeeCalculation:
        """Calculate the fee breakdown for one transaction.

        Raises:
            ValueError: If the amount is not positive.
            UnknownPricingTierError: If a tier name is not configured.
        """
        if amount.amount <= 0:
            raise ValueError("Amount must be positive")

        category = TransactionCategory(category)
        currency = self.schedule.currencies.get(amount.currency)
        rate = self.resolve_commission_rate(category, pricing_tier)

        subtotal = currency.quantize(amount.amount)
        if subtotal <= 0:
            raise ValueError(f"Amount rounds to zero in {currency.code}")

        platform_fee = currency.quantize(subtotal * rate)
        if rate > 0:
            platform_fee = max(platform_fee, currency.minimum_platform_fee)
        # Payee never owes money on a sale
        platform_fee = min(platform_fee, subtotal)

        processing_fee = currency.quantize(
            subtotal * self.schedule.processing_rate + currency.fixed_fee
        )

        return FeeCalculation(
            subtotal=subtotal,
            platform_fee=platform_fee,
            payment_processing_fee=processing_fee,
            total_fees=platform_fee + processing_fee,
            creator_payout=subtotal - platform_fee,
            total=subtotal + processing_fee,
            currency=currency.code,
            commission_rate=rate,
            category=category,
        )

    def calculate_for(
        self,
        category: TransactionCategory | str,
        amount: Decimal | str,
        currency: str,
        percentage_tier: str | None = None,
        subscription_tier: str | None = None,
    ) -> FeeCalculation:
        """Convenience wrapper taking plain values."""
        tier = None
        if percentage_tier or subscription_tier:
            tier = PricingTier(
                percentage_tier=percentage_tier,
                subscription_tier=subscription_tier,
            )
        return self.calculate(
            Money(Decimal(amount), currency),
            TransactionCategory(category),
            tier,
        )
