"""Fee schedule configuration.

The schedule is an explicit, immutable value handed to FeeCalculator at
construction. Nothing reads commission rates from module globals, so tests
and tenants can substitute their own schedule.

Rules:
    1. Immutable after creation (frozen dataclass, read-only mappings).
    2. Rates are Decimals in [0, 1).
    3. Tier tables override commission rates only; processing fees are
       never tiered.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType

from marketplace_ledger.calculators.currency import CurrencyTable
from marketplace_ledger.calculators.types import TransactionCategory

Category = TransactionCategory
RateTable = Mapping[TransactionCategory, Decimal]


def _freeze_rates(rates: Mapping[TransactionCategory | str, Decimal]) -> RateTable:
    frozen: dict[TransactionCategory, Decimal] = {}
    for category, rate in rates.items():
        rate = Decimal(rate)
        if rate < 0 or rate >= 1:
            raise ValueError(f"Commission rate for {category} must be in [0, 1), got {rate}")
        frozen[TransactionCategory(category)] = rate
    return MappingProxyType(frozen)


DEFAULT_COMMISSION_RATES: dict[TransactionCategory, Decimal] = {
    Category.MARKETPLACE: Decimal("0.08"),
    Category.DIGITAL_PRODUCT: Decimal("0.06"),
    Category.SERVICE_BOOKING: Decimal("0.10"),
    Category.COMMISSION: Decimal("0.12"),
    Category.SUBSCRIPTION: Decimal("0.05"),
    Category.TIP: Decimal("0.03"),
    # Listing fees are platform revenue in full
    Category.FEATURED_LISTING: Decimal("0"),
}

DEFAULT_PERCENTAGE_TIERS: dict[str, dict[TransactionCategory, Decimal]] = {
    "basic": {
        Category.MARKETPLACE: Decimal("0.08"),
        Category.DIGITAL_PRODUCT: Decimal("0.06"),
        Category.SERVICE_BOOKING: Decimal("0.10"),
        Category.COMMISSION: Decimal("0.12"),
    },
    "premium": {
        Category.MARKETPLACE: Decimal("0.05"),
        Category.DIGITAL_PRODUCT: Decimal("0.06"),
        Category.SERVICE_BOOKING: Decimal("0.08"),
        Category.COMMISSION: Decimal("0.10"),
    },
    "pro": {
        Category.MARKETPLACE: Decimal("0.03"),
        Category.DIGITAL_PRODUCT: Decimal("0.04"),
        Category.SERVICE_BOOKING: Decimal("0.06"),
        Category.COMMISSION: Decimal("0.08"),
    },
}

DEFAULT_SUBSCRIPTION_TIERS: dict[str, dict[TransactionCategory, Decimal]] = {
    "free": {},
    "creator": {},
    "professional": {
        Category.MARKETPLACE: Decimal("0.06"),
        Category.DIGITAL_PRODUCT: Decimal("0.05"),
        Category.SERVICE_BOOKING: Decimal("0.08"),
        Category.COMMISSION: Decimal("0.10"),
    },
    "enterprise": {
        Category.MARKETPLACE: Decimal("0.02"),
        Category.DIGITAL_PRODUCT: Decimal("0.02"),
        Category.SERVICE_BOOKING: Decimal("0.04"),
        Category.COMMISSION: Decimal("0.05"),
    },
}


@dataclass(frozen=True)
class FeeSchedule:
    """
    Commission and processing fee configuration.

    Attributes:
        commission_rates: Base commission rate per category. Every
            TransactionCategory must be present.
        processing_rate: Percentage part of the processing fee paid by
            the buyer. Default 2.5%.
        currencies: Currency table providing the fixed processing fee and
            the platform fee floor.
        percentage_tiers: Named per-category commission overrides.
        subscription_tiers: Named per-category commission overrides that
            win over percentage tiers.
    """

    commission_rates: RateTable = field(default_factory=lambda: DEFAULT_COMMISSION_RATES)
    processing_rate: Decimal = Decimal("0.025")
    currencies: CurrencyTable = field(default_factory=CurrencyTable)
    percentage_tiers: Mapping[str, RateTable] = field(
        default_factory=lambda: DEFAULT_PERCENTAGE_TIERS
    )
    subscription_tiers: Mapping[str, RateTable] = field(
        default_factory=lambda: DEFAULT_SUBSCRIPTION_TIERS
    )

    def __post_init__(self) -> None:
        """Validate and freeze the configuration."""
        rates = _freeze_rates(self.commission_rates)
        missing = set(TransactionCategory) - set(rates)
        if missing:
            names = ", ".join(sorted(c.value for c in missing))
            raise ValueError(f"commission_rates missing categories: {names}")
        if self.processing_rate < 0 or self.processing_rate >= 1:
            raise ValueError("processing_rate must be in [0, 1)")

        object.__setattr__(self, "commission_rates", rates)
        object.__setattr__(
            self,
            "percentage_tiers",
            MappingProxyType({k: _freeze_rates(v) for k, v in self.percentage_tiers.items()}),
        )
        object.__setattr__(
            self,
            "subscription_tiers",
            MappingProxyType({k: _freeze_rates(v) for k, v in self.subscription_tiers.items()}),
        )


DEFAULT_FEE_SCHEDULE = FeeSchedule()
