"""Fee calculation."""

from marketplace_ledger.calculators.currency import CurrencySpec, CurrencyTable, DEFAULT_CURRENCIES
from marketplace_ledger.calculators.fee_calculator import FeeCalculator
from marketplace_ledger.calculators.fee_schedule import DEFAULT_FEE_SCHEDULE, FeeSchedule
from marketplace_ledger.calculators.types import (
    FeeCalculation,
    Money,
    PricingTier,
    TransactionCategory,
)

__all__ = [
    "CurrencySpec",
    "CurrencyTable",
    "DEFAULT_CURRENCIES",
    "FeeCalculator",
    "DEFAULT_FEE_SCHEDULE",
    "FeeSchedule",
    "FeeCalculation",
    "Money",
    "PricingTier",
    "TransactionCategory",
]
