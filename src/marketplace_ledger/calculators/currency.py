"""Currency table: fixed processing fee, platform fee floor and precision."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType


@dataclass(frozen=True)
class CurrencySpec:
    """Per-currency fee parameters."""

    code: str
    fixed_fee: Decimal
    minimum_platform_fee: Decimal
    minor_units: int = 2

    @property
    def quantum(self) -> Decimal:
        """Smallest representable amount, e.g. 0.01 for two minor units."""
        return Decimal(1).scaleb(-self.minor_units)

    def quantize(self, amount: Decimal) -> Decimal:
        """Round half up to the currency's minor units."""
        return amount.quantize(self.quantum, rounding=ROUND_HALF_UP)


# Fixed processing fee and ~USD 0.25-equivalent platform fee floor per currency
DEFAULT_CURRENCIES: Mapping[str, CurrencySpec] = MappingProxyType(
    {
        "TZS": CurrencySpec("TZS", Decimal("500"), Decimal("625")),
        "KES": CurrencySpec("KES", Decimal("20"), Decimal("32")),
        "UGX": CurrencySpec("UGX", Decimal("500"), Decimal("925"), minor_units=0),
        "RWF": CurrencySpec("RWF", Decimal("400"), Decimal("330"), minor_units=0),
        "USD": CurrencySpec("USD", Decimal("0.30"), Decimal("0.25")),
        "EUR": CurrencySpec("EUR", Decimal("0.18"), Decimal("0.23")),
        "GBP": CurrencySpec("GBP", Decimal("0.15"), Decimal("0.20")),
    }
)


class CurrencyTable:
    """Lookup of currency parameters with a configured fallback.

    Unknown codes are accepted and priced like ``fallback`` (USD unless
    configured), using its fixed fee, floor and minor units.
    ``default_fixed_fee`` and ``default_minimum_platform_fee`` override the
    fallback's values when given.
    """

    def __init__(
        self,
        currencies: Mapping[str, CurrencySpec] = DEFAULT_CURRENCIES,
        fallback: CurrencySpec = DEFAULT_CURRENCIES["USD"],
        default_fixed_fee: Decimal | None = None,
        default_minimum_platform_fee: Decimal | None = None,
    ):
        if default_fixed_fee is None:
            default_fixed_fee = fallback.fixed_fee
        if default_minimum_platform_fee is None:
            default_minimum_platform_fee = fallback.minimum_platform_fee
        if default_fixed_fee < 0 or default_minimum_platform_fee < 0:
            raise ValueError("Currency defaults must be non-negative")
        self._currencies = MappingProxyType({k.upper(): v for k, v in currencies.items()})
        self.default_fixed_fee = default_fixed_fee
        self.default_minimum_platform_fee = default_minimum_platform_fee
        self.default_minor_units = fallback.minor_units

    def __contains__(self, code: str) -> bool:
        return code.upper() in self._currencies

    @property
    def codes(self) -> list[str]:
        return sorted(self._currencies)

    def get(self, code: str) -> CurrencySpec:
        """Spec for ``code``, or the fallback spec for unknown codes."""
        code = code.upper()
        spec = self._currencies.get(code)
        if spec is not None:
            return spec
        return CurrencySpec(
            code=code,
            fixed_fee=self.default_fixed_fee,
            minimum_platform_fee=self.default_minimum_platform_fee,
            minor_units=self.default_minor_units,
        )

    def fixed_fee(self, code: str) -> Decimal:
        return self.get(code).fixed_fee

    def minimum_platform_fee(self, code: str) -> Decimal:
        return self.get(code).minimum_platform_fee

    def quantize(self, amount: Decimal, code: str) -> Decimal:
        return self.get(code).quantize(amount)
