"""Error taxonomy for fee, payment, ledger and payout operations.

Each error carries a machine-readable ``code`` and the HTTP status the API
layer maps it to. Reconciliation no-ops (unknown payment, duplicate webhook)
are outcomes, not errors, and are not represented here.
"""

from __future__ import annotations

from decimal import Decimal


class LedgerError(Exception):
    """Base class for all domain errors."""

    code = "LEDGER_ERROR"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# Validation
# =============================================================================


class ValidationError(LedgerError):
    """Request rejected before any persistence."""

    code = "VALIDATION_ERROR"
    status_code = 400


class UnknownPricingTierError(ValidationError):
    """Pricing tier name is not part of the fee schedule."""

    code = "UNKNOWN_PRICING_TIER"

    def __init__(self, tier: str):
        self.tier = tier
        super().__init__(f"Unknown pricing tier: {tier}")


# =============================================================================
# Lookups
# =============================================================================


class NotFoundError(LedgerError):
    """Referenced record does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class PaymentNotFoundError(NotFoundError):
    code = "PAYMENT_NOT_FOUND"


class PayoutNotFoundError(NotFoundError):
    code = "PAYOUT_NOT_FOUND"


class PayoutMethodNotFoundError(NotFoundError):
    code = "PAYOUT_METHOD_NOT_FOUND"


# =============================================================================
# Gateway
# =============================================================================


class GatewayError(LedgerError):
    """The payment gateway rejected an intent or a disbursement."""

    code = "GATEWAY_ERROR"
    status_code = 502


class GatewayTimeoutError(GatewayError):
    """The payment gateway did not answer within the configured timeout."""

    code = "GATEWAY_TIMEOUT"
    status_code = 504


# =============================================================================
# Ledger invariants
# =============================================================================


class InsufficientFundsError(LedgerError):
    """Payout request exceeds collected, unpaid earnings."""

    code = "INSUFFICIENT_FUNDS"
    status_code = 400

    def __init__(self, requested: Decimal, available: Decimal):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient funds: requested {requested}, available {available}"
        )


class InsufficientBalanceError(LedgerError):
    """Ledger write would drive an available balance negative."""

    code = "INSUFFICIENT_BALANCE"
    status_code = 409

    def __init__(self, user_id: object, balance: Decimal, amount: Decimal):
        self.user_id = user_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Available balance {balance} for user {user_id} cannot cover {amount}"
        )


class ConcurrentPayoutError(LedgerError):
    """Another request reserved or claimed the same records first."""

    code = "CONCURRENT_MODIFICATION"
    status_code = 409


class DisbursementUnresolvedError(LedgerError):
    """A disbursement may already have left; the payout cannot be cancelled."""

    code = "DISBURSEMENT_UNRESOLVED"
    status_code = 409
