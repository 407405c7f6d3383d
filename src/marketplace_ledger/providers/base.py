"""Base protocol and types for payment gateway adapters.

All gateway adapters must implement the PaymentGateway protocol. Adapters
report business rejections through ``success=False`` results and raise
GatewayTimeoutError when the gateway does not answer in time.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from marketplace_ledger.exceptions import GatewayTimeoutError


@dataclass(frozen=True)
class GatewayPaymentResult:
    """Result of creating a checkout session."""

    success: bool
    payment_id: str | None = None
    transaction_id: str | None = None
    checkout_url: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class GatewayStatusResult:
    """Result of polling a payment or disbursement."""

    success: bool
    status: str | None = None  # raw gateway vocabulary (success, failed, pending, ...)
    transaction_id: str | None = None
    message: str = ""
    error: str | None = None


@dataclass(frozen=True)
class DisbursementResult:
    """Result of an outbound transfer request."""

    success: bool
    disbursement_id: str | None = None
    transaction_id: str | None = None
    error: str | None = None


class PaymentGateway(Protocol):
    """Protocol for payment gateway adapters."""

    gateway_name: str

    async def create_payment(
        self,
        *,
        amount: Decimal,
        currency: str,
        order_id: str,
        customer_phone: str,
        customer_email: str | None = None,
        customer_name: str | None = None,
        description: str | None = None,
        callback_url: str | None = None,
    ) -> GatewayPaymentResult:
        """Create a checkout session for ``amount``.

        Args:
            amount: Buyer-facing total including the processing fee
            currency: ISO currency code
            order_id: Deterministic order key echoed back in webhooks
            customer_phone: Mobile number to charge
            customer_email: Optional receipt address
            customer_name: Optional payer name
            description: Optional checkout description
            callback_url: Webhook URL for status notifications

        Returns:
            GatewayPaymentResult with the gateway's identifiers.
        """
        ...

    async def check_payment_status(self, payment_id: str) -> GatewayStatusResult:
        """Poll the current status of a payment."""
        ...

    async def create_disbursement(
        self,
        *,
        amount: Decimal,
        currency: str,
        recipient_phone: str,
        recipient_name: str | None = None,
        description: str | None = None,
        callback_url: str | None = None,
        reference: str | None = None,
    ) -> DisbursementResult:
        """Send money to a recipient.

        ``reference`` is a caller-chosen idempotency key; repeating a
        reference must not send money twice.
        """
        ...

    async def check_disbursement_status(self, disbursement_id: str) -> GatewayStatusResult:
        """Poll a disbursement by gateway id or by the reference it was sent with.

        A gateway that has no record of the disbursement answers
        ``success=True`` with status ``not_found``.
        """
        ...


__all__ = [
    "DisbursementResult",
    "GatewayPaymentResult",
    "GatewayStatusResult",
    "GatewayTimeoutError",
    "PaymentGateway",
]
