"""In-memory gateway for local development and testing.

Replace with ClickPesaGateway (or another adapter) for production.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from marketplace_ledger.exceptions import GatewayTimeoutError
from marketplace_ledger.providers.base import (
    DisbursementResult,
    GatewayPaymentResult,
    GatewayStatusResult,
)


class StubGateway:
    """Stub payment gateway.

    Payments are accepted and stay ``pending`` until a test calls
    ``simulate_payment_status``. Disbursements are deduplicated by
    reference, the way a real gateway honours idempotency keys.
    """

    gateway_name = "stub"

    def __init__(
        self,
        accept_payments: bool = True,
        accept_disbursements: bool = True,
    ):
        """Initialize stub gateway.

        Args:
            accept_payments: If False, every payment is rejected.
            accept_disbursements: If False, every disbursement is rejected.
        """
        self.accept_payments = accept_payments
        self.accept_disbursements = accept_disbursements
        self.timeout_payments = False
        self.timeout_disbursements = False
        # Send the money, then time out before answering
        self.timeout_after_disbursing = False
        self.rejection_message = "Payment rejected by stub gateway"
        # In-memory tracking for stub
        self.payments: dict[str, dict[str, Any]] = {}
        self.disbursements: dict[str, dict[str, Any]] = {}
        self._disbursements_by_reference: dict[str, str] = {}

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
        """Create payment (stub implementation)."""
        if self.timeout_payments:
            raise GatewayTimeoutError("Stub gateway timed out creating payment")
        if not self.accept_payments:
            return GatewayPaymentResult(success=False, error=self.rejection_message)

        payment_id = f"STUBPAY-{uuid.uuid4().hex[:12].upper()}"
        transaction_id = f"STUBTXN-{uuid.uuid4().hex[:12].upper()}"
        self.payments[payment_id] = {
            "amount": amount,
            "currency": currency,
            "order_id": order_id,
            "customer_phone": customer_phone,
            "callback_url": callback_url,
            "transaction_id": transaction_id,
            "status": "pending",
        }
        return GatewayPaymentResult(
            success=True,
            payment_id=payment_id,
            transaction_id=transaction_id,
            checkout_url=f"https://checkout.stub.local/{payment_id}",
        )

    async def check_payment_status(self, payment_id: str) -> GatewayStatusResult:
        """Get status of a created payment."""
        record = self.payments.get(payment_id)
        if record is None:
            return GatewayStatusResult(
                success=False,
                error=f"Payment {payment_id} not found",
            )
        return GatewayStatusResult(
            success=True,
            status=record["status"],
            transaction_id=record["transaction_id"],
            message="Stub payment status",
        )

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
        """Send a disbursement (stub implementation)."""
        if self.timeout_disbursements:
            raise GatewayTimeoutError("Stub gateway timed out creating disbursement")
        if not self.accept_disbursements:
            return DisbursementResult(success=False, error="Disbursement rejected by stub gateway")

        if reference and reference in self._disbursements_by_reference:
            existing_id = self._disbursements_by_reference[reference]
            return DisbursementResult(
                success=True,
                disbursement_id=existing_id,
                transaction_id=self.disbursements[existing_id]["transaction_id"],
            )

        disbursement_id = f"STUBDSB-{uuid.uuid4().hex[:12].upper()}"
        self.disbursements[disbursement_id] = {
            "amount": amount,
            "currency": currency,
            "recipient_phone": recipient_phone,
            "recipient_name": recipient_name,
            "reference": reference,
            "transaction_id": f"STUBTXN-{uuid.uuid4().hex[:12].upper()}",
            "status": "success",
        }
        if reference:
            self._disbursements_by_reference[reference] = disbursement_id
        if self.timeout_after_disbursing:
            raise GatewayTimeoutError("Stub gateway timed out after sending disbursement")
        return DisbursementResult(
            success=True,
            disbursement_id=disbursement_id,
            transaction_id=self.disbursements[disbursement_id]["transaction_id"],
        )

    async def check_disbursement_status(self, disbursement_id: str) -> GatewayStatusResult:
        """Get status of a disbursement by id or by the reference it was sent with."""
        disbursement_id = self._disbursements_by_reference.get(disbursement_id, disbursement_id)
        record = self.disbursements.get(disbursement_id)
        if record is None:
            return GatewayStatusResult(
                success=True,
                status="not_found",
                message=f"Disbursement {disbursement_id} not found",
            )
        return GatewayStatusResult(
            success=True,
            status=record["status"],
            transaction_id=record["transaction_id"],
        )

    # =========================================================================
    # Test helpers
    # =========================================================================

    def simulate_payment_status(self, payment_id: str, status: str) -> None:
        """Set the status the gateway reports for a payment."""
        if payment_id not in self.payments:
            raise KeyError(f"Payment {payment_id} not found")
        self.payments[payment_id]["status"] = status

    def webhook_payload(self, payment_id: str, status: str | None = None) -> dict[str, Any]:
        """Build the notification body the gateway would post for a payment."""
        record = self.payments[payment_id]
        return {
            "payment_id": payment_id,
            "order_id": record["order_id"],
            "status": status or record["status"],
            "transaction_id": record["transaction_id"],
        }
