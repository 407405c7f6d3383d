"""Payment gateway adapters."""

from marketplace_ledger.providers.base import (
    DisbursementResult,
    GatewayPaymentResult,
    GatewayStatusResult,
    PaymentGateway,
)
from marketplace_ledger.providers.clickpesa import ClickPesaGateway
from marketplace_ledger.providers.signatures import (
    SIGNATURE_HEADER,
    compute_signature,
    verify_webhook_signature,
)
from marketplace_ledger.providers.stub import StubGateway

__all__ = [
    "DisbursementResult",
    "GatewayPaymentResult",
    "GatewayStatusResult",
    "PaymentGateway",
    "ClickPesaGateway",
    "SIGNATURE_HEADER",
    "compute_signature",
    "verify_webhook_signature",
    "StubGateway",
]
