"""Business services for payments, reconciliation, the ledger and payouts."""

from marketplace_ledger.services.entity_routing import (
    ENTITY_ROUTES,
    EntityRef,
    EntityRoute,
    EntityType,
    PaymentOutcome,
    apply_entity_outcome,
)
from marketplace_ledger.services.ledger_service import (
    BalanceVerification,
    FinancialSummary,
    LedgerService,
    ReplayResult,
    TransactionPage,
    TransactionRecord,
    TransactionType,
)
from marketplace_ledger.services.payment_service import (
    PayerContact,
    PaymentResult,
    PaymentService,
    PaymentStatusView,
)
from marketplace_ledger.services.payout_service import EarningsSummary, PayoutService
from marketplace_ledger.services.reconciliation import (
    STATUS_VOCABULARY,
    ReconciliationOutcome,
    ReconciliationResult,
    WebhookReconciler,
    map_gateway_status,
)
from marketplace_ledger.services.state_machine import (
    FeePayoutStatus,
    FeeStatus,
    InvalidTransitionError,
    PaymentStateMachine,
    PaymentStatus,
    PayoutStateMachine,
    PayoutStatus,
)

__all__ = [
    "ENTITY_ROUTES",
    "EntityRef",
    "EntityRoute",
    "EntityType",
    "PaymentOutcome",
    "apply_entity_outcome",
    "BalanceVerification",
    "FinancialSummary",
    "LedgerService",
    "ReplayResult",
    "TransactionPage",
    "TransactionRecord",
    "TransactionType",
    "PayerContact",
    "PaymentResult",
    "PaymentService",
    "PaymentStatusView",
    "EarningsSummary",
    "PayoutService",
    "STATUS_VOCABULARY",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "WebhookReconciler",
    "map_gateway_status",
    "FeePayoutStatus",
    "FeeStatus",
    "InvalidTransitionError",
    "PaymentStateMachine",
    "PaymentStatus",
    "PayoutStateMachine",
    "PayoutStatus",
]
