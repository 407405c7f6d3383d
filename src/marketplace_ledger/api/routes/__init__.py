"""API routes."""

from marketplace_ledger.api.routes.financial import router as financial_router
from marketplace_ledger.api.routes.health import router as health_router
from marketplace_ledger.api.routes.payments import router as payments_router
from marketplace_ledger.api.routes.payouts import operator_router as operator_payouts_router
from marketplace_ledger.api.routes.payouts import router as payouts_router

__all__ = [
    "financial_router",
    "health_router",
    "operator_payouts_router",
    "payments_router",
    "payouts_router",
]
