"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_ledger.calculators import FeeCalculator
from marketplace_ledger.config import Settings, get_settings
from marketplace_ledger.database import get_session_factory
from marketplace_ledger.events import AsyncEventEmitter
from marketplace_ledger.providers import PaymentGateway
from marketplace_ledger.services import (
    LedgerService,
    PaymentService,
    PayoutService,
    WebhookReconciler,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_calculator(request: Request) -> FeeCalculator:
    return request.app.state.calculator


def get_emitter(request: Request) -> AsyncEventEmitter:
    return request.app.state.emitter


async def get_user_id(
    x_user_id: Annotated[str | None, Header()] = None
) -> UUID:
    """Extract the calling user's id from header."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-ID header is required",
        )
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-User-ID format",
        )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
UserId = Annotated[UUID, Depends(get_user_id)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Gateway = Annotated[PaymentGateway, Depends(get_gateway)]
Calculator = Annotated[FeeCalculator, Depends(get_calculator)]
Emitter = Annotated[AsyncEventEmitter, Depends(get_emitter)]


def get_ledger_service(db: DbSession, settings: AppSettings) -> LedgerService:
    return LedgerService(db, default_currency=settings.default_currency)


Ledger = Annotated[LedgerService, Depends(get_ledger_service)]


def get_payment_service(
    db: DbSession,
    gateway: Gateway,
    calculator: Calculator,
    settings: AppSettings,
    emitter: Emitter,
) -> PaymentService:
    return PaymentService(db, gateway, calculator, settings, emitter)


def get_reconciler(db: DbSession, ledger: Ledger, emitter: Emitter) -> WebhookReconciler:
    return WebhookReconciler(db, ledger, emitter)


def get_payout_service(
    db: DbSession,
    gateway: Gateway,
    ledger: Ledger,
    emitter: Emitter,
    settings: AppSettings,
) -> PayoutService:
    return PayoutService(db, gateway, ledger, emitter, settings)


Payments = Annotated[PaymentService, Depends(get_payment_service)]
Reconciler = Annotated[WebhookReconciler, Depends(get_reconciler)]
Payouts = Annotated[PayoutService, Depends(get_payout_service)]
