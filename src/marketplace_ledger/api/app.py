"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace_ledger import __version__
from marketplace_ledger.api.routes import (
    financial_router,
    health_router,
    operator_payouts_router,
    payments_router,
    payouts_router,
)
from marketplace_ledger.calculators import FeeCalculator
from marketplace_ledger.config import Settings, configure_logging, get_settings
from marketplace_ledger.database import create_tables, dispose_db, init_db
from marketplace_ledger.events import AsyncEventEmitter
from marketplace_ledger.exceptions import LedgerError
from marketplace_ledger.notifications import LoggingNotifier, register_notification_handlers
from marketplace_ledger.providers import ClickPesaGateway, PaymentGateway, StubGateway

logger = logging.getLogger(__name__)


def build_gateway(settings: Settings) -> PaymentGateway:
    """Gateway adapter selected by settings."""
    if settings.use_stub_gateway:
        logger.warning("Using the in-memory stub payment gateway")
        return StubGateway()
    return ClickPesaGateway(
        base_url=settings.gateway_base_url,
        client_id=settings.gateway_client_id,
        api_key=settings.gateway_api_key,
        timeout_seconds=settings.gateway_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    # Startup
    configure_logging(settings.log_level)
    init_db(settings.database_url)
    await create_tables()
    logger.info("Marketplace ledger started with %s gateway", app.state.gateway.gateway_name)
    yield
    # Shutdown
    aclose = getattr(app.state.gateway, "aclose", None)
    if aclose is not None:
        await aclose()
    await dispose_db()


def create_app(
    settings: Settings | None = None,
    gateway: PaymentGateway | None = None,
    calculator: FeeCalculator | None = None,
    emitter: AsyncEventEmitter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Marketplace Ledger API",
        description="Marketplace fees, payment reconciliation and creator payouts",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.gateway = gateway or build_gateway(settings)
    app.state.calculator = calculator or FeeCalculator()
    if emitter is None:
        emitter = AsyncEventEmitter()
        register_notification_handlers(emitter, LoggingNotifier())
    app.state.emitter = emitter

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(LedgerError)
    async def ledger_exception_handler(request: Request, exc: LedgerError) -> JSONResponse:
        """Map domain errors to their HTTP status."""
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(payments_router, prefix="/api/v1")
    app.include_router(payouts_router, prefix="/api/v1")
    app.include_router(operator_payouts_router, prefix="/api/v1")
    app.include_router(financial_router, prefix="/api/v1")

    return app
