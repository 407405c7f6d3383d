"""Pytest fixtures for marketplace ledger tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from marketplace_ledger.calculators import FeeCalculator, Money
from marketplace_ledger.config import Settings
from marketplace_ledger.events import AsyncEventEmitter, DomainEvent
from marketplace_ledger.models import (
    Base,
    Commission,
    FinancialTransaction,
    MarketplaceOrder,
    Payment,
    PayoutMethod,
    PlatformFeeRecord,
    UserBalance,
)
from marketplace_ledger.providers import StubGateway
from marketplace_ledger.services import (
    EntityRef,
    EntityType,
    LedgerService,
    PayerContact,
    PaymentService,
    PayoutService,
    WebhookReconciler,
)

# In-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture
async def engine():
    """Create a fresh test database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        app_url="http://testserver",
        gateway_base_url="https://gateway.test",
        gateway_client_id="client-id",
        gateway_api_key="api-key",
        gateway_webhook_secret=WEBHOOK_SECRET,
        gateway_timeout_seconds=5.0,
        use_stub_gateway=True,
        default_currency="USD",
        minimum_payout=Decimal("1.00"),
    )


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def emitter() -> AsyncEventEmitter:
    return AsyncEventEmitter()


@pytest.fixture
def events(emitter: AsyncEventEmitter) -> list[DomainEvent]:
    """Every event emitted during the test, in order."""
    captured: list[DomainEvent] = []
    emitter.on_all(captured.append)
    return captured


@pytest.fixture
def calculator() -> FeeCalculator:
    return FeeCalculator()


@pytest.fixture
def ledger(session: AsyncSession) -> LedgerService:
    return LedgerService(session, default_currency="USD")


@pytest.fixture
def payment_service(session, gateway, calculator, settings, emitter) -> PaymentService:
    return PaymentService(session, gateway, calculator, settings, emitter)


@pytest.fixture
def reconciler(session, ledger, emitter) -> WebhookReconciler:
    return WebhookReconciler(session, ledger, emitter)


@pytest.fixture
def payout_service(session, gateway, ledger, emitter, settings) -> PayoutService:
    return PayoutService(session, gateway, ledger, emitter, settings)


@dataclass
class LedgerTestData:
    """Builders for common scenarios."""

    session: AsyncSession
    buyer_id: UUID = field(default_factory=uuid4)
    creator_id: UUID = field(default_factory=uuid4)

    async def add_order(self, order_id: str | None = None) -> MarketplaceOrder:
        order = MarketplaceOrder(
            id=order_id or f"ord{uuid4().hex[:12]}",
            buyer_id=self.buyer_id,
            status="pending",
            payment_status="pending",
        )
        self.session.add(order)
        await self.session.commit()
        return order

    async def add_commission(self, commission_id: str) -> Commission:
        commission = Commission(id=commission_id, status="accepted", payment_status="pending")
        self.session.add(commission)
        await self.session.commit()
        return commission

    async def add_mobile_method(self, user_id: UUID | None = None) -> PayoutMethod:
        method = PayoutMethod(
            user_id=user_id or self.creator_id,
            method_type="mobile_money",
            mobile_operator="M-Pesa",
            mobile_number="+255700000001",
            account_name="Creator",
            is_default=True,
        )
        self.session.add(method)
        await self.session.commit()
        return method

    async def add_bank_method(self, user_id: UUID | None = None) -> PayoutMethod:
        method = PayoutMethod(
            user_id=user_id or self.creator_id,
            method_type="bank_transfer",
            bank_name="CRDB",
            account_name="Creator",
            account_number="0150000000",
        )
        self.session.add(method)
        await self.session.commit()
        return method

    async def paid_order(
        self,
        payment_service: PaymentService,
        gateway: StubGateway,
        reconciler: WebhookReconciler,
        amount: str = "10.00",
        currency: str = "USD",
    ) -> Payment:
        """Create an order, pay for it and deliver the success webhook."""
        order = await self.add_order()
        result = await payment_service.create_payment(
            EntityRef(EntityType.ORDER, order.id),
            Money(Decimal(amount), currency),
            PayerContact(user_id=self.buyer_id, phone="+255700000000"),
            payee_id=self.creator_id,
        )
        payload = gateway.webhook_payload(result.gateway_payment_id, "success")
        await reconciler.handle_gateway_notification(
            payload["payment_id"],
            payload["order_id"],
            payload["status"],
            payload["transaction_id"],
        )
        return await self.get(Payment, result.payment_id)

    async def get(self, model: type, key: Any) -> Any:
        return await self.session.get(model, key, populate_existing=True)

    async def fee_records(self, order_id: str) -> list[PlatformFeeRecord]:
        rows = await self.session.execute(
            select(PlatformFeeRecord)
            .where(PlatformFeeRecord.transaction_id == order_id)
            .execution_options(populate_existing=True)
        )
        return list(rows.scalars().all())

    async def ledger_entries(self, user_id: UUID) -> list[FinancialTransaction]:
        rows = await self.session.execute(
            select(FinancialTransaction)
            .where(FinancialTransaction.user_id == user_id)
            .order_by(FinancialTransaction.sequence)
        )
        return list(rows.scalars().all())

    async def balance(self, user_id: UUID) -> UserBalance | None:
        return await self.get(UserBalance, user_id)


@pytest.fixture
def data(session: AsyncSession) -> LedgerTestData:
    return LedgerTestData(session)
