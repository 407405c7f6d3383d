"""Payment intent creation and status polling."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_ledger.calculators import FeeCalculation, FeeCalculator, Money, PricingTier
from marketplace_ledger.config import Settings
from marketplace_ledger.events import (
    AsyncEventEmitter,
    EventMetadata,
    PaymentFailed,
    PaymentInitiated,
)
from marketplace_ledger.exceptions import (
    GatewayError,
    PaymentNotFoundError,
    ValidationError,
)
from marketplace_ledger.models import Payment, PlatformFeeRecord, UserBalance
from marketplace_ledger.providers import PaymentGateway
from marketplace_ledger.services.entity_routing import EntityRef
from marketplace_ledger.services.reconciliation import ReconciliationResult, WebhookReconciler
from marketplace_ledger.services.state_machine import (
    FeeStatus,
    PaymentStateMachine,
    PaymentStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayerContact:
    """Who is paying and how the gateway reaches them."""

    user_id: UUID
    phone: str
    email: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a successful create_payment call."""

    payment_id: UUID
    order_id: str
    status: str
    checkout_url: str | None
    gateway_payment_id: str | None
    fees: FeeCalculation


@dataclass(frozen=True)
class PaymentStatusView:
    """Payment status as seen by the payer."""

    payment_id: UUID
    order_id: str
    status: str
    amount: Decimal
    currency: str
    gateway_transaction_id: str | None
    checkout_url: str | None
    error_message: str | None
    reconciliation: ReconciliationResult | None = None


class PaymentService:
    """Creates payment intents and records their fee breakdown.

    Each intent persists a Payment and exactly one PlatformFeeRecord before
    the gateway is called. A gateway rejection or timeout marks the payment
    failed and refunds the fee record, so no intent is left pending.

    The buyer is charged ``fees.total``; the payee is later credited
    ``fees.creator_payout`` by the webhook reconciler.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        calculator: FeeCalculator | None = None,
        settings: Settings | None = None,
        emitter: AsyncEventEmitter | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.calculator = calculator or FeeCalculator()
        self.settings = settings
        self.emitter = emitter

    def quote(
        self,
        entity: EntityRef,
        amount: Money,
        pricing_tier: PricingTier | None = None,
    ) -> FeeCalculation:
        """Fee breakdown an intent for ``entity`` would carry."""
        try:
            return self.calculator.calculate(amount, entity.route.fee_category, pricing_tier)
        except ValueError as e:
            raise ValidationError(str(e)) from e

    async def create_payment(
        self,
        entity: EntityRef,
        amount: Money,
        payer: PayerContact,
        payee_id: UUID | None = None,
        pricing_tier: PricingTier | None = None,
        description: str | None = None,
    ) -> PaymentResult:
        """Create a payment intent and hand it to the gateway.

        Args:
            entity: What is being paid for
            amount: Subtotal before the processing fee
            payer: Paying user and phone number to charge
            payee_id: Seller/creator credited on completion; required for
                every entity type except subscriptions and featured listings
            pricing_tier: Optional commission override
            description: Shown on the gateway checkout

        Raises:
            ValidationError: Missing phone/payee, non-positive amount, an
                intent for this entity is already open or completed, or the
                payee is already paid in another currency
            UnknownPricingTierError: Unknown tier name
            GatewayError: Gateway rejected the intent (payment marked failed)
            GatewayTimeoutError: Gateway did not answer (payment marked failed)
        """
        if not payer.phone or not payer.phone.strip():
            raise ValidationError("Phone number is required")
        route = entity.route
        if route.has_payee and payee_id is None:
            raise ValidationError(f"A payee is required for {entity.entity_type.value} payments")
        if not route.has_payee:
            payee_id = None

        fees = self.quote(entity, amount, pricing_tier)
        order_id = entity.order_id
        await self._ensure_no_open_payment(order_id)
        if payee_id is not None:
            await self._ensure_payee_currency(payee_id, fees.currency)

        payment = Payment(
            order_id=order_id,
            entity_type=entity.entity_type.value,
            entity_id=entity.entity_id,
            entity_secondary_id=entity.secondary_id,
            user_id=payer.user_id,
            payee_id=payee_id,
            amount=fees.total,
            currency=fees.currency,
            status=PaymentStatus.PENDING.value,
            description=description,
        )
        self.db.add(payment)
        await self.db.flush()

        fee_record = PlatformFeeRecord(
            transaction_id=order_id,
            transaction_type=route.fee_transaction_type,
            payment_id=payment.id,
            payer_id=payer.user_id,
            payee_id=payee_id,
            subtotal=fees.subtotal,
            platform_fee=fees.platform_fee,
            processing_fee=fees.payment_processing_fee,
            total_fees=fees.total_fees,
            creator_payout=fees.creator_payout,
            commission_rate=fees.commission_rate,
            currency=fees.currency,
            status=FeeStatus.PENDING.value,
        )
        self.db.add(fee_record)
        await self.db.commit()

        logger.info(
            "Created payment %s for %s: total %s %s (platform fee %s)",
            payment.id,
            order_id,
            fees.total,
            fees.currency,
            fees.platform_fee,
        )

        try:
            result = await self.gateway.create_payment(
                amount=fees.total,
                currency=fees.currency,
                order_id=order_id,
                customer_phone=payer.phone.strip(),
                customer_email=payer.email,
                customer_name=payer.name,
                description=description or f"Payment for {order_id}",
                callback_url=self.settings.payment_callback_url if self.settings else None,
            )
        except GatewayError as e:
            await self._fail_payment(payment, fee_record, e.message)
            raise

        if not result.success:
            reason = result.error or "Payment gateway rejected the request"
            await self._fail_payment(payment, fee_record, reason)
            raise GatewayError(reason)

        PaymentStateMachine.validate_transition(payment.status, PaymentStatus.INITIATED)
        payment.status = PaymentStatus.INITIATED.value
        payment.gateway_payment_id = result.payment_id
        payment.gateway_transaction_id = result.transaction_id
        payment.checkout_url = result.checkout_url
        await self.db.commit()

        logger.info(
            "Payment %s initiated at %s as %s",
            payment.id,
            self.gateway.gateway_name,
            result.payment_id,
        )

        if self.emitter is not None:
            await self.emitter.emit(
                PaymentInitiated(
                    metadata=EventMetadata.create(correlation_id=payment.id, actor_type="user"),
                    payment_id=payment.id,
                    order_id=order_id,
                    user_id=payer.user_id,
                    amount=fees.total,
                    currency=fees.currency,
                )
            )

        return PaymentResult(
            payment_id=payment.id,
            order_id=order_id,
            status=payment.status,
            checkout_url=payment.checkout_url,
            gateway_payment_id=payment.gateway_payment_id,
            fees=fees,
        )

    async def _ensure_no_open_payment(self, order_id: str) -> None:
        existing = await self.db.scalar(
            select(Payment.id).where(
                Payment.order_id == order_id,
                Payment.status.in_(
                    [
                        PaymentStatus.PENDING.value,
                        PaymentStatus.INITIATED.value,
                        PaymentStatus.COMPLETED.value,
                    ]
                ),
            ).limit(1)
        )
        if existing is not None:
            raise ValidationError(f"A payment for {order_id} is already open or completed")

    async def _ensure_payee_currency(self, payee_id: UUID, currency: str) -> None:
        # A balance holds one currency; earnings in another could never be credited
        held = await self.db.scalar(
            select(UserBalance.currency).where(
                UserBalance.user_id == payee_id, UserBalance.last_sequence > 0
            )
        )
        if held is None:
            held = await self.db.scalar(
                select(Payment.currency)
                .where(
                    Payment.payee_id == payee_id,
                    Payment.status.in_(
                        [PaymentStatus.PENDING.value, PaymentStatus.INITIATED.value]
                    ),
                    Payment.currency != currency,
                )
                .limit(1)
            )
        if held is not None and held != currency:
            raise ValidationError(
                f"Payee {payee_id} is paid in {held}; cannot accept {currency} payments"
            )

    async def _fail_payment(
        self, payment: Payment, fee_record: PlatformFeeRecord, reason: str
    ) -> None:
        payment.status = PaymentStatus.FAILED.value
        payment.error_message = reason
        fee_record.status = FeeStatus.REFUNDED.value
        await self.db.commit()
        logger.warning("Payment %s failed at creation: %s", payment.id, reason)

        if self.emitter is not None:
            ref = EntityRef.from_columns(
                payment.entity_type, payment.entity_id, payment.entity_secondary_id, payment.order_id
            )
            await self.emitter.emit(
                PaymentFailed(
                    metadata=EventMetadata.create(correlation_id=payment.id, actor_type="user"),
                    payment_id=payment.id,
                    order_id=payment.order_id,
                    entity_type=ref.entity_type.value,
                    entity_id=ref.entity_id,
                    user_id=payment.user_id,
                    amount=payment.amount,
                    currency=payment.currency,
                    reason=reason,
                    refunded_fee_count=1,
                )
            )

    async def get_payment(self, payment_id: UUID, user_id: UUID | None = None) -> Payment:
        """Load a payment, optionally restricted to its payer."""
        stmt = select(Payment).where(Payment.id == payment_id)
        if user_id is not None:
            stmt = stmt.where(Payment.user_id == user_id)
        payment = (
            await self.db.execute(stmt.execution_options(populate_existing=True))
        ).scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(f"Payment {payment_id} not found")
        return payment

    async def check_payment_status(
        self,
        payment_id: UUID,
        user_id: UUID | None = None,
        reconciler: WebhookReconciler | None = None,
    ) -> PaymentStatusView:
        """Return a payment's status, polling the gateway while it is open.

        A polled terminal status goes through the same reconciliation path
        as a webhook, so polling and webhooks can race safely.
        """
        payment = await self.get_payment(payment_id, user_id)
        reconciliation: ReconciliationResult | None = None

        if payment.status == PaymentStatus.INITIATED.value and payment.gateway_payment_id:
            try:
                polled = await self.gateway.check_payment_status(payment.gateway_payment_id)
            except GatewayError as e:
                logger.warning("Status poll for payment %s failed: %s", payment.id, e.message)
            else:
                if polled.success:
                    reconciler = reconciler or WebhookReconciler(self.db, emitter=self.emitter)
                    reconciliation = await reconciler.apply_gateway_status(
                        payment, polled.status, polled.transaction_id
                    )
                    payment = await self.get_payment(payment_id)

        return PaymentStatusView(
            payment_id=payment.id,
            order_id=payment.order_id,
            status=payment.status,
            amount=payment.amount,
            currency=payment.currency,
            gateway_transaction_id=payment.gateway_transaction_id,
            checkout_url=payment.checkout_url,
            error_message=payment.error_message,
            reconciliation=reconciliation,
        )

    async def list_payments(
        self, user_id: UUID, limit: int = 50, offset: int = 0
    ) -> list[Payment]:
        """Payer's payments, newest first."""
        rows = await self.db.execute(
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(rows.scalars().all())
