"""Webhook reconciliation - applies gateway payment outcomes exactly once.

Flow for one notification:
1. Find the payment by gateway payment id. Unknown ids are a no-op.
2. Map the gateway status onto completed / failed / pending.
3. Same status, or a transition the payment state machine forbids (any
   notification for a terminal payment): refresh the gateway transaction
   id and stop.
4. Otherwise commit the new payment status first, then in a second
   transaction update the paid-for entity, move the payment's pending fee
   records to collected (or refunded) with a conditional update, and
   credit payee earnings for exactly the rows that update changed.
5. Emit domain events after the second commit.

A crash between the two commits leaves a terminal payment with pending
fee records. Redelivery of the webhook finds that state and re-applies
step 4; the conditional fee update makes the credit happen once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_ledger.events import (
    AsyncEventEmitter,
    DomainEvent,
    EarningsCredited,
    EventMetadata,
    PaymentCompleted,
    PaymentFailed,
)
from marketplace_ledger.models import Payment, PlatformFeeRecord, utcnow
from marketplace_ledger.services.entity_routing import (
    EntityRef,
    PaymentOutcome,
    apply_entity_outcome,
)
from marketplace_ledger.services.ledger_service import LedgerService, TransactionType
from marketplace_ledger.services.state_machine import (
    FeeStatus,
    PaymentStateMachine,
    PaymentStatus,
)

logger = logging.getLogger(__name__)


# Gateway vocabulary -> internal payment status
STATUS_VOCABULARY: dict[str, str] = {
    "success": PaymentStatus.COMPLETED.value,
    "successful": PaymentStatus.COMPLETED.value,
    "completed": PaymentStatus.COMPLETED.value,
    "paid": PaymentStatus.COMPLETED.value,
    "failed": PaymentStatus.FAILED.value,
    "cancelled": PaymentStatus.FAILED.value,
    "canceled": PaymentStatus.FAILED.value,
    "rejected": PaymentStatus.FAILED.value,
    "pending": PaymentStatus.PENDING.value,
}


def map_gateway_status(raw_status: str | None) -> str | None:
    """Map a gateway status onto a payment status, or None if unrecognised."""
    if not raw_status:
        return None
    return STATUS_VOCABULARY.get(raw_status.strip().lower())


class ReconciliationOutcome(str, Enum):
    """What a notification did."""

    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconciliationResult:
    """Result of handling one gateway notification."""

    outcome: ReconciliationOutcome
    payment_id: UUID | None = None
    payment_status: str | None = None
    fee_records_updated: int = 0
    ledger_entries: int = 0
    recovered: bool = False


class WebhookReconciler:
    """Applies gateway payment notifications to payments, entities and the ledger.

    Owns its transaction boundaries: it commits the payment status before
    any downstream effect, as described in the module docstring.
    """

    def __init__(
        self,
        db: AsyncSession,
        ledger: LedgerService | None = None,
        emitter: AsyncEventEmitter | None = None,
    ):
        self.db = db
        self.ledger = ledger or LedgerService(db)
        self.emitter = emitter

    async def handle_gateway_notification(
        self,
        external_payment_id: str,
        external_order_id: str | None,
        external_status: str | None,
        external_transaction_id: str | None = None,
    ) -> ReconciliationResult:
        """Handle one webhook delivery. Safe to call any number of times."""
        payment = (
            await self.db.execute(
                select(Payment)
                .where(Payment.gateway_payment_id == external_payment_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

        if payment is None:
            logger.warning("Webhook for unknown gateway payment %s", external_payment_id)
            return ReconciliationResult(outcome=ReconciliationOutcome.NOT_FOUND)

        if external_order_id and external_order_id != payment.order_id:
            logger.warning(
                "Webhook order id %s does not match payment %s order %s",
                external_order_id,
                payment.id,
                payment.order_id,
            )

        return await self.apply_gateway_status(payment, external_status, external_transaction_id)

    async def apply_gateway_status(
        self,
        payment: Payment,
        external_status: str | None,
        external_transaction_id: str | None = None,
    ) -> ReconciliationResult:
        """Apply a gateway-reported status to a loaded payment."""
        new_status = map_gateway_status(external_status)

        if new_status is None:
            logger.warning(
                "Ignoring unrecognised gateway status %r for payment %s",
                external_status,
                payment.id,
            )
            await self._refresh_transaction_id(payment, external_transaction_id)
            return ReconciliationResult(
                outcome=ReconciliationOutcome.IGNORED,
                payment_id=payment.id,
                payment_status=payment.status,
            )

        if new_status == payment.status or not PaymentStateMachine.can_transition(
            payment.status, new_status
        ):
            await self._refresh_transaction_id(payment, external_transaction_id)
            if PaymentStateMachine.is_terminal(payment.status):
                recovered = await self._recover_terminal_effects(payment)
                if recovered is not None:
                    return recovered
            elif new_status == PaymentStatus.PENDING.value:
                return ReconciliationResult(
                    outcome=ReconciliationOutcome.PENDING,
                    payment_id=payment.id,
                    payment_status=payment.status,
                )
            logger.info(
                "Duplicate notification for payment %s (status %s, reported %s)",
                payment.id,
                payment.status,
                new_status,
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.DUPLICATE,
                payment_id=payment.id,
                payment_status=payment.status,
            )

        # Status first, durably, so a crash below is retryable
        payment.status = new_status
        if external_transaction_id:
            payment.gateway_transaction_id = external_transaction_id
        await self.db.commit()
        logger.info("Payment %s moved to %s", payment.id, new_status)

        return await self._apply_terminal_effects(payment)

    async def _refresh_transaction_id(self, payment: Payment, transaction_id: str | None) -> None:
        if transaction_id and transaction_id != payment.gateway_transaction_id:
            payment.gateway_transaction_id = transaction_id
            await self.db.commit()

    def _pending_fee_filter(self, payment: Payment) -> list:
        return [
            PlatformFeeRecord.transaction_id == payment.order_id,
            PlatformFeeRecord.status == FeeStatus.PENDING.value,
            # Rows written before fee records carried a payment id match on transaction id alone
            or_(
                PlatformFeeRecord.payment_id == payment.id,
                PlatformFeeRecord.payment_id.is_(None),
            ),
        ]

    async def _recover_terminal_effects(self, payment: Payment) -> ReconciliationResult | None:
        pending = await self.db.scalar(
            select(PlatformFeeRecord.id).where(*self._pending_fee_filter(payment)).limit(1)
        )
        if pending is None:
            return None
        logger.warning(
            "Payment %s is %s but still has pending fee records; re-applying effects",
            payment.id,
            payment.status,
        )
        result = await self._apply_terminal_effects(payment)
        return ReconciliationResult(
            outcome=result.outcome,
            payment_id=result.payment_id,
            payment_status=result.payment_status,
            fee_records_updated=result.fee_records_updated,
            ledger_entries=result.ledger_entries,
            recovered=True,
        )

    async def _apply_terminal_effects(self, payment: Payment) -> ReconciliationResult:
        if payment.status == PaymentStatus.COMPLETED.value:
            outcome = PaymentOutcome.COMPLETED
            target = FeeStatus.COLLECTED.value
        elif payment.status == PaymentStatus.FAILED.value:
            outcome = PaymentOutcome.FAILED
            target = FeeStatus.REFUNDED.value
        else:
            return ReconciliationResult(
                outcome=ReconciliationOutcome.DUPLICATE,
                payment_id=payment.id,
                payment_status=payment.status,
            )

        ref = EntityRef.from_columns(
            payment.entity_type,
            payment.entity_id,
            payment.entity_secondary_id,
            payment.order_id,
        )
        payment_id, payment_status = payment.id, payment.status
        events: list[DomainEvent] = []
        ledger_entries = 0
        try:
            await apply_entity_outcome(self.db, ref, outcome)

            values: dict = {"status": target, "updated_at": utcnow()}
            if target == FeeStatus.COLLECTED.value:
                values["collected_at"] = utcnow()
            changed = (
                await self.db.execute(
                    update(PlatformFeeRecord)
                    .where(*self._pending_fee_filter(payment))
                    .values(**values)
                    .returning(
                        PlatformFeeRecord.id,
                        PlatformFeeRecord.payee_id,
                        PlatformFeeRecord.creator_payout,
                        PlatformFeeRecord.currency,
                        PlatformFeeRecord.transaction_id,
                        PlatformFeeRecord.transaction_type,
                    )
                    .execution_options(synchronize_session=False)
                )
            ).all()

            if outcome is PaymentOutcome.COMPLETED:
                for fee_id, payee_id, creator_payout, currency, txn_id, txn_type in changed:
                    if payee_id is None or creator_payout <= 0:
                        continue
                    record = await self.ledger.record_transaction(
                        user_id=payee_id,
                        transaction_type=TransactionType.EARNINGS,
                        amount=Decimal(creator_payout),
                        reference_id=txn_id,
                        reference_type=txn_type,
                        description=f"Earnings from {txn_type}",
                        metadata={"payment_id": str(payment.id), "fee_record_id": str(fee_id)},
                        currency=currency,
                    )
                    ledger_entries += 1
                    events.append(
                        EarningsCredited(
                            metadata=self._metadata(payment),
                            payment_id=payment.id,
                            fee_record_id=fee_id,
                            payee_id=payee_id,
                            amount=Decimal(creator_payout),
                            currency=currency,
                            ledger_transaction_id=record.transaction_id,
                            transaction_type=txn_type,
                        )
                    )

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception(
                "Applying %s effects for payment %s failed; will retry on redelivery",
                payment_status,
                payment_id,
            )
            raise

        if not changed:
            logger.info(
                "Effects for payment %s were already applied by another delivery", payment_id
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.DUPLICATE,
                payment_id=payment_id,
                payment_status=payment_status,
            )

        if outcome is PaymentOutcome.COMPLETED:
            events.insert(
                0,
                PaymentCompleted(
                    metadata=self._metadata(payment),
                    payment_id=payment.id,
                    order_id=payment.order_id,
                    entity_type=ref.entity_type.value,
                    entity_id=ref.entity_id,
                    user_id=payment.user_id,
                    amount=payment.amount,
                    currency=payment.currency,
                    collected_fee_count=len(changed),
                ),
            )
        else:
            events.append(
                PaymentFailed(
                    metadata=self._metadata(payment),
                    payment_id=payment.id,
                    order_id=payment.order_id,
                    entity_type=ref.entity_type.value,
                    entity_id=ref.entity_id,
                    user_id=payment.user_id,
                    amount=payment.amount,
                    currency=payment.currency,
                    reason=payment.error_message,
                    refunded_fee_count=len(changed),
                )
            )
        if self.emitter is not None:
            await self.emitter.emit_all(events)

        logger.info(
            "Payment %s %s: %d fee record(s) updated, %d ledger entr(ies)",
            payment.id,
            payment.status,
            len(changed),
            ledger_entries,
        )
        return ReconciliationResult(
            outcome=(
                ReconciliationOutcome.COMPLETED
                if outcome is PaymentOutcome.COMPLETED
                else ReconciliationOutcome.FAILED
            ),
            payment_id=payment.id,
            payment_status=payment.status,
            fee_records_updated=len(changed),
            ledger_entries=ledger_entries,
        )

    @staticmethod
    def _metadata(payment: Payment) -> EventMetadata:
        return EventMetadata.create(correlation_id=payment.id, actor_type="webhook")
