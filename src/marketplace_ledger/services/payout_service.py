"""Creator payouts: reservation, processing, disbursement and cancellation.

Lifecycle:
    request   -> Payout pending, fee records reserved
    process   -> Payout processing, fee records processing
    complete  -> disbursement sent, ledger debited, Payout paid, fee records paid
    cancel    -> Payout cancelled, fee records released back to pending; after a
                 disbursement attempt only once the gateway confirms nothing was sent

Fee records move between payouts only through conditional updates on
``payout_status``; a request that loses a race to another request gets
ConcurrentPayoutError and changes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_ledger.config import Settings
from marketplace_ledger.events import (
    AsyncEventEmitter,
    DomainEvent,
    EventMetadata,
    PayoutCancelled,
    PayoutFailed,
    PayoutPaid,
    PayoutProcessing,
    PayoutRequested,
)
from marketplace_ledger.exceptions import (
    ConcurrentPayoutError,
    DisbursementUnresolvedError,
    GatewayError,
    GatewayTimeoutError,
    InsufficientBalanceError,
    InsufficientFundsError,
    PayoutMethodNotFoundError,
    PayoutNotFoundError,
    ValidationError,
)
from marketplace_ledger.models import (
    Payout,
    PayoutMethod,
    PlatformFeeRecord,
    UserBalance,
    utcnow,
)
from marketplace_ledger.providers import PaymentGateway
from marketplace_ledger.services.ledger_service import LedgerService, TransactionType
from marketplace_ledger.services.state_machine import (
    FeePayoutStatus,
    FeeStatus,
    PayoutStateMachine,
    PayoutStatus,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
_AMOUNT_QUANTUM = Decimal("0.0001")

BANK_TRANSFER_REFERENCE = "BANK_TRANSFER_PENDING"

METHOD_TYPES = ("mobile_money", "bank_transfer")

# Gateway disbursement statuses under which no money left
NOT_DISBURSED = frozenset({"not_found", "failed", "rejected", "cancelled", "canceled"})


def _dec(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(_AMOUNT_QUANTUM)


@dataclass(frozen=True)
class EarningsSummary:
    """Creator earnings grouped by where the money currently is."""

    creator_id: UUID
    currency: str
    total_earnings: Decimal  # collected, whatever the payout state
    available_earnings: Decimal  # collected and not bound to a payout
    in_payout: Decimal  # reserved or processing
    paid_out: Decimal
    awaiting_collection: Decimal  # payment not yet confirmed
    payouts: list[Payout] = field(default_factory=list)


class PayoutService:
    """Moves collected earnings out to creators.

    The ledger is debited only when money actually leaves: on successful
    disbursement, or when a bank transfer is handed to the manual rail.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        ledger: LedgerService | None = None,
        emitter: AsyncEventEmitter | None = None,
        settings: Settings | None = None,
        minimum_payout: Decimal | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.ledger = ledger or LedgerService(
            db, default_currency=settings.default_currency if settings else "TZS"
        )
        self.emitter = emitter
        self.settings = settings
        if minimum_payout is None:
            minimum_payout = settings.minimum_payout if settings else ZERO
        self.minimum_payout = minimum_payout

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def request_payout(
        self,
        creator_id: UUID,
        payout_method_id: UUID,
        amount: Decimal | None = None,
        currency: str | None = None,
        notes: str | None = None,
    ) -> Payout:
        """Reserve collected earnings for a new payout.

        Args:
            creator_id: Creator asking to be paid
            payout_method_id: One of the creator's payout methods
            amount: Upper bound for the payout; all available earnings when omitted
            currency: Which earnings to pay out when a creator holds several
            notes: Free text kept on the payout

        Returns:
            The pending Payout; its amount is the sum of the reserved records,
            which may be less than ``amount``.

        Raises:
            PayoutMethodNotFoundError: Method missing or owned by someone else
            InsufficientFundsError: ``amount`` exceeds available earnings
            ValidationError: Payout would fall below the configured minimum
            ConcurrentPayoutError: Another request reserved the same records
        """
        method = await self._get_payout_method(creator_id, payout_method_id)

        if amount is not None and amount <= 0:
            raise ValidationError("Payout amount must be positive")

        stmt = (
            select(PlatformFeeRecord)
            .where(
                PlatformFeeRecord.payee_id == creator_id,
                PlatformFeeRecord.status == FeeStatus.COLLECTED.value,
                PlatformFeeRecord.payout_status == FeePayoutStatus.PENDING.value,
                PlatformFeeRecord.creator_payout > 0,
            )
            .order_by(PlatformFeeRecord.collected_at, PlatformFeeRecord.created_at)
            .execution_options(populate_existing=True)
        )
        if currency:
            stmt = stmt.where(PlatformFeeRecord.currency == currency.upper())
        records = list((await self.db.execute(stmt)).scalars().all())

        if records:
            payout_currency = records[0].currency
            records = [r for r in records if r.currency == payout_currency]
        else:
            payout_currency = (currency or self.ledger.default_currency).upper()

        available = sum((r.creator_payout for r in records), ZERO)
        requested = available if amount is None else amount
        if requested > available or available <= 0:
            raise InsufficientFundsError(requested, available)
        if requested < self.minimum_payout:
            raise ValidationError(
                f"Minimum payout is {self.minimum_payout} {payout_currency}"
            )

        selected: list[PlatformFeeRecord] = []
        total = ZERO
        for record in records:
            if total + record.creator_payout <= requested:
                selected.append(record)
                total += record.creator_payout

        if not selected or total < self.minimum_payout:
            raise ValidationError(
                f"No combination of earnings of at least {self.minimum_payout} "
                f"fits within {requested} {payout_currency}"
            )

        payout_id = uuid4()
        fee_ids = [record.id for record in selected]
        reserved = await self.db.execute(
            update(PlatformFeeRecord)
            .where(
                PlatformFeeRecord.id.in_(fee_ids),
                PlatformFeeRecord.status == FeeStatus.COLLECTED.value,
                PlatformFeeRecord.payout_status == FeePayoutStatus.PENDING.value,
            )
            .values(
                payout_status=FeePayoutStatus.RESERVED.value,
                payout_id=payout_id,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if reserved.rowcount != len(fee_ids):
            await self.db.rollback()
            logger.warning(
                "Payout request for %s lost a reservation race (%d of %d records)",
                creator_id,
                reserved.rowcount,
                len(fee_ids),
            )
            raise ConcurrentPayoutError("Earnings were reserved by another payout request")

        payout = Payout(
            id=payout_id,
            creator_id=creator_id,
            amount=total,
            currency=payout_currency,
            status=PayoutStatus.PENDING.value,
            payout_method_id=method.id,
            payment_method=method.method_type,
            payment_reference=method.snapshot(),
            fee_ids=[str(fee_id) for fee_id in fee_ids],
            notes=notes,
        )
        self.db.add(payout)
        await self.db.commit()

        logger.info(
            "Payout %s requested by %s: %s %s from %d fee record(s)",
            payout.id,
            creator_id,
            total,
            payout_currency,
            len(fee_ids),
        )
        await self._emit(
            PayoutRequested(
                metadata=self._metadata(payout, "user"),
                payout_id=payout.id,
                creator_id=creator_id,
                amount=total,
                currency=payout_currency,
                fee_count=len(fee_ids),
            )
        )
        return payout

    async def process_payout(self, payout_id: UUID, notes: str | None = None) -> Payout:
        """Operator approval: pending -> processing."""
        payout = await self.get_payout(payout_id)
        PayoutStateMachine.validate_transition(payout.status, PayoutStatus.PROCESSING)

        await self._transition(
            payout,
            PayoutStatus.PENDING,
            PayoutStatus.PROCESSING,
            notes=notes if notes is not None else payout.notes,
        )
        await self._move_fee_records(
            payout.id, FeePayoutStatus.RESERVED, FeePayoutStatus.PROCESSING
        )
        await self.db.commit()

        logger.info("Payout %s is processing", payout.id)
        await self._emit(
            PayoutProcessing(
                metadata=self._metadata(payout, "operator"),
                payout_id=payout.id,
                creator_id=payout.creator_id,
                amount=payout.amount,
                currency=payout.currency,
            )
        )
        return payout

    async def complete_payout(self, payout_id: UUID, notes: str | None = None) -> Payout:
        """Send the money and debit the creator's ledger.

        Raises:
            InvalidTransitionError: Payout is not processing
            ConcurrentPayoutError: Another completion holds the disbursement claim
            InsufficientBalanceError: Ledger cannot cover the payout
            GatewayError: Disbursement rejected (payout failed, records released)
            GatewayTimeoutError: Gateway did not answer (payout stays processing)
        """
        payout = await self.get_payout(payout_id)
        PayoutStateMachine.validate_transition(payout.status, PayoutStatus.PAID)

        balance = await self.ledger.get_balance(payout.creator_id, payout.currency)
        if balance.available_balance < payout.amount:
            raise InsufficientBalanceError(
                payout.creator_id, balance.available_balance, payout.amount
            )

        claim: dict[str, Any] = {"disbursement_claimed_at": utcnow()}
        if payout.payment_method == "mobile_money":
            claim["disbursement_attempted_at"] = payout.disbursement_attempted_at or utcnow()
        claimed = await self.db.execute(
            update(Payout)
            .where(
                Payout.id == payout.id,
                Payout.status == PayoutStatus.PROCESSING.value,
                Payout.disbursement_claimed_at.is_(None),
            )
            .values(**claim)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await self.db.rollback()
            raise ConcurrentPayoutError(f"Payout {payout_id} is already being completed")
        await self.db.commit()

        destination = dict(payout.payment_reference or {})
        disbursement_id: str | None = None
        if payout.payment_method == "mobile_money":
            try:
                result = await self.gateway.create_disbursement(
                    amount=payout.amount,
                    currency=payout.currency,
                    recipient_phone=destination.get("mobile_number") or "",
                    recipient_name=destination.get("account_name"),
                    description=f"Payout {payout.id}",
                    reference=str(payout.id),
                )
            except GatewayTimeoutError:
                # Outcome unknown: retry with the same reference, or cancel once
                # the gateway confirms nothing was sent
                await self._release_claim(payout.id)
                logger.warning(
                    "Disbursement for payout %s timed out; claim released", payout.id
                )
                raise
            except GatewayError as e:
                await self._fail(payout, e.message)
                raise

            if not result.success:
                reason = result.error or "Disbursement rejected by gateway"
                await self._fail(payout, reason)
                raise GatewayError(reason)

            disbursement_id = result.disbursement_id
            reference = result.transaction_id or result.disbursement_id or str(payout.id)
        else:
            reference = BANK_TRANSFER_REFERENCE

        record = await self.ledger.record_transaction(
            user_id=payout.creator_id,
            transaction_type=TransactionType.PAYOUT,
            amount=payout.amount,
            reference_id=str(payout.id),
            reference_type="payout",
            description=f"Payout via {payout.payment_method}",
            metadata={"disbursement_id": disbursement_id, "reference": reference},
            currency=payout.currency,
        )
        await self._move_fee_records(
            payout.id,
            FeePayoutStatus.PROCESSING,
            FeePayoutStatus.PAID,
            payout_date=utcnow(),
        )

        destination["reference"] = reference
        payout.status = PayoutStatus.PAID.value
        payout.disbursement_id = disbursement_id
        payout.payment_reference = destination
        payout.transaction_id = record.transaction_id
        payout.balance_before = record.balance_before
        payout.balance_after = record.balance_after
        payout.processed_at = utcnow()
        if notes is not None:
            payout.notes = notes
        await self.db.commit()

        logger.info(
            "Payout %s paid: %s %s (reference %s)",
            payout.id,
            payout.amount,
            payout.currency,
            reference,
        )
        await self._emit(
            PayoutPaid(
                metadata=self._metadata(payout, "operator"),
                payout_id=payout.id,
                creator_id=payout.creator_id,
                amount=payout.amount,
                currency=payout.currency,
                payment_reference=reference,
                ledger_transaction_id=record.transaction_id,
            )
        )
        return payout

    async def cancel_payout(
        self,
        payout_id: UUID,
        notes: str | None = None,
        creator_id: UUID | None = None,
    ) -> Payout:
        """Cancel a pending or processing payout and release its fee records.

        Creators (``creator_id`` given) may only cancel their own pending
        payouts; operators may also cancel processing ones.
        A processing payout whose disbursement was already sent to the gateway
        is cancelled only when the gateway reports that no money left.

        Raises:
            DisbursementUnresolvedError: The gateway reports the disbursement
                sent, or cannot be asked
        """
        payout = await self.get_payout(payout_id, creator_id)
        PayoutStateMachine.validate_transition(payout.status, PayoutStatus.CANCELLED)
        if creator_id is not None and payout.status != PayoutStatus.PENDING.value:
            raise ValidationError("Only pending payouts can be cancelled by the creator")
        if payout.disbursement_claimed_at is not None:
            raise ConcurrentPayoutError(f"Payout {payout.id} has a disbursement in flight")
        if payout.disbursement_attempted_at is not None:
            await self._confirm_not_disbursed(payout)

        from_status = PayoutStatus(payout.status)
        await self._transition(
            payout,
            from_status,
            PayoutStatus.CANCELLED,
            Payout.disbursement_claimed_at.is_(None),
            notes=notes if notes is not None else payout.notes,
            processed_at=utcnow(),
        )
        released = await self._release_fee_records(payout.id)
        await self.db.commit()

        logger.info("Payout %s cancelled, %d fee record(s) released", payout.id, released)
        await self._emit(
            PayoutCancelled(
                metadata=self._metadata(payout, "user" if creator_id else "operator"),
                payout_id=payout.id,
                creator_id=payout.creator_id,
                amount=payout.amount,
                currency=payout.currency,
                reason=notes,
            )
        )
        return payout

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_payout(self, payout_id: UUID, creator_id: UUID | None = None) -> Payout:
        stmt = select(Payout).where(Payout.id == payout_id)
        if creator_id is not None:
            stmt = stmt.where(Payout.creator_id == creator_id)
        payout = (
            await self.db.execute(stmt.execution_options(populate_existing=True))
        ).scalar_one_or_none()
        if payout is None:
            raise PayoutNotFoundError(f"Payout {payout_id} not found")
        return payout

    async def list_payouts(
        self,
        creator_id: UUID | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Payout]:
        """Payouts newest first, optionally for one creator or status."""
        stmt = select(Payout).order_by(Payout.created_at.desc()).limit(limit).offset(offset)
        if creator_id is not None:
            stmt = stmt.where(Payout.creator_id == creator_id)
        if status is not None:
            stmt = stmt.where(Payout.status == PayoutStatus(status).value)
        return list((await self.db.execute(stmt)).scalars().all())

    async def get_earnings_summary(
        self, creator_id: UUID, currency: str | None = None
    ) -> EarningsSummary:
        """Totals for one currency; the creator's ledger currency when omitted."""
        currency = currency.upper() if currency else await self._earnings_currency(creator_id)
        rows = await self.db.execute(
            select(
                PlatformFeeRecord.status,
                PlatformFeeRecord.payout_status,
                func.sum(PlatformFeeRecord.creator_payout),
            )
            .where(
                PlatformFeeRecord.payee_id == creator_id,
                PlatformFeeRecord.currency == currency,
            )
            .group_by(PlatformFeeRecord.status, PlatformFeeRecord.payout_status)
        )

        total = available = in_payout = paid = awaiting = ZERO
        for status, payout_status, amount in rows:
            amount = _dec(amount)
            if status == FeeStatus.PENDING.value:
                awaiting += amount
            elif status == FeeStatus.COLLECTED.value:
                total += amount
                if payout_status == FeePayoutStatus.PENDING.value:
                    available += amount
                elif payout_status == FeePayoutStatus.PAID.value:
                    paid += amount
                else:
                    in_payout += amount

        return EarningsSummary(
            creator_id=creator_id,
            currency=currency,
            total_earnings=total,
            available_earnings=available,
            in_payout=in_payout,
            paid_out=paid,
            awaiting_collection=awaiting,
            payouts=await self.list_payouts(creator_id, limit=10),
        )

    async def _earnings_currency(self, creator_id: UUID) -> str:
        held = await self.db.scalar(
            select(UserBalance.currency).where(
                UserBalance.user_id == creator_id, UserBalance.last_sequence > 0
            )
        )
        if held is None:
            held = await self.db.scalar(
                select(PlatformFeeRecord.currency)
                .where(PlatformFeeRecord.payee_id == creator_id)
                .order_by(PlatformFeeRecord.created_at.desc())
                .limit(1)
            )
        return held or self.ledger.default_currency.upper()

    # =========================================================================
    # Payout methods
    # =========================================================================

    async def add_payout_method(
        self,
        user_id: UUID,
        method_type: str,
        *,
        mobile_operator: str | None = None,
        mobile_number: str | None = None,
        bank_name: str | None = None,
        account_name: str | None = None,
        account_number: str | None = None,
        is_default: bool = False,
    ) -> PayoutMethod:
        if method_type not in METHOD_TYPES:
            raise ValidationError(f"Unsupported payout method type: {method_type}")
        if method_type == "mobile_money" and not mobile_number:
            raise ValidationError("Mobile money payout methods require a mobile number")
        if method_type == "bank_transfer" and not (bank_name and account_number):
            raise ValidationError("Bank payout methods require a bank name and account number")

        existing = await self.list_payout_methods(user_id)
        make_default = is_default or not existing
        if make_default:
            await self._clear_default(user_id)

        method = PayoutMethod(
            user_id=user_id,
            method_type=method_type,
            mobile_operator=mobile_operator,
            mobile_number=mobile_number,
            bank_name=bank_name,
            account_name=account_name,
            account_number=account_number,
            is_default=make_default,
        )
        self.db.add(method)
        await self.db.commit()
        return method

    async def list_payout_methods(self, user_id: UUID) -> list[PayoutMethod]:
        rows = await self.db.execute(
            select(PayoutMethod)
            .where(PayoutMethod.user_id == user_id)
            .order_by(PayoutMethod.is_default.desc(), PayoutMethod.created_at)
            .execution_options(populate_existing=True)
        )
        return list(rows.scalars().all())

    async def set_default_payout_method(self, user_id: UUID, method_id: UUID) -> PayoutMethod:
        method = await self._get_payout_method(user_id, method_id)
        await self._clear_default(user_id)
        method.is_default = True
        await self.db.commit()
        return method

    async def delete_payout_method(self, user_id: UUID, method_id: UUID) -> None:
        method = await self._get_payout_method(user_id, method_id)
        in_use = await self.db.scalar(
            select(Payout.id)
            .where(
                Payout.payout_method_id == method.id,
                Payout.status.in_(list(PayoutStateMachine.HOLDS_FEE_RECORDS)),
            )
            .limit(1)
        )
        if in_use is not None:
            raise ValidationError("Payout method is used by an open payout")

        was_default = method.is_default
        await self.db.delete(method)
        await self.db.flush()
        if was_default:
            remaining = await self.list_payout_methods(user_id)
            if remaining:
                remaining[0].is_default = True
        await self.db.commit()

    # =========================================================================
    # Internals
    # =========================================================================

    async def _get_payout_method(self, user_id: UUID, method_id: UUID) -> PayoutMethod:
        method = (
            await self.db.execute(
                select(PayoutMethod).where(
                    PayoutMethod.id == method_id,
                    PayoutMethod.user_id == user_id,
                )
            )
        ).scalar_one_or_none()
        if method is None:
            raise PayoutMethodNotFoundError(f"Payout method {method_id} not found")
        return method

    async def _clear_default(self, user_id: UUID) -> None:
        await self.db.execute(
            update(PayoutMethod)
            .where(PayoutMethod.user_id == user_id, PayoutMethod.is_default.is_(True))
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        )

    async def _transition(
        self,
        payout: Payout,
        from_status: PayoutStatus,
        to_status: PayoutStatus,
        *conditions: Any,
        **values: Any,
    ) -> None:
        payout_id = payout.id
        result = await self.db.execute(
            update(Payout)
            .where(Payout.id == payout_id, Payout.status == from_status.value, *conditions)
            .values(status=to_status.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConcurrentPayoutError(
                f"Payout {payout_id} changed while moving to {to_status.value}"
            )
        payout.status = to_status.value
        for key, value in values.items():
            setattr(payout, key, value)

    async def _move_fee_records(
        self,
        payout_id: UUID,
        from_status: FeePayoutStatus,
        to_status: FeePayoutStatus,
        **values: Any,
    ) -> int:
        result = await self.db.execute(
            update(PlatformFeeRecord)
            .where(
                PlatformFeeRecord.payout_id == payout_id,
                PlatformFeeRecord.payout_status == from_status.value,
            )
            .values(payout_status=to_status.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _release_fee_records(self, payout_id: UUID) -> int:
        result = await self.db.execute(
            update(PlatformFeeRecord)
            .where(
                PlatformFeeRecord.payout_id == payout_id,
                PlatformFeeRecord.payout_status.in_(
                    [FeePayoutStatus.RESERVED.value, FeePayoutStatus.PROCESSING.value]
                ),
            )
            .values(
                payout_status=FeePayoutStatus.PENDING.value,
                payout_id=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _release_claim(self, payout_id: UUID) -> None:
        await self.db.execute(
            update(Payout)
            .where(Payout.id == payout_id)
            .values(disbursement_claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def _confirm_not_disbursed(self, payout: Payout) -> None:
        try:
            status = await self.gateway.check_disbursement_status(str(payout.id))
        except GatewayError as e:
            raise DisbursementUnresolvedError(
                f"Cannot confirm disbursement state of payout {payout.id}: {e.message}"
            ) from e
        if not status.success:
            raise DisbursementUnresolvedError(
                f"Cannot confirm disbursement state of payout {payout.id}: {status.error}"
            )
        if (status.status or "").strip().lower() not in NOT_DISBURSED:
            logger.warning(
                "Refusing to cancel payout %s: gateway reports disbursement %s",
                payout.id,
                status.status,
            )
            raise DisbursementUnresolvedError(
                f"Gateway reports the disbursement for payout {payout.id} as "
                f"{status.status}; complete the payout instead"
            )

    async def _fail(self, payout: Payout, reason: str) -> None:
        payout_id = payout.id
        payout.status = PayoutStatus.FAILED.value
        payout.error_message = reason
        payout.processed_at = utcnow()
        released = await self._release_fee_records(payout_id)
        await self.db.commit()

        logger.warning(
            "Payout %s failed: %s (%d fee record(s) released)", payout_id, reason, released
        )
        await self._emit(
            PayoutFailed(
                metadata=self._metadata(payout, "operator"),
                payout_id=payout_id,
                creator_id=payout.creator_id,
                amount=payout.amount,
                currency=payout.currency,
                reason=reason,
            )
        )

    async def _emit(self, event: DomainEvent) -> None:
        if self.emitter is not None:
            await self.emitter.emit(event)

    @staticmethod
    def _metadata(payout: Payout, actor_type: str) -> EventMetadata:
        return EventMetadata.create(correlation_id=payout.id, actor_type=actor_type)
