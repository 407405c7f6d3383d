"""Ledger Service - per-user balances over an append-only transaction log.

Provides transactional balance mutation with:
- One locked read-modify-write per user (SELECT ... FOR UPDATE)
- An append-only FinancialTransaction row for every balance change
- Check-then-act: a write that would go negative is rejected before anything is written
- Replay of the log to verify the materialized balance
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_ledger.exceptions import InsufficientBalanceError, ValidationError
from marketplace_ledger.models import FinancialTransaction, UserBalance

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class TransactionType(str, Enum):
    """Ledger entry types."""

    EARNINGS = "earnings"
    PAYOUT = "payout"
    REFUND = "refund"


@dataclass(frozen=True)
class TransactionRecord:
    """Result of recording a ledger transaction."""

    transaction_id: UUID
    sequence: int
    balance_before: Decimal
    balance_after: Decimal


@dataclass(frozen=True)
class TransactionPage:
    """One page of transaction history."""

    items: list[FinancialTransaction]
    total: int
    limit: int
    offset: int


@dataclass(frozen=True)
class FinancialSummary:
    """Aggregates over a user's ledger for a period."""

    user_id: UUID
    currency: str
    earnings_count: int
    earnings_total: Decimal
    payouts_count: int
    payouts_total: Decimal
    refunds_count: int
    refunds_total: Decimal
    earnings_by_type: dict[str, Decimal] = field(default_factory=dict)

    @property
    def net(self) -> Decimal:
        return self.earnings_total - self.payouts_total - self.refunds_total


@dataclass(frozen=True)
class ReplayResult:
    """Balance reconstructed by folding the transaction log from zero."""

    user_id: UUID
    transaction_count: int
    available_balance: Decimal
    total_earned: Decimal
    total_paid_out: Decimal
    chain_errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BalanceVerification:
    """Comparison of a replayed balance against the stored one."""

    replay: ReplayResult
    stored_available: Decimal
    stored_total_earned: Decimal
    stored_total_paid_out: Decimal

    @property
    def is_consistent(self) -> bool:
        return (
            not self.replay.chain_errors
            and self.replay.available_balance == self.stored_available
            and self.replay.total_earned == self.stored_total_earned
            and self.replay.total_paid_out == self.stored_total_paid_out
        )


def apply_entry(
    transaction_type: str,
    amount: Decimal,
    available: Decimal,
    total_earned: Decimal,
    total_paid_out: Decimal,
) -> tuple[Decimal, Decimal, Decimal]:
    """Return (available, total_earned, total_paid_out) after one entry."""
    if transaction_type == TransactionType.EARNINGS.value:
        return available + amount, total_earned + amount, total_paid_out
    if transaction_type == TransactionType.PAYOUT.value:
        return available - amount, total_earned, total_paid_out + amount
    if transaction_type == TransactionType.REFUND.value:
        return available - amount, total_earned - amount, total_paid_out
    raise ValueError(f"Unknown transaction type: {transaction_type}")


class LedgerService:
    """Sole writer of UserBalance.

    Notes:
    - financial_transaction is append-only; rows are never updated.
    - (user_id, sequence) is unique, so two writers that somehow both read
      the same balance cannot both commit.
    - All amounts must be positive; the type decides the direction.
    - Methods flush but never commit; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession, default_currency: str = "TZS"):
        self.db = db
        self.default_currency = default_currency

    def _balance_query(self, user_id: UUID, lock: bool):
        stmt = (
            select(UserBalance)
            .where(UserBalance.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        return stmt

    async def _get_or_create_balance(
        self, user_id: UUID, currency: str | None, lock: bool
    ) -> UserBalance:
        stmt = self._balance_query(user_id, lock)
        balance = (await self.db.execute(stmt)).scalar_one_or_none()
        if balance is not None:
            return balance

        try:
            async with self.db.begin_nested():
                self.db.add(
                    UserBalance(
                        user_id=user_id,
                        available_balance=ZERO,
                        pending_balance=ZERO,
                        total_earned=ZERO,
                        total_paid_out=ZERO,
                        currency=(currency or self.default_currency).upper(),
                        last_sequence=0,
                    )
                )
        except IntegrityError:
            # Another transaction created the row first
            logger.debug("Balance row for %s created concurrently", user_id)

        return (await self.db.execute(stmt)).scalar_one()

    async def get_balance(self, user_id: UUID, currency: str | None = None) -> UserBalance:
        """Return the user's balance, creating a zeroed row on first use."""
        return await self._get_or_create_balance(user_id, currency, lock=False)

    async def record_transaction(
        self,
        *,
        user_id: UUID,
        transaction_type: TransactionType | str,
        amount: Decimal,
        reference_id: str,
        reference_type: str,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        currency: str | None = None,
    ) -> TransactionRecord:
        """Append a ledger entry and update the balance atomically.

        Args:
            user_id: Owner of the balance
            transaction_type: earnings, payout or refund
            amount: Positive amount
            reference_id: Id of the source record (fee transaction, payout)
            reference_type: Kind of source record
            description: Optional human-readable description
            metadata: Optional JSON metadata
            currency: Currency of the amount; must match the balance

        Returns:
            TransactionRecord with the new entry id and balances

        Raises:
            ValueError: If amount is not positive
            InsufficientBalanceError: If a payout or refund would make the
                available balance negative
        """
        if amount <= 0:
            raise ValueError("Amount must be positive")
        transaction_type = TransactionType(transaction_type)

        balance = await self._get_or_create_balance(user_id, currency, lock=True)
        if currency and balance.last_sequence == 0:
            # An untouched balance takes the currency of its first entry
            balance.currency = currency.upper()
        elif currency and currency.upper() != balance.currency:
            raise ValidationError(
                f"Balance for {user_id} is kept in {balance.currency}, not {currency.upper()}"
            )

        before = balance.available_balance
        after, total_earned, total_paid_out = apply_entry(
            transaction_type.value,
            amount,
            before,
            balance.total_earned,
            balance.total_paid_out,
        )
        if after < 0:
            raise InsufficientBalanceError(user_id, before, amount)

        sequence = balance.last_sequence + 1
        entry = FinancialTransaction(
            user_id=user_id,
            sequence=sequence,
            transaction_type=transaction_type.value,
            amount=amount,
            currency=balance.currency,
            balance_before=before,
            balance_after=after,
            reference_id=str(reference_id),
            reference_type=reference_type,
            description=description,
            metadata_json=metadata or {},
        )
        self.db.add(entry)

        balance.available_balance = after
        balance.total_earned = total_earned
        balance.total_paid_out = total_paid_out
        balance.last_sequence = sequence
        await self.db.flush()

        logger.info(
            "Recorded %s of %s %s for user %s (balance %s -> %s)",
            transaction_type.value,
            amount,
            balance.currency,
            user_id,
            before,
            after,
        )
        return TransactionRecord(
            transaction_id=entry.id,
            sequence=sequence,
            balance_before=before,
            balance_after=after,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_transaction_history(
        self,
        user_id: UUID,
        *,
        limit: int = 50,
        offset: int = 0,
        transaction_type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> TransactionPage:
        """Newest-first page of the user's ledger entries."""
        query = select(FinancialTransaction).where(FinancialTransaction.user_id == user_id)
        if transaction_type:
            query = query.where(FinancialTransaction.transaction_type == transaction_type)
        if start:
            query = query.where(FinancialTransaction.created_at >= start)
        if end:
            query = query.where(FinancialTransaction.created_at <= end)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        query = query.order_by(FinancialTransaction.sequence.desc()).offset(offset).limit(limit)
        items = list((await self.db.execute(query)).scalars().all())
        return TransactionPage(items=items, total=total, limit=limit, offset=offset)

    async def get_financial_summary(
        self,
        user_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> FinancialSummary:
        """Counts and totals per entry type, with earnings broken down by source."""
        conditions = [FinancialTransaction.user_id == user_id]
        if start:
            conditions.append(FinancialTransaction.created_at >= start)
        if end:
            conditions.append(FinancialTransaction.created_at <= end)

        rows = await self.db.execute(
            select(
                FinancialTransaction.transaction_type,
                FinancialTransaction.reference_type,
                func.count(),
                func.sum(FinancialTransaction.amount),
            )
            .where(*conditions)
            .group_by(
                FinancialTransaction.transaction_type,
                FinancialTransaction.reference_type,
            )
        )

        counts = {t.value: 0 for t in TransactionType}
        totals = {t.value: ZERO for t in TransactionType}
        earnings_by_type: dict[str, Decimal] = {}
        for txn_type, reference_type, count, total in rows:
            amount = Decimal(str(total or 0))
            counts[txn_type] += count
            totals[txn_type] += amount
            if txn_type == TransactionType.EARNINGS.value:
                earnings_by_type[reference_type] = earnings_by_type.get(reference_type, ZERO) + amount

        balance = await self.get_balance(user_id)
        return FinancialSummary(
            user_id=user_id,
            currency=balance.currency,
            earnings_count=counts["earnings"],
            earnings_total=totals["earnings"],
            payouts_count=counts["payout"],
            payouts_total=totals["payout"],
            refunds_count=counts["refund"],
            refunds_total=totals["refund"],
            earnings_by_type=earnings_by_type,
        )

    async def export_transactions_csv(
        self,
        user_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> str:
        """Export the user's ledger entries, oldest first, as CSV."""
        query = select(FinancialTransaction).where(FinancialTransaction.user_id == user_id)
        if start:
            query = query.where(FinancialTransaction.created_at >= start)
        if end:
            query = query.where(FinancialTransaction.created_at <= end)
        entries = (await self.db.execute(query.order_by(FinancialTransaction.sequence))).scalars()

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(
            [
                "date",
                "type",
                "amount",
                "currency",
                "balance_before",
                "balance_after",
                "reference_type",
                "reference_id",
                "description",
            ]
        )
        for entry in entries:
            writer.writerow(
                [
                    entry.created_at.isoformat(),
                    entry.transaction_type,
                    entry.amount,
                    entry.currency,
                    entry.balance_before,
                    entry.balance_after,
                    entry.reference_type,
                    entry.reference_id,
                    entry.description or "",
                ]
            )
        return buffer.getvalue()

    # =========================================================================
    # Verification
    # =========================================================================

    async def replay_balance(self, user_id: UUID) -> ReplayResult:
        """Fold the user's transaction log, in sequence order, from zero.

        Also checks that each entry's ``balance_before`` equals the previous
        entry's ``balance_after`` and that sequence numbers have no gaps.
        """
        entries = (
            await self.db.execute(
                select(FinancialTransaction)
                .where(FinancialTransaction.user_id == user_id)
                .order_by(FinancialTransaction.sequence)
            )
        ).scalars().all()

        available = total_earned = total_paid_out = ZERO
        errors: list[str] = []
        for expected_sequence, entry in enumerate(entries, start=1):
            if entry.sequence != expected_sequence:
                errors.append(f"sequence gap: expected {expected_sequence}, found {entry.sequence}")
            if entry.balance_before != available:
                errors.append(
                    f"entry {entry.sequence}: balance_before {entry.balance_before} != {available}"
                )
            available, total_earned, total_paid_out = apply_entry(
                entry.transaction_type,
                entry.amount,
                available,
                total_earned,
                total_paid_out,
            )
            if entry.balance_after != available:
                errors.append(
                    f"entry {entry.sequence}: balance_after {entry.balance_after} != {available}"
                )

        return ReplayResult(
            user_id=user_id,
            transaction_count=len(entries),
            available_balance=available,
            total_earned=total_earned,
            total_paid_out=total_paid_out,
            chain_errors=errors,
        )

    async def verify_balance(self, user_id: UUID) -> BalanceVerification:
        """Replay the log and compare it with the stored balance."""
        replay = await self.replay_balance(user_id)
        stored = (await self.db.execute(self._balance_query(user_id, lock=False))).scalar_one_or_none()
        verification = BalanceVerification(
            replay=replay,
            stored_available=stored.available_balance if stored else ZERO,
            stored_total_earned=stored.total_earned if stored else ZERO,
            stored_total_paid_out=stored.total_paid_out if stored else ZERO,
        )
        if not verification.is_consistent:
            logger.error("Ledger for user %s does not replay to its stored balance", user_id)
        return verification

    async def list_user_ids(self) -> list[UUID]:
        """All users with a balance row."""
        result = await self.db.execute(select(UserBalance.user_id).order_by(UserBalance.user_id))
        return list(result.scalars().all())
