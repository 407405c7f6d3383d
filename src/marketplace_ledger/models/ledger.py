"""User balance and append-only financial transaction models."""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_ledger.models.base import Base, TimestampMixin, UpdatedAtMixin


class UserBalance(Base, UpdatedAtMixin):
    """Materialized balance for one user.

    Only LedgerService.record_transaction writes to this table. Every
    change is mirrored by a FinancialTransaction row; ``last_sequence`` is
    the sequence number of the most recent one.
    """

    __tablename__ = "user_balance"

    user_id: Mapped[UUID] = mapped_column(primary_key=True)
    available_balance: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, default=Decimal("0")
    )
    pending_balance: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, default=Decimal("0")
    )
    total_earned: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, default=Decimal("0")
    )
    total_paid_out: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, default=Decimal("0")
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("available_balance >= 0", name="user_balance_available_non_negative"),
        CheckConstraint("pending_balance >= 0", name="user_balance_pending_non_negative"),
    )


class FinancialTransaction(Base, TimestampMixin):
    """Append-only ledger entry. Never updated or deleted."""

    __tablename__ = "financial_transaction"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(255), nullable=False)
    reference_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("user_id", "sequence", name="financial_transaction_user_sequence"),
        CheckConstraint(
            "transaction_type IN ('earnings', 'payout', 'refund')",
            name="financial_transaction_type_check",
        ),
        CheckConstraint("amount > 0", name="financial_transaction_amount_positive"),
        CheckConstraint("balance_after >= 0", name="financial_transaction_balance_non_negative"),
    )
