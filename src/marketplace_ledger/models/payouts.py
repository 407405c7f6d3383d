"""Payout and payout method models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, CheckConstraint, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_ledger.models.base import Base, UpdatedAtMixin


class PayoutMethod(Base, UpdatedAtMixin):
    """Where a creator wants to be paid: a mobile wallet or a bank account."""

    __tablename__ = "payout_method"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    method_type: Mapped[str] = mapped_column(String(20), nullable=False)
    mobile_operator: Mapped[str | None] = mapped_column(String(50), nullable=True)
    mobile_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint(
            "method_type IN ('mobile_money', 'bank_transfer')",
            name="payout_method_type_check",
        ),
    )

    def snapshot(self) -> dict[str, Any]:
        """Copy of the destination details stored on the payout."""
        if self.method_type == "mobile_money":
            return {
                "method_type": self.method_type,
                "mobile_operator": self.mobile_operator,
                "mobile_number": self.mobile_number,
                "account_name": self.account_name,
            }
        return {
            "method_type": self.method_type,
            "bank_name": self.bank_name,
            "account_name": self.account_name,
            "account_number": self.account_number,
        }


class Payout(Base, UpdatedAtMixin):
    """Withdrawal request for a creator's collected earnings.

    ``fee_ids`` lists the PlatformFeeRecord ids reserved for this payout;
    ``amount`` always equals the sum of their creator payouts.
    """

    __tablename__ = "payout"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    creator_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payout_method_id: Mapped[UUID | None] = mapped_column(nullable=True)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_reference: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    fee_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    transaction_id: Mapped[UUID | None] = mapped_column(nullable=True)
    disbursement_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    disbursement_claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Set once a mobile money transfer has been sent to the gateway; never cleared
    disbursement_attempted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    balance_before: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    balance_after: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'paid', 'failed', 'cancelled')",
            name="payout_status_check",
        ),
        CheckConstraint("amount > 0", name="payout_amount_positive"),
    )
