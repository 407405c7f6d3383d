"""Payment and platform fee models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_ledger.models.base import Base, UpdatedAtMixin


class Payment(Base, UpdatedAtMixin):
    """Buyer payment intent tracked against the external gateway.

    ``order_id`` is the opaque key sent to the gateway. The typed
    ``entity_type``/``entity_id`` pair identifies what is being paid for;
    it is null only for rows written before typed references existed.
    """

    __tablename__ = "payment"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_secondary_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    payee_id: Mapped[UUID | None] = mapped_column(nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    gateway_payment_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True
    )
    gateway_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    checkout_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'initiated', 'completed', 'failed')",
            name="payment_status_check",
        ),
        CheckConstraint("amount > 0", name="payment_amount_positive"),
    )

    @property
    def is_terminal(self) -> bool:
        """Completed and failed payments never change again."""
        return self.status in ("completed", "failed")


class PlatformFeeRecord(Base, UpdatedAtMixin):
    """Fee breakdown persisted once per business transaction.

    ``status`` follows the payment (pending -> collected | refunded);
    ``payout_status`` follows the payout that consumes the record
    (pending -> reserved -> processing -> paid).
    """

    __tablename__ = "platform_fee"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    transaction_id: Mapped[str] = mapped_column(String(255), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_id: Mapped[UUID | None] = mapped_column(nullable=True)
    payer_id: Mapped[UUID] = mapped_column(nullable=False)
    payee_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    processing_fee: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    total_fees: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    creator_payout: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payout_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )
    payout_id: Mapped[UUID | None] = mapped_column(nullable=True)
    collected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payout_date: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'collected', 'refunded')",
            name="platform_fee_status_check",
        ),
        CheckConstraint(
            "payout_status IN ('pending', 'reserved', 'processing', 'paid')",
            name="platform_fee_payout_status_check",
        ),
        CheckConstraint("creator_payout >= 0", name="platform_fee_payout_non_negative"),
        Index("ix_platform_fee_transaction_status", "transaction_id", "status"),
    )
