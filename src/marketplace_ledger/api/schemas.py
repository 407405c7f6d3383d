"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from marketplace_ledger.calculators import FeeCalculation
from marketplace_ledger.services.entity_routing import EntityType


class ErrorResponse(BaseModel):
    """Error body returned for every LedgerError."""

    detail: str
    code: str


# ============================================================================
# Fee schemas
# ============================================================================


class FeeBreakdown(BaseModel):
    """Fee calculation as returned to clients."""

    subtotal: Decimal
    platform_fee: Decimal
    payment_processing_fee: Decimal
    total_fees: Decimal
    creator_payout: Decimal
    total: Decimal
    currency: str
    commission_rate: Decimal
    category: str

    @classmethod
    def from_calculation(cls, fees: FeeCalculation) -> "FeeBreakdown":
        return cls(
            subtotal=fees.subtotal,
            platform_fee=fees.platform_fee,
            payment_processing_fee=fees.payment_processing_fee,
            total_fees=fees.total_fees,
            creator_payout=fees.creator_payout,
            total=fees.total,
            currency=fees.currency,
            commission_rate=fees.commission_rate,
            category=fees.category.value,
        )


class EntityFields(BaseModel):
    """What a payment is for."""

    entity_type: EntityType
    entity_id: str = Field(min_length=1, max_length=200)
    # Digital products: the buyer id (defaults to the paying user)
    secondary_id: str | None = None


class QuoteRequest(EntityFields):
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    percentage_tier: str | None = None
    subscription_tier: str | None = None


# ============================================================================
# Payment schemas
# ============================================================================


class PaymentCreate(QuoteRequest):
    """Schema for creating a payment intent."""

    phone: str = Field(min_length=1, max_length=32)
    email: str | None = None
    name: str | None = None
    payee_id: UUID | None = None
    description: str | None = None


class PaymentCreateResponse(BaseModel):
    payment_id: UUID
    order_id: str
    status: str
    checkout_url: str | None = None
    fees: FeeBreakdown


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: str
    entity_type: str | None = None
    entity_id: str | None = None
    amount: Decimal
    currency: str
    status: str
    gateway_transaction_id: str | None = None
    checkout_url: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


class PaymentListResponse(BaseModel):
    items: list[PaymentResponse]


class WebhookResponse(BaseModel):
    status: str
    outcome: str


# ============================================================================
# Payout schemas
# ============================================================================


class PayoutMethodCreate(BaseModel):
    method_type: Literal["mobile_money", "bank_transfer"]
    mobile_operator: str | None = None
    mobile_number: str | None = None
    bank_name: str | None = None
    account_name: str | None = None
    account_number: str | None = None
    is_default: bool = False


class PayoutMethodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    method_type: str
    mobile_operator: str | None = None
    mobile_number: str | None = None
    bank_name: str | None = None
    account_name: str | None = None
    account_number: str | None = None
    is_default: bool
    created_at: datetime


class PayoutCreate(BaseModel):
    """Schema for requesting a payout."""

    payout_method_id: UUID
    amount: Decimal | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    notes: str | None = None


class PayoutAction(BaseModel):
    """Optional notes attached to an operator action."""

    notes: str | None = None


class PayoutResponse(BaseModel):
    """Schema for payout response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    creator_id: UUID
    amount: Decimal
    currency: str
    status: str
    payment_method: str
    payment_reference: dict[str, Any]
    fee_ids: list[str]
    transaction_id: UUID | None = None
    disbursement_id: str | None = None
    balance_before: Decimal | None = None
    balance_after: Decimal | None = None
    notes: str | None = None
    error_message: str | None = None
    processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PayoutListResponse(BaseModel):
    items: list[PayoutResponse]


class EarningsSummaryResponse(BaseModel):
    creator_id: UUID
    currency: str
    total_earnings: Decimal
    available_earnings: Decimal
    in_payout: Decimal
    paid_out: Decimal
    awaiting_collection: Decimal
    recent_payouts: list[PayoutResponse]


# ============================================================================
# Financial schemas
# ============================================================================


class BalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    currency: str
    available_balance: Decimal
    pending_balance: Decimal
    total_earned: Decimal
    total_paid_out: Decimal


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sequence: int
    transaction_type: str
    amount: Decimal
    currency: str
    balance_before: Decimal
    balance_after: Decimal
    reference_id: str
    reference_type: str
    description: str | None = None
    created_at: datetime


class TransactionListResponse(BaseModel):
    items: list[TransactionResponse]
    total: int
    limit: int
    offset: int


class FinancialSummaryResponse(BaseModel):
    user_id: UUID
    currency: str
    earnings_count: int
    earnings_total: Decimal
    payouts_count: int
    payouts_total: Decimal
    refunds_count: int
    refunds_total: Decimal
    net: Decimal
    earnings_by_type: dict[str, Decimal]
