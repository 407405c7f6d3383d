"""Domain event types for payment, ledger and payout operations.

All events are:
- Immutable (frozen dataclasses)
- Emitted only after the state change they describe has been committed
- Serializable for logging and downstream delivery
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    PAYMENT = "payment"
    LEDGER = "ledger"
    PAYOUT = "payout"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: UUID  # Links events caused by one request
    actor_type: str  # 'user', 'operator', 'webhook', 'system'
    source_service: str
    version: int = 1

    @classmethod
    def create(
        cls,
        correlation_id: UUID | None = None,
        actor_type: str = "system",
        source_service: str = "marketplace_ledger",
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            correlation_id=correlation_id or uuid4(),
            actor_type=actor_type,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = _serialize(asdict(self))
        data["event_type"] = self.event_type
        data["category"] = self.category.value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def _serialize(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(v) for v in obj]
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Payment Events
# =============================================================================


@dataclass(frozen=True)
class PaymentInitiated(DomainEvent):
    """The gateway accepted a payment intent."""

    payment_id: UUID
    order_id: str
    user_id: UUID
    amount: Decimal
    currency: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


@dataclass(frozen=True)
class PaymentCompleted(DomainEvent):
    """The gateway confirmed a payment and its fee records were collected."""

    payment_id: UUID
    order_id: str
    entity_type: str
    entity_id: str
    user_id: UUID
    amount: Decimal
    currency: str
    collected_fee_count: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


@dataclass(frozen=True)
class PaymentFailed(DomainEvent):
    """A payment failed at creation or was reported failed by the gateway."""

    payment_id: UUID
    order_id: str
    entity_type: str
    entity_id: str
    user_id: UUID
    amount: Decimal
    currency: str
    reason: str | None
    refunded_fee_count: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


# =============================================================================
# Ledger Events
# =============================================================================


@dataclass(frozen=True)
class EarningsCredited(DomainEvent):
    """A payee's balance was credited from a collected fee record."""

    payment_id: UUID
    fee_record_id: UUID
    payee_id: UUID
    amount: Decimal
    currency: str
    ledger_transaction_id: UUID
    transaction_type: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.LEDGER


# =============================================================================
# Payout Events
# =============================================================================


@dataclass(frozen=True)
class PayoutRequested(DomainEvent):
    payout_id: UUID
    creator_id: UUID
    amount: Decimal
    currency: str
    fee_count: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYOUT


@dataclass(frozen=True)
class PayoutProcessing(DomainEvent):
    payout_id: UUID
    creator_id: UUID
    amount: Decimal
    currency: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYOUT


@dataclass(frozen=True)
class PayoutPaid(DomainEvent):
    """Money left the platform and the creator's ledger was debited."""

    payout_id: UUID
    creator_id: UUID
    amount: Decimal
    currency: str
    payment_reference: str
    ledger_transaction_id: UUID

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYOUT


@dataclass(frozen=True)
class PayoutFailed(DomainEvent):
    payout_id: UUID
    creator_id: UUID
    amount: Decimal
    currency: str
    reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYOUT


@dataclass(frozen=True)
class PayoutCancelled(DomainEvent):
    payout_id: UUID
    creator_id: UUID
    amount: Decimal
    currency: str
    reason: str | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYOUT
