"""Domain events package.

This package provides:
- Typed domain events for payments, ledger credits and payouts
- An async emitter with handler isolation
"""

from marketplace_ledger.events.emitter import AsyncEventEmitter, HandlerRegistration
from marketplace_ledger.events.types import (
    DomainEvent,
    EarningsCredited,
    EventCategory,
    EventMetadata,
    PaymentCompleted,
    PaymentFailed,
    PaymentInitiated,
    PayoutCancelled,
    PayoutFailed,
    PayoutPaid,
    PayoutProcessing,
    PayoutRequested,
)

__all__ = [
    "AsyncEventEmitter",
    "HandlerRegistration",
    "DomainEvent",
    "EarningsCredited",
    "EventCategory",
    "EventMetadata",
    "PaymentCompleted",
    "PaymentFailed",
    "PaymentInitiated",
    "PayoutCancelled",
    "PayoutFailed",
    "PayoutPaid",
    "PayoutProcessing",
    "PayoutRequested",
]
