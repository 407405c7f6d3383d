"""Tests for domain events, the async emitter and notification handlers."""

import json
from decimal import Decimal
from uuid import uuid4

from marketplace_ledger.events import (
    AsyncEventEmitter,
    EventCategory,
    EventMetadata,
    PaymentCompleted,
    PaymentInitiated,
    PayoutPaid,
)
from marketplace_ledger.notifications import register_notification_handlers


def _payment_completed(**overrides) -> PaymentCompleted:
    values = dict(
        metadata=EventMetadata.create(actor_type="webhook"),
        payment_id=uuid4(),
        order_id="commission_42",
        entity_type="commission",
        entity_id="42",
        user_id=uuid4(),
        amount=Decimal("10.55"),
        currency="USD",
        collected_fee_count=1,
    )
    values.update(overrides)
    return PaymentCompleted(**values)


def _payout_paid() -> PayoutPaid:
    return PayoutPaid(
        metadata=EventMetadata.create(actor_type="operator"),
        payout_id=uuid4(),
        creator_id=uuid4(),
        amount=Decimal("9.20"),
        currency="USD",
        payment_reference="TX-1",
        ledger_transaction_id=uuid4(),
    )


class TestDomainEvents:
    """Test event types."""

    def test_event_type_and_category(self):
        event = _payment_completed()
        assert event.event_type == "PaymentCompleted"
        assert event.category is EventCategory.PAYMENT
        assert _payout_paid().category is EventCategory.PAYOUT

    def test_serialization(self):
        event = _payment_completed()
        data = json.loads(event.to_json())

        assert data["event_type"] == "PaymentCompleted"
        assert data["category"] == "payment"
        assert data["amount"] == "10.55"
        assert data["payment_id"] == str(event.payment_id)
        assert data["metadata"]["actor_type"] == "webhook"

    def test_metadata_correlation(self):
        correlation_id = uuid4()
        metadata = EventMetadata.create(correlation_id=correlation_id)
        assert metadata.correlation_id == correlation_id
        assert metadata.actor_type == "system"
        assert metadata.source_service == "marketplace_ledger"


class TestAsyncEventEmitter:
    """Test handler registration and isolation."""

    async def test_type_handlers_only_see_their_type(self):
        emitter = AsyncEventEmitter()
        seen: list[str] = []
        emitter.on(PaymentCompleted, lambda e: seen.append(e.event_type))

        await emitter.emit(_payment_completed())
        await emitter.emit(_payout_paid())

        assert seen == ["PaymentCompleted"]

    async def test_category_and_async_handlers(self):
        emitter = AsyncEventEmitter()
        seen: list[str] = []

        async def on_payout(event):
            seen.append(event.event_type)

        emitter.on_category(EventCategory.PAYOUT, on_payout)

        await emitter.emit_all([_payment_completed(), _payout_paid()])

        assert seen == ["PayoutPaid"]

    async def test_failing_handler_is_isolated(self):
        emitter = AsyncEventEmitter()
        seen: list[str] = []

        def broken(event):
            raise RuntimeError("notifier down")

        emitter.on_all(broken)
        emitter.on_all(lambda e: seen.append(e.event_type))

        errors = await emitter.emit(_payment_completed())

        assert len(errors) == 1
        assert isinstance(errors[0], RuntimeError)
        assert seen == ["PaymentCompleted"]

    async def test_off_unregisters(self):
        emitter = AsyncEventEmitter()
        seen: list[str] = []

        def handler(event):
            seen.append(event.event_type)

        emitter.on_all(handler)
        emitter.off(handler)
        await emitter.emit(_payout_paid())

        assert seen == []


class RecordingNotifier:
    def __init__(self):
        self.calls: list[tuple] = []

    async def notify_payment(self, user_id, payment_id, outcome, amount):
        self.calls.append(("payment", user_id, outcome, amount))

    async def notify_payout(self, user_id, payout_id, outcome, amount):
        self.calls.append(("payout", user_id, outcome, amount))


class TestNotificationHandlers:
    """Test notifications driven by events."""

    async def test_payment_and_payout_notifications(self):
        emitter = AsyncEventEmitter()
        notifier = RecordingNotifier()
        register_notification_handlers(emitter, notifier)

        completed = _payment_completed()
        paid = _payout_paid()
        await emitter.emit(completed)
        await emitter.emit(paid)

        assert notifier.calls == [
            ("payment", completed.user_id, "completed", Decimal("10.55")),
            ("payout", paid.creator_id, "paid", Decimal("9.20")),
        ]

    async def test_initiated_payments_are_not_notified(self):
        emitter = AsyncEventEmitter()
        notifier = RecordingNotifier()
        register_notification_handlers(emitter, notifier)

        await emitter.emit(
            PaymentInitiated(
                metadata=EventMetadata.create(),
                payment_id=uuid4(),
                order_id="o1",
                user_id=uuid4(),
                amount=Decimal("1"),
                currency="USD",
            )
        )

        assert notifier.calls == []
