"""Tests for typed entity references and payment outcome routing."""

import pytest

from marketplace_ledger.calculators import TransactionCategory
from marketplace_ledger.exceptions import ValidationError
from marketplace_ledger.models import (
    Commission,
    DigitalProductPurchase,
    MarketplaceOrder,
    ServiceBooking,
)
from marketplace_ledger.services.entity_routing import (
    ENTITY_ROUTES,
    EntityRef,
    EntityType,
    PaymentOutcome,
    apply_entity_outcome,
)


class TestEntityRef:
    """Test order id generation and parsing."""

    def test_every_entity_type_has_a_route(self):
        assert set(ENTITY_ROUTES) == set(EntityType)

    def test_order_ids(self):
        assert EntityRef(EntityType.ORDER, "abc123").order_id == "abc123"
        assert EntityRef(EntityType.COMMISSION, "42").order_id == "commission_42"
        assert EntityRef(EntityType.BOOKING, "b1").order_id == "service_booking_b1"
        assert EntityRef(EntityType.FEATURED_LISTING, "f1").order_id == "featured_f1"
        assert (
            EntityRef(EntityType.DIGITAL_PRODUCT, "p9", "buyer-7").order_id
            == "digital_product_p9_buyer-7"
        )

    def test_accepts_string_entity_type(self):
        ref = EntityRef("tip", 17)  # type: ignore[arg-type]
        assert ref.entity_type is EntityType.TIP
        assert ref.entity_id == "17"

    def test_parse_prefixed_order_ids(self):
        assert EntityRef.parse("commission_42") == EntityRef(EntityType.COMMISSION, "42")
        assert EntityRef.parse("tip_9") == EntityRef(EntityType.TIP, "9")
        assert EntityRef.parse("event_registration_e1") == EntityRef(
            EntityType.EVENT_REGISTRATION, "e1"
        )

    def test_parse_prefers_longest_prefix(self):
        ref = EntityRef.parse("performance_booking_p1")
        assert ref.entity_type is EntityType.PERFORMANCE_BOOKING
        assert ref.entity_id == "p1"

    def test_parse_digital_product(self):
        ref = EntityRef.parse("digital_product_p9_buyer_with_underscores")
        assert ref.entity_type is EntityType.DIGITAL_PRODUCT
        assert ref.entity_id == "p9"
        assert ref.secondary_id == "buyer_with_underscores"

    def test_parse_unknown_shape_is_plain_order(self):
        assert EntityRef.parse("ord-2024-001") == EntityRef(EntityType.ORDER, "ord-2024-001")
        # A bare prefix has no id after it
        assert EntityRef.parse("tip_") == EntityRef(EntityType.ORDER, "tip_")

    def test_round_trip_for_every_type(self):
        for entity_type in EntityType:
            secondary = "buyer" if entity_type is EntityType.DIGITAL_PRODUCT else None
            ref = EntityRef(entity_type, "x1", secondary)
            parsed = EntityRef.parse(ref.order_id)
            if entity_type is EntityType.ORDER:
                assert parsed == ref
            else:
                assert parsed.entity_type is entity_type

    def test_from_columns_prefers_typed_columns(self):
        ref = EntityRef.from_columns("booking", "b1", None, "something_else")
        assert ref == EntityRef(EntityType.BOOKING, "b1")

        legacy = EntityRef.from_columns(None, None, None, "commission_42")
        assert legacy == EntityRef(EntityType.COMMISSION, "42")

    def test_validation(self):
        with pytest.raises(ValidationError):
            EntityRef(EntityType.ORDER, "")
        with pytest.raises(ValidationError, match="buyer id"):
            EntityRef(EntityType.DIGITAL_PRODUCT, "p1")
        with pytest.raises(ValidationError):
            EntityRef(EntityType.DIGITAL_PRODUCT, "p_1", "buyer")

    def test_route_categories(self):
        assert EntityRef(EntityType.ORDER, "1").route.fee_category is TransactionCategory.MARKETPLACE
        assert (
            EntityRef(EntityType.LODGING_BOOKING, "1").route.fee_category
            is TransactionCategory.SERVICE_BOOKING
        )
        assert ENTITY_ROUTES[EntityType.SUBSCRIPTION].has_payee is False
        assert ENTITY_ROUTES[EntityType.FEATURED_LISTING].has_payee is False
        assert ENTITY_ROUTES[EntityType.TIP].has_payee is True


class TestApplyEntityOutcome:
    """Test writing payment outcomes to entity rows."""

    async def test_completed_order(self, session):
        session.add(MarketplaceOrder(id="o1"))
        await session.commit()

        changed = await apply_entity_outcome(
            session, EntityRef(EntityType.ORDER, "o1"), PaymentOutcome.COMPLETED
        )
        await session.commit()

        order = await session.get(MarketplaceOrder, "o1", populate_existing=True)
        assert changed == 1
        assert order.status == "paid"
        assert order.payment_status == "paid"

    async def test_failed_booking(self, session):
        session.add(ServiceBooking(id="b1", status="requested"))
        await session.commit()

        await apply_entity_outcome(
            session, EntityRef(EntityType.BOOKING, "b1"), PaymentOutcome.FAILED
        )
        await session.commit()

        booking = await session.get(ServiceBooking, "b1", populate_existing=True)
        assert booking.status == "cancelled"
        assert booking.payment_status == "failed"

    async def test_commission_only_touches_payment_status(self, session):
        session.add(Commission(id="42", status="accepted"))
        await session.commit()

        await apply_entity_outcome(
            session, EntityRef(EntityType.COMMISSION, "42"), PaymentOutcome.COMPLETED
        )
        await session.commit()

        commission = await session.get(Commission, "42", populate_existing=True)
        assert commission.status == "accepted"
        assert commission.payment_status == "paid"

    async def test_digital_product_gets_download_link(self, session):
        purchase = DigitalProductPurchase(product_id="p9", buyer_id="buyer-7")
        session.add(purchase)
        await session.commit()

        await apply_entity_outcome(
            session,
            EntityRef(EntityType.DIGITAL_PRODUCT, "p9", "buyer-7"),
            PaymentOutcome.COMPLETED,
        )
        await session.commit()

        purchase = await session.get(DigitalProductPurchase, purchase.id, populate_existing=True)
        assert purchase.payment_status == "paid"
        assert purchase.download_url.startswith("/api/digital-products/p9/download?token=")
        assert purchase.download_expires_at is not None

    async def test_missing_entity_is_not_an_error(self, session):
        changed = await apply_entity_outcome(
            session, EntityRef(EntityType.TIP, "missing"), PaymentOutcome.COMPLETED
        )
        assert changed == 0
