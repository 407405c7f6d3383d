"""Typed references from a payment to the marketplace entity it pays for.

Every payment stores an ``(entity_type, entity_id)`` pair. The routing
table below maps each entity type to its table, its fee category, and the
field values written when the payment completes or fails. The gateway
only ever sees ``EntityRef.order_id``; ``EntityRef.parse`` recovers a
reference from such an order id for rows that predate typed references.
"""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_ledger.calculators.types import TransactionCategory
from marketplace_ledger.exceptions import ValidationError
from marketplace_ledger.models import (
    Commission,
    DigitalProductPurchase,
    EventRegistration,
    FeaturedListing,
    LodgingBooking,
    MarketplaceOrder,
    PerformanceBooking,
    PlatformSubscription,
    ServiceBooking,
    Tip,
    utcnow,
)

logger = logging.getLogger(__name__)

DOWNLOAD_LINK_TTL = timedelta(days=7)

_DIGITAL_PRODUCT_ORDER = re.compile(r"^digital_product_([^_]+)_(.+)$")


class EntityType(str, Enum):
    """Kinds of marketplace entity a payment can settle."""

    ORDER = "order"
    RESTAURANT_ORDER = "restaurant_order"
    BOOKING = "booking"
    SUBSCRIPTION = "subscription"
    TIP = "tip"
    COMMISSION = "commission"
    PERFORMANCE_BOOKING = "performance_booking"
    FEATURED_LISTING = "featured_listing"
    LODGING_BOOKING = "lodging_booking"
    EVENT_REGISTRATION = "event_registration"
    DIGITAL_PRODUCT = "digital_product"


class PaymentOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class EntityRoute:
    """How a payment outcome is applied to one entity type."""

    model: type
    order_prefix: str
    fee_category: TransactionCategory
    fee_transaction_type: str
    completed_values: Mapping[str, str]
    failed_values: Mapping[str, str]
    has_payee: bool = True


def _values(**kwargs: str) -> Mapping[str, str]:
    return MappingProxyType(kwargs)


ENTITY_ROUTES: Mapping[EntityType, EntityRoute] = MappingProxyType(
    {
        EntityType.ORDER: EntityRoute(
            model=MarketplaceOrder,
            order_prefix="",
            fee_category=TransactionCategory.MARKETPLACE,
            fee_transaction_type="marketplace",
            completed_values=_values(status="paid", payment_status="paid"),
            failed_values=_values(status="payment_failed", payment_status="failed"),
        ),
        EntityType.RESTAURANT_ORDER: EntityRoute(
            model=MarketplaceOrder,
            order_prefix="restaurant_order_",
            fee_category=TransactionCategory.MARKETPLACE,
            fee_transaction_type="restaurant_order",
            completed_values=_values(status="paid", payment_status="paid"),
            failed_values=_values(status="payment_failed", payment_status="failed"),
        ),
        EntityType.BOOKING: EntityRoute(
            model=ServiceBooking,
            order_prefix="service_booking_",
            fee_category=TransactionCategory.SERVICE_BOOKING,
            fee_transaction_type="service_booking",
            completed_values=_values(status="confirmed", payment_status="paid"),
            failed_values=_values(status="cancelled", payment_status="failed"),
        ),
        EntityType.SUBSCRIPTION: EntityRoute(
            model=PlatformSubscription,
            order_prefix="subscription_",
            fee_category=TransactionCategory.SUBSCRIPTION,
            fee_transaction_type="subscription",
            completed_values=_values(status="active", payment_status="paid"),
            failed_values=_values(status="expired", payment_status="failed"),
            has_payee=False,
        ),
        EntityType.TIP: EntityRoute(
            model=Tip,
            order_prefix="tip_",
            fee_category=TransactionCategory.TIP,
            fee_transaction_type="tip",
            completed_values=_values(payment_status="paid"),
            failed_values=_values(payment_status="failed"),
        ),
        EntityType.COMMISSION: EntityRoute(
            model=Commission,
            order_prefix="commission_",
            fee_category=TransactionCategory.COMMISSION,
            fee_transaction_type="commission",
            completed_values=_values(payment_status="paid"),
            failed_values=_values(payment_status="failed"),
        ),
        EntityType.PERFORMANCE_BOOKING: EntityRoute(
            model=PerformanceBooking,
            order_prefix="performance_booking_",
            fee_category=TransactionCategory.SERVICE_BOOKING,
            fee_transaction_type="performance_booking",
            completed_values=_values(status="confirmed", payment_status="paid"),
            failed_values=_values(status="cancelled", payment_status="failed"),
        ),
        EntityType.FEATURED_LISTING: EntityRoute(
            model=FeaturedListing,
            order_prefix="featured_",
            fee_category=TransactionCategory.FEATURED_LISTING,
            fee_transaction_type="featured_listing",
            completed_values=_values(status="active", payment_status="paid"),
            failed_values=_values(status="cancelled", payment_status="failed"),
            has_payee=False,
        ),
        EntityType.LODGING_BOOKING: EntityRoute(
            model=LodgingBooking,
            order_prefix="lodging_booking_",
            fee_category=TransactionCategory.SERVICE_BOOKING,
            fee_transaction_type="lodging_booking",
            completed_values=_values(status="confirmed", payment_status="paid"),
            failed_values=_values(status="cancelled", payment_status="failed"),
        ),
        EntityType.EVENT_REGISTRATION: EntityRoute(
            model=EventRegistration,
            order_prefix="event_registration_",
            fee_category=TransactionCategory.SERVICE_BOOKING,
            fee_transaction_type="event_booking",
            completed_values=_values(status="confirmed", payment_status="paid"),
            failed_values=_values(status="cancelled", payment_status="failed"),
        ),
        EntityType.DIGITAL_PRODUCT: EntityRoute(
            model=DigitalProductPurchase,
            order_prefix="digital_product_",
            fee_category=TransactionCategory.DIGITAL_PRODUCT,
            fee_transaction_type="digital_product",
            completed_values=_values(payment_status="paid"),
            failed_values=_values(payment_status="failed"),
        ),
    }
)

# Longest prefixes first so "performance_booking_" never matches a shorter one
_LEGACY_PREFIXES = sorted(
    (
        (route.order_prefix, entity_type)
        for entity_type, route in ENTITY_ROUTES.items()
        if route.order_prefix and entity_type is not EntityType.DIGITAL_PRODUCT
    ),
    key=lambda item: len(item[0]),
    reverse=True,
)


@dataclass(frozen=True)
class EntityRef:
    """Typed reference to the entity a payment settles.

    ``secondary_id`` is only used by digital products, where it carries the
    buyer id (a purchase is keyed by product and buyer).
    """

    entity_type: EntityType
    entity_id: str
    secondary_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "entity_type", EntityType(self.entity_type))
        object.__setattr__(self, "entity_id", str(self.entity_id))
        if not self.entity_id:
            raise ValidationError("entity_id is required")
        if self.entity_type is EntityType.DIGITAL_PRODUCT:
            if not self.secondary_id:
                raise ValidationError("Digital product payments require the buyer id")
            if "_" in self.entity_id:
                raise ValidationError("Digital product ids must not contain '_'")
            object.__setattr__(self, "secondary_id", str(self.secondary_id))

    @property
    def route(self) -> EntityRoute:
        return ENTITY_ROUTES[self.entity_type]

    @property
    def order_id(self) -> str:
        """Deterministic order key sent to the gateway."""
        if self.entity_type is EntityType.DIGITAL_PRODUCT:
            return f"digital_product_{self.entity_id}_{self.secondary_id}"
        return f"{self.route.order_prefix}{self.entity_id}"

    @classmethod
    def parse(cls, order_id: str) -> EntityRef:
        """Recover a reference from a legacy prefixed order id.

        Unknown shapes are plain marketplace orders keyed by the full id.
        """
        match = _DIGITAL_PRODUCT_ORDER.match(order_id)
        if match:
            return cls(EntityType.DIGITAL_PRODUCT, match.group(1), match.group(2))

        for prefix, entity_type in _LEGACY_PREFIXES:
            if order_id.startswith(prefix) and len(order_id) > len(prefix):
                return cls(entity_type, order_id[len(prefix):])

        return cls(EntityType.ORDER, order_id)

    @classmethod
    def from_columns(
        cls,
        entity_type: str | None,
        entity_id: str | None,
        secondary_id: str | None,
        order_id: str,
    ) -> EntityRef:
        """Build from stored payment columns, falling back to ``order_id``."""
        if entity_type and entity_id:
            return cls(EntityType(entity_type), entity_id, secondary_id)
        return cls.parse(order_id)


def _download_url(product_id: str) -> str:
    return f"/api/digital-products/{product_id}/download?token={secrets.token_urlsafe(24)}"


async def apply_entity_outcome(
    db: AsyncSession,
    ref: EntityRef,
    outcome: PaymentOutcome,
) -> int:
    """Write the completed/failed field values to the referenced entity.

    Returns the number of rows changed. A missing entity row is logged and
    does not raise; the payment and ledger remain authoritative.
    """
    route = ref.route
    values: dict[str, Any] = dict(
        route.completed_values if outcome is PaymentOutcome.COMPLETED else route.failed_values
    )
    values["updated_at"] = utcnow()
    model: Any = route.model

    if ref.entity_type is EntityType.DIGITAL_PRODUCT:
        if outcome is PaymentOutcome.COMPLETED:
            values["download_url"] = _download_url(ref.entity_id)
            values["download_expires_at"] = utcnow() + DOWNLOAD_LINK_TTL
        stmt = update(model).where(
            model.product_id == ref.entity_id,
            model.buyer_id == ref.secondary_id,
        )
    else:
        stmt = update(model).where(model.id == ref.entity_id)

    result = await db.execute(stmt.values(**values))
    if result.rowcount == 0:
        logger.warning(
            "No %s row found for %s while applying %s",
            ref.entity_type.value,
            ref.order_id,
            outcome.value,
        )
    return result.rowcount
