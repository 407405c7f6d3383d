"""Marketplace entities paid for through the gateway.

Only the fields touched by payment reconciliation are modelled here; the
rest of each entity lives with the owning marketplace vertical.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_ledger.models.base import Base, UpdatedAtMixin


class PayableEntityMixin(UpdatedAtMixin):
    """Common shape of an entity with a fulfilment and a payment status."""

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    payment_status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="pending"
    )


class MarketplaceOrder(Base, PayableEntityMixin):
    """Goods and restaurant orders."""

    __tablename__ = "marketplace_order"

    buyer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    order_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default="marketplace"
    )


class ServiceBooking(Base, PayableEntityMixin):
    __tablename__ = "service_booking"


class PlatformSubscription(Base, PayableEntityMixin):
    __tablename__ = "platform_subscription"

    user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    tier: Mapped[str | None] = mapped_column(String(30), nullable=True)


class Tip(Base, PayableEntityMixin):
    __tablename__ = "tip"


class Commission(Base, PayableEntityMixin):
    __tablename__ = "commission"


class PerformanceBooking(Base, PayableEntityMixin):
    __tablename__ = "performance_booking"


class FeaturedListing(Base, PayableEntityMixin):
    __tablename__ = "featured_listing"


class LodgingBooking(Base, PayableEntityMixin):
    __tablename__ = "lodging_booking"


class EventRegistration(Base, PayableEntityMixin):
    __tablename__ = "event_registration"


class DigitalProductPurchase(Base, UpdatedAtMixin):
    """A buyer's purchase of a digital product, keyed by (product, buyer)."""

    __tablename__ = "digital_product_purchase"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    buyer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="pending"
    )
    download_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    download_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("product_id", "buyer_id", name="digital_product_purchase_once"),
    )
