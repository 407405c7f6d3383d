"""Payer, payee and creator notifications driven by domain events.

Delivery (email, SMS, in-app) belongs to an external collaborator behind
the Notifier protocol. Handlers run after the financial state change has
been committed; a failing notifier is logged by the emitter and never
rolls anything back.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from marketplace_ledger.events import (
    AsyncEventEmitter,
    EarningsCredited,
    PaymentCompleted,
    PaymentFailed,
    PayoutCancelled,
    PayoutFailed,
    PayoutPaid,
)

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Fire-and-forget notification sink."""

    async def notify_payment(
        self, user_id: UUID, payment_id: UUID, outcome: str, amount: Decimal
    ) -> None:
        ...

    async def notify_payout(
        self, user_id: UUID, payout_id: UUID, outcome: str, amount: Decimal
    ) -> None:
        ...


class LoggingNotifier:
    """Notifier that only writes log lines. Used when no delivery channel is configured."""

    async def notify_payment(
        self, user_id: UUID, payment_id: UUID, outcome: str, amount: Decimal
    ) -> None:
        logger.info("Notify user %s: payment %s %s (%s)", user_id, payment_id, outcome, amount)

    async def notify_payout(
        self, user_id: UUID, payout_id: UUID, outcome: str, amount: Decimal
    ) -> None:
        logger.info("Notify user %s: payout %s %s (%s)", user_id, payout_id, outcome, amount)


def register_notification_handlers(emitter: AsyncEventEmitter, notifier: Notifier) -> None:
    """Subscribe ``notifier`` to the events users are told about."""

    async def on_payment_completed(event: PaymentCompleted) -> None:
        await notifier.notify_payment(event.user_id, event.payment_id, "completed", event.amount)

    async def on_earnings_credited(event: EarningsCredited) -> None:
        await notifier.notify_payment(event.payee_id, event.payment_id, "received", event.amount)

    async def on_payment_failed(event: PaymentFailed) -> None:
        await notifier.notify_payment(event.user_id, event.payment_id, "failed", event.amount)

    async def on_payout_paid(event: PayoutPaid) -> None:
        await notifier.notify_payout(event.creator_id, event.payout_id, "paid", event.amount)

    async def on_payout_failed(event: PayoutFailed) -> None:
        await notifier.notify_payout(event.creator_id, event.payout_id, "failed", event.amount)

    async def on_payout_cancelled(event: PayoutCancelled) -> None:
        await notifier.notify_payout(event.creator_id, event.payout_id, "cancelled", event.amount)

    emitter.on(PaymentCompleted, on_payment_completed)
    emitter.on(EarningsCredited, on_earnings_credited)
    emitter.on(PaymentFailed, on_payment_failed)
    emitter.on(PayoutPaid, on_payout_paid)
    emitter.on(PayoutFailed, on_payout_failed)
    emitter.on(PayoutCancelled, on_payout_cancelled)
