"""Integration tests for competing writers on separate sessions.

Tests verify:
1. Two payout requests racing for the same earnings create one payout
2. Two deliveries of the same webhook racing each other credit the ledger once

The races are interleaved deterministically: the second writer runs to
completion at the exact point where the first is about to write.
"""

from decimal import Decimal

import pytest
from sqlalchemy import Update, func, select

from marketplace_ledger.calculators import Money
from marketplace_ledger.events import EarningsCredited, PaymentCompleted
from marketplace_ledger.exceptions import ConcurrentPayoutError
from marketplace_ledger.models import FinancialTransaction, Payout, PlatformFeeRecord
from marketplace_ledger.services import (
    EntityRef,
    EntityType,
    LedgerService,
    PayerContact,
    PayoutService,
    ReconciliationOutcome,
    WebhookReconciler,
)


class TestPayoutReservationRace:
    """Test two payout requests selecting the same fee records."""

    async def test_loser_gets_concurrent_error_and_writes_nothing(
        self,
        session,
        session_factory,
        data,
        payment_service,
        gateway,
        reconciler,
        settings,
        monkeypatch,
    ):
        for _ in range(2):
            await data.paid_order(payment_service, gateway, reconciler)
        method = await data.add_mobile_method()

        async with session_factory() as first_db, session_factory() as second_db:
            first = PayoutService(first_db, gateway, settings=settings)
            second = PayoutService(second_db, gateway, settings=settings)
            winners: list[Payout] = []

            original_execute = first_db.execute

            async def reserve_after_rival(statement, *args, **kwargs):
                # The rival commits its reservation between our select and our update
                if isinstance(statement, Update) and not winners:
                    winners.append(await second.request_payout(data.creator_id, method.id))
                return await original_execute(statement, *args, **kwargs)

            monkeypatch.setattr(first_db, "execute", reserve_after_rival)

            with pytest.raises(ConcurrentPayoutError):
                await first.request_payout(data.creator_id, method.id)

        [winner] = winners
        assert winner.amount == Decimal("18.40")
        assert await session.scalar(select(func.count()).select_from(Payout)) == 1

        rows = await session.execute(
            select(PlatformFeeRecord).execution_options(populate_existing=True)
        )
        records = list(rows.scalars().all())
        assert len(records) == 2
        assert {r.payout_id for r in records} == {winner.id}
        assert {r.payout_status for r in records} == {"reserved"}


class TestDuplicateWebhookRace:
    """Test the same notification delivered twice at once."""

    async def test_interleaved_deliveries_credit_once(
        self,
        session,
        session_factory,
        data,
        payment_service,
        gateway,
        emitter,
        events,
        monkeypatch,
    ):
        order = await data.add_order()
        created = await payment_service.create_payment(
            EntityRef(EntityType.ORDER, order.id),
            Money(Decimal("10.00"), "USD"),
            PayerContact(user_id=data.buyer_id, phone="+255700000000"),
            payee_id=data.creator_id,
        )
        payload = gateway.webhook_payload(created.gateway_payment_id, "success")
        args = (
            payload["payment_id"],
            payload["order_id"],
            payload["status"],
            payload["transaction_id"],
        )

        async with session_factory() as first_db, session_factory() as second_db:
            first = WebhookReconciler(first_db, LedgerService(first_db, "USD"), emitter)
            second = WebhookReconciler(second_db, LedgerService(second_db, "USD"), emitter)
            rival_results = []

            original_commit = first_db.commit

            async def deliver_rival_first():
                # Both deliveries have read the initiated payment at this point
                if not rival_results:
                    rival_results.append(await second.handle_gateway_notification(*args))
                await original_commit()

            monkeypatch.setattr(first_db, "commit", deliver_rival_first)

            result = await first.handle_gateway_notification(*args)

        [rival] = rival_results
        assert rival.outcome is ReconciliationOutcome.COMPLETED
        assert rival.ledger_entries == 1
        assert result.outcome is ReconciliationOutcome.DUPLICATE
        assert result.ledger_entries == 0

        entries = await session.scalar(
            select(func.count())
            .select_from(FinancialTransaction)
            .where(FinancialTransaction.user_id == data.creator_id)
        )
        assert entries == 1
        [fee_record] = await data.fee_records(order.id)
        assert fee_record.status == "collected"
        balance = await data.balance(data.creator_id)
        assert balance.available_balance == Decimal("9.20")

        assert sum(isinstance(e, EarningsCredited) for e in events) == 1
        assert sum(isinstance(e, PaymentCompleted) for e in events) == 1
