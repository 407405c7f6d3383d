"""Integration tests for the ledger service.

Tests verify:
1. Every balance change appends exactly one transaction
2. Replaying the log reproduces the stored balance
3. Writes that would go negative are rejected without side effects
4. History, summaries and CSV export
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from marketplace_ledger.exceptions import InsufficientBalanceError, ValidationError
from marketplace_ledger.models import FinancialTransaction
from marketplace_ledger.services import LedgerService, TransactionType


async def _earn(ledger: LedgerService, user_id, amount: str, reference: str = "o1"):
    return await ledger.record_transaction(
        user_id=user_id,
        transaction_type=TransactionType.EARNINGS,
        amount=Decimal(amount),
        reference_id=reference,
        reference_type="marketplace",
        currency="USD",
    )


class TestRecordTransaction:
    """Test balance mutation."""

    async def test_earnings_credit_balance(self, session, ledger):
        user_id = uuid4()

        record = await _earn(ledger, user_id, "9.20")
        await session.commit()

        balance = await ledger.get_balance(user_id)
        assert record.sequence == 1
        assert record.balance_before == Decimal("0")
        assert record.balance_after == Decimal("9.20")
        assert balance.available_balance == Decimal("9.20")
        assert balance.total_earned == Decimal("9.20")
        assert balance.last_sequence == 1
        assert balance.currency == "USD"

    async def test_payout_and_refund_directions(self, session, ledger):
        user_id = uuid4()
        await _earn(ledger, user_id, "50.00")
        await ledger.record_transaction(
            user_id=user_id,
            transaction_type=TransactionType.PAYOUT,
            amount=Decimal("20.00"),
            reference_id="payout-1",
            reference_type="payout",
        )
        await ledger.record_transaction(
            user_id=user_id,
            transaction_type="refund",
            amount=Decimal("5.00"),
            reference_id="o1",
            reference_type="marketplace",
        )
        await session.commit()

        balance = await ledger.get_balance(user_id)
        assert balance.available_balance == Decimal("25.00")
        assert balance.total_earned == Decimal("45.00")
        assert balance.total_paid_out == Decimal("20.00")
        assert balance.last_sequence == 3

    async def test_overdraw_rejected_without_writing(self, session, ledger, data):
        user_id = uuid4()
        await _earn(ledger, user_id, "10.00")
        await session.commit()

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.record_transaction(
                user_id=user_id,
                transaction_type=TransactionType.PAYOUT,
                amount=Decimal("10.01"),
                reference_id="payout-1",
                reference_type="payout",
            )
        await session.rollback()

        assert exc_info.value.balance == Decimal("10.00")
        balance = await ledger.get_balance(user_id)
        assert balance.available_balance == Decimal("10.00")
        assert len(await data.ledger_entries(user_id)) == 1

    async def test_non_positive_amount_rejected(self, ledger):
        with pytest.raises(ValueError):
            await ledger.record_transaction(
                user_id=uuid4(),
                transaction_type=TransactionType.EARNINGS,
                amount=Decimal("0"),
                reference_id="o1",
                reference_type="marketplace",
            )

    async def test_currency_mismatch_rejected(self, session, ledger):
        user_id = uuid4()
        await _earn(ledger, user_id, "1.00")
        await session.commit()

        with pytest.raises(ValidationError):
            await ledger.record_transaction(
                user_id=user_id,
                transaction_type=TransactionType.EARNINGS,
                amount=Decimal("1000"),
                reference_id="o2",
                reference_type="marketplace",
                currency="TZS",
            )

    async def test_first_balance_uses_default_currency(self, session):
        ledger = LedgerService(session, default_currency="kes")
        balance = await ledger.get_balance(uuid4())
        assert balance.currency == "KES"
        assert balance.available_balance == Decimal("0")

    async def test_untouched_balance_takes_first_entry_currency(self, session, ledger):
        user_id = uuid4()
        assert (await ledger.get_balance(user_id)).currency == "USD"

        await ledger.record_transaction(
            user_id=user_id,
            transaction_type=TransactionType.EARNINGS,
            amount=Decimal("18750"),
            reference_id="o1",
            reference_type="marketplace",
            currency="tzs",
        )
        await session.commit()

        balance = await ledger.get_balance(user_id)
        assert balance.currency == "TZS"
        assert balance.available_balance == Decimal("18750")


class TestReplay:
    """Test replay verification."""

    async def test_replay_matches_stored_balance(self, session, ledger):
        user_id = uuid4()
        for i, amount in enumerate(["9.20", "0.75", "18.40"]):
            await _earn(ledger, user_id, amount, reference=f"o{i}")
        await ledger.record_transaction(
            user_id=user_id,
            transaction_type=TransactionType.PAYOUT,
            amount=Decimal("10.00"),
            reference_id="payout-1",
            reference_type="payout",
        )
        await session.commit()

        verification = await ledger.verify_balance(user_id)

        assert verification.is_consistent is True
        assert verification.replay.transaction_count == 4
        assert verification.replay.available_balance == Decimal("18.35")
        assert verification.replay.total_paid_out == Decimal("10.00")

    async def test_replay_detects_tampered_balance(self, session, ledger):
        user_id = uuid4()
        await _earn(ledger, user_id, "5.00")
        await session.commit()

        balance = await ledger.get_balance(user_id)
        balance.available_balance = Decimal("500.00")
        await session.commit()

        verification = await ledger.verify_balance(user_id)
        assert verification.is_consistent is False
        assert verification.stored_available == Decimal("500.00")

    async def test_replay_detects_broken_chain(self, session, ledger):
        user_id = uuid4()
        await _earn(ledger, user_id, "5.00")
        session.add(
            FinancialTransaction(
                user_id=user_id,
                sequence=3,
                transaction_type="earnings",
                amount=Decimal("1.00"),
                currency="USD",
                balance_before=Decimal("7.00"),
                balance_after=Decimal("8.00"),
                reference_id="forged",
                reference_type="marketplace",
            )
        )
        await session.commit()

        replay = await ledger.replay_balance(user_id)

        assert any("sequence gap" in err for err in replay.chain_errors)
        assert any("balance_before" in err for err in replay.chain_errors)

    async def test_user_without_entries_is_consistent(self, ledger):
        verification = await ledger.verify_balance(uuid4())
        assert verification.is_consistent is True
        assert verification.replay.transaction_count == 0


class TestQueries:
    """Test history, summaries and export."""

    async def test_history_is_newest_first_and_filterable(self, session, ledger):
        user_id = uuid4()
        await _earn(ledger, user_id, "1.00", reference="o1")
        await _earn(ledger, user_id, "2.00", reference="o2")
        await ledger.record_transaction(
            user_id=user_id,
            transaction_type=TransactionType.PAYOUT,
            amount=Decimal("1.50"),
            reference_id="payout-1",
            reference_type="payout",
        )
        await session.commit()

        page = await ledger.get_transaction_history(user_id, limit=2)
        assert page.total == 3
        assert [t.sequence for t in page.items] == [3, 2]

        earnings = await ledger.get_transaction_history(user_id, transaction_type="earnings")
        assert earnings.total == 2

    async def test_financial_summary(self, session, ledger):
        user_id = uuid4()
        await _earn(ledger, user_id, "9.20")
        await ledger.record_transaction(
            user_id=user_id,
            transaction_type=TransactionType.EARNINGS,
            amount=Decimal("3.00"),
            reference_id="tip_1",
            reference_type="tip",
        )
        await ledger.record_transaction(
            user_id=user_id,
            transaction_type=TransactionType.PAYOUT,
            amount=Decimal("5.00"),
            reference_id="payout-1",
            reference_type="payout",
        )
        await session.commit()

        summary = await ledger.get_financial_summary(user_id)

        assert summary.earnings_count == 2
        assert summary.earnings_total == Decimal("12.20")
        assert summary.payouts_total == Decimal("5.00")
        assert summary.net == Decimal("7.20")
        assert summary.earnings_by_type == {
            "marketplace": Decimal("9.20"),
            "tip": Decimal("3.00"),
        }

    async def test_export_csv(self, session, ledger):
        user_id = uuid4()
        await _earn(ledger, user_id, "9.20", reference="ord-1")
        await session.commit()

        content = await ledger.export_transactions_csv(user_id)
        lines = content.strip().splitlines()

        assert lines[0].startswith("date,type,amount,currency")
        assert len(lines) == 2
        assert ",earnings,9.2" in lines[1]
        assert "ord-1" in lines[1]
