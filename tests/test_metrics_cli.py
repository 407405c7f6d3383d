"""Tests for ledger metrics, the health summary and the operator CLI."""

import json
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import text

from marketplace_ledger.cli import LedgerCli
from marketplace_ledger.exceptions import GatewayError
from marketplace_ledger.metrics import MetricsCollector, generate_health_summary
from marketplace_ledger.models import Payment, UserBalance, utcnow


class TestMetricsCollector:
    """Test metric collection from the database."""

    async def test_empty_database(self, session):
        metrics = await MetricsCollector(session).collect_all()

        assert metrics.payments_by_status == []
        assert metrics.ledger_entries_total.value == 0
        assert metrics.negative_balances.value == 0

    async def test_collects_after_payment(
        self, session, data, payment_service, gateway, reconciler
    ):
        await data.paid_order(payment_service, gateway, reconciler)
        await data.paid_order(payment_service, gateway, reconciler)

        metrics = await MetricsCollector(session).collect_all()

        assert [(c.labels, c.value) for c in metrics.payments_by_status] == [
            ({"status": "completed"}, 2)
        ]
        assert metrics.ledger_entries_total.value == 2
        [fees] = metrics.platform_fees_collected
        assert fees.labels == {"currency": "USD"}
        assert fees.value == Decimal("1.60")
        [balance] = metrics.available_balance_total
        assert balance.value == Decimal("18.40")

    async def test_prometheus_describes_each_metric_once(
        self, session, data, payment_service, gateway, reconciler
    ):
        await data.paid_order(payment_service, gateway, reconciler)
        gateway.accept_payments = False
        with pytest.raises(GatewayError):
            await data.paid_order(payment_service, gateway, reconciler)

        text = (await MetricsCollector(session).collect_all()).to_prometheus()

        assert text.count("# TYPE ledger_payments_total counter") == 1
        assert text.count("# HELP ledger_payments_total") == 1
        assert 'ledger_payments_total{status="completed"} 1' in text
        assert 'ledger_payments_total{status="failed"} 1' in text
        assert "ledger_platform_fees_collected{currency=\"USD\"} 0.8" in text

    async def test_json_output(self, session):
        body = json.loads((await MetricsCollector(session).collect_all()).to_json())

        assert "collected_at" in body
        assert body["stuck_payments"]["name"] == "ledger_stuck_payments"
        assert body["stuck_payments"]["value"] == 0


class TestHealthSummary:
    """Test operator alerts."""

    async def test_healthy(self, session, data, payment_service, gateway, reconciler):
        await data.paid_order(payment_service, gateway, reconciler)

        summary = await generate_health_summary(session)

        assert summary.payments_by_status == {"completed": 1}
        assert summary.failure_rate == 0.0
        assert summary.alerts == []

    async def test_negative_balance_and_stuck_payment_alerts(self, session, data):
        # The schema forbids negative balances; lift CHECK enforcement on this
        # connection to seed the corruption the alert exists to catch
        await session.execute(text("PRAGMA ignore_check_constraints = ON"))
        session.add(
            UserBalance(
                user_id=uuid4(),
                available_balance=Decimal("-1.00"),
                pending_balance=Decimal("0"),
                total_earned=Decimal("0"),
                total_paid_out=Decimal("1.00"),
                currency="USD",
                last_sequence=1,
            )
        )
        session.add(
            Payment(
                order_id="ord-stuck",
                user_id=data.buyer_id,
                amount=Decimal("10.55"),
                currency="USD",
                status="initiated",
                created_at=utcnow() - timedelta(days=2),
            )
        )
        await session.commit()

        summary = await generate_health_summary(session)

        assert summary.negative_balance_count == 1
        assert summary.stuck_payments == 1
        assert any(a.startswith("CRITICAL") for a in summary.alerts)
        assert any("stuck" in a for a in summary.alerts)


class TestLedgerCli:
    """Test the command line interface."""

    def test_quote(self, capsys):
        code = LedgerCli().run(
            ["quote", "--category", "marketplace", "--amount", "10.00", "--currency", "USD"]
        )

        assert code == 0
        output = json.loads(capsys.readouterr().out)
        assert output["platform_fee"] == "0.80"
        assert output["creator_payout"] == "9.20"
        assert output["total"] == "10.55"

    def test_quote_unknown_tier(self, capsys):
        code = LedgerCli().run(
            [
                "quote",
                "--category",
                "marketplace",
                "--amount",
                "10.00",
                "--percentage-tier",
                "diamond",
            ]
        )

        assert code == 1
        assert "diamond" in capsys.readouterr().err

    def test_invalid_amount_exits(self):
        with pytest.raises(SystemExit):
            LedgerCli().run(["quote", "--category", "tip", "--amount", "lots"])

    def test_no_command(self, capsys):
        assert LedgerCli().run([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_database_commands(self, tmp_path, capsys):
        url = f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
        user_id = str(uuid4())
        cli = LedgerCli()

        assert cli.run(["--database-url", url, "init-db"]) == 0
        assert "Tables created" in capsys.readouterr().out

        assert cli.run(["--database-url", url, "balance", "--user-id", user_id]) == 0
        balance = json.loads(capsys.readouterr().out)
        assert balance["user_id"] == user_id
        assert Decimal(balance["available_balance"]) == 0

        assert cli.run(["--database-url", url, "verify-ledger"]) == 0
        assert "PASSED" in capsys.readouterr().out

        assert cli.run(["--database-url", url, "metrics", "--format", "prometheus"]) == 0
        assert "# TYPE ledger_entries_total counter" in capsys.readouterr().out

        assert cli.run(["--database-url", url, "health"]) == 0

        export = tmp_path / "ledger.csv"
        assert cli.run(
            [
                "--database-url",
                url,
                "export-transactions",
                "--user-id",
                user_id,
                "--output",
                str(export),
            ]
        ) == 0
        assert export.read_text(encoding="utf-8").startswith("date,type,amount,currency")
