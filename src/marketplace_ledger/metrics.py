"""Ledger observability metrics.

Metric Categories:
- Payment metrics: payments by status
- Fee metrics: fee records by status, collected platform fees
- Payout metrics: payouts by status, paid-out amounts
- Ledger metrics: entry counts, available balances
- Health indicators: negative balances, stuck payments and payouts

Usage:
    collector = MetricsCollector(session)
    metrics = await collector.collect_all()

    # For Prometheus export
    print(metrics.to_prometheus())

    # For JSON export
    print(metrics.to_json())
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_ledger.models import (
    FinancialTransaction,
    Payment,
    Payout,
    PlatformFeeRecord,
    UserBalance,
    utcnow,
)
from marketplace_ledger.services.state_machine import FeeStatus, PaymentStatus, PayoutStatus

STUCK_PAYMENT_AGE = timedelta(hours=24)
STUCK_PAYOUT_AGE = timedelta(hours=24)


@dataclass
class Counter:
    """A counter metric (monotonically increasing)."""

    name: str
    value: int
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""


@dataclass
class Gauge:
    """A gauge metric (can go up or down)."""

    name: str
    value: float | int | Decimal
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""


Metric = Counter | Gauge


def _number(value: Any) -> float | int:
    return float(value) if isinstance(value, Decimal) else value


@dataclass
class LedgerMetrics:
    """Collection of all ledger metrics."""

    # Payments
    payments_by_status: list[Counter]

    # Fees
    fee_records_by_status: list[Counter]
    platform_fees_collected: list[Gauge]

    # Payouts
    payouts_by_status: list[Counter]
    payouts_paid_amount: list[Gauge]

    # Ledger
    ledger_entries_total: Counter
    available_balance_total: list[Gauge]

    # Health indicators
    negative_balances: Gauge
    stuck_payments: Gauge
    stuck_payouts: Gauge

    collected_at: datetime = field(default_factory=utcnow)

    def metrics(self) -> list[Metric]:
        """All metrics, flattened in declaration order."""
        result: list[Metric] = []
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, list):
                result.extend(value)
            elif isinstance(value, (Counter, Gauge)):
                result.append(value)
        return result

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"collected_at": self.collected_at.isoformat()}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, list):
                result[f.name] = [self._metric_to_dict(m) for m in value]
            elif isinstance(value, (Counter, Gauge)):
                result[f.name] = self._metric_to_dict(value)
        return result

    @staticmethod
    def _metric_to_dict(metric: Metric) -> dict[str, Any]:
        return {
            "name": metric.name,
            "value": _number(metric.value),
            "labels": metric.labels,
            "help": metric.help_text,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    def to_prometheus(self) -> str:
        """Convert to Prometheus text format."""
        lines: list[str] = []
        described: set[str] = set()

        for metric in self.metrics():
            if metric.name not in described:
                described.add(metric.name)
                if metric.help_text:
                    lines.append(f"# HELP {metric.name} {metric.help_text}")
                metric_type = "counter" if isinstance(metric, Counter) else "gauge"
                lines.append(f"# TYPE {metric.name} {metric_type}")

            labels = ""
            if metric.labels:
                label_parts = [f'{k}="{v}"' for k, v in metric.labels.items()]
                labels = "{" + ",".join(label_parts) + "}"
            lines.append(f"{metric.name}{labels} {_number(metric.value)}")

        return "\n".join(lines) + "\n"


class MetricsCollector:
    """Collects metrics from the database."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def collect_all(self) -> LedgerMetrics:
        """Collect all metrics."""
        return LedgerMetrics(
            payments_by_status=await self._count_payments_by_status(),
            fee_records_by_status=await self._count_fee_records_by_status(),
            platform_fees_collected=await self._sum_platform_fees(),
            payouts_by_status=await self._count_payouts_by_status(),
            payouts_paid_amount=await self._sum_paid_payouts(),
            ledger_entries_total=await self._count_ledger_entries(),
            available_balance_total=await self._sum_available_balances(),
            negative_balances=await self._gauge_negative_balances(),
            stuck_payments=await self._gauge_stuck_payments(),
            stuck_payouts=await self._gauge_stuck_payouts(),
        )

    async def _count_payments_by_status(self) -> list[Counter]:
        rows = await self._session.execute(
            select(Payment.status, func.count()).group_by(Payment.status)
        )
        return [
            Counter(
                name="ledger_payments_total",
                value=count,
                labels={"status": status},
                help_text="Payments by status",
            )
            for status, count in rows
        ]

    async def _count_fee_records_by_status(self) -> list[Counter]:
        rows = await self._session.execute(
            select(
                PlatformFeeRecord.status,
                PlatformFeeRecord.payout_status,
                func.count(),
            ).group_by(PlatformFeeRecord.status, PlatformFeeRecord.payout_status)
        )
        return [
            Counter(
                name="ledger_fee_records_total",
                value=count,
                labels={"status": status, "payout_status": payout_status},
                help_text="Platform fee records by collection and payout status",
            )
            for status, payout_status, count in rows
        ]

    async def _sum_platform_fees(self) -> list[Gauge]:
        rows = await self._session.execute(
            select(PlatformFeeRecord.currency, func.sum(PlatformFeeRecord.platform_fee))
            .where(PlatformFeeRecord.status == FeeStatus.COLLECTED.value)
            .group_by(PlatformFeeRecord.currency)
        )
        return [
            Gauge(
                name="ledger_platform_fees_collected",
                value=Decimal(str(total or 0)),
                labels={"currency": currency},
                help_text="Platform fees collected from completed payments",
            )
            for currency, total in rows
        ]

    async def _count_payouts_by_status(self) -> list[Counter]:
        rows = await self._session.execute(
            select(Payout.status, func.count()).group_by(Payout.status)
        )
        return [
            Counter(
                name="ledger_payouts_total",
                value=count,
                labels={"status": status},
                help_text="Payouts by status",
            )
            for status, count in rows
        ]

    async def _sum_paid_payouts(self) -> list[Gauge]:
        rows = await self._session.execute(
            select(Payout.currency, func.sum(Payout.amount))
            .where(Payout.status == PayoutStatus.PAID.value)
            .group_by(Payout.currency)
        )
        return [
            Gauge(
                name="ledger_payouts_paid_amount",
                value=Decimal(str(total or 0)),
                labels={"currency": currency},
                help_text="Amount paid out to creators",
            )
            for currency, total in rows
        ]

    async def _count_ledger_entries(self) -> Counter:
        count = await self._session.scalar(select(func.count()).select_from(FinancialTransaction))
        return Counter(
            name="ledger_entries_total",
            value=count or 0,
            help_text="Financial transactions recorded",
        )

    async def _sum_available_balances(self) -> list[Gauge]:
        rows = await self._session.execute(
            select(UserBalance.currency, func.sum(UserBalance.available_balance)).group_by(
                UserBalance.currency
            )
        )
        return [
            Gauge(
                name="ledger_available_balance_total",
                value=Decimal(str(total or 0)),
                labels={"currency": currency},
                help_text="Sum of available user balances",
            )
            for currency, total in rows
        ]

    async def _gauge_negative_balances(self) -> Gauge:
        count = await self._session.scalar(
            select(func.count())
            .select_from(UserBalance)
            .where(UserBalance.available_balance < 0)
        )
        return Gauge(
            name="ledger_negative_balances",
            value=count or 0,
            help_text="Balances below zero (should always be 0)",
        )

    async def _gauge_stuck_payments(self) -> Gauge:
        cutoff = utcnow() - STUCK_PAYMENT_AGE
        count = await self._session.scalar(
            select(func.count())
            .select_from(Payment)
            .where(
                Payment.status.in_(
                    [PaymentStatus.PENDING.value, PaymentStatus.INITIATED.value]
                ),
                Payment.created_at < cutoff,
            )
        )
        return Gauge(
            name="ledger_stuck_payments",
            value=count or 0,
            help_text="Payments without a terminal status after 24h",
        )

    async def _gauge_stuck_payouts(self) -> Gauge:
        cutoff = utcnow() - STUCK_PAYOUT_AGE
        count = await self._session.scalar(
            select(func.count())
            .select_from(Payout)
            .where(
                Payout.status == PayoutStatus.PROCESSING.value,
                Payout.updated_at < cutoff,
            )
        )
        return Gauge(
            name="ledger_stuck_payouts",
            value=count or 0,
            help_text="Payouts processing for more than 24h",
        )


@dataclass
class HealthSummary:
    """Health summary for operators."""

    date: str
    payments_by_status: dict[str, int]
    negative_balance_count: int
    stuck_payments: int
    stuck_payouts: int
    failure_rate: float  # percentage of terminal payments that failed
    alerts: list[str]


async def generate_health_summary(session: AsyncSession) -> HealthSummary:
    """Summarise metrics into operator alerts."""
    metrics = await MetricsCollector(session).collect_all()
    by_status = {c.labels["status"]: c.value for c in metrics.payments_by_status}

    alerts = []
    if metrics.negative_balances.value > 0:
        alerts.append(
            f"CRITICAL: {metrics.negative_balances.value} accounts have negative balance"
        )
    if metrics.stuck_payments.value > 0:
        alerts.append(f"WARNING: {metrics.stuck_payments.value} payments stuck > 24h")
    if metrics.stuck_payouts.value > 0:
        alerts.append(f"WARNING: {metrics.stuck_payouts.value} payouts processing > 24h")

    completed = by_status.get(PaymentStatus.COMPLETED.value, 0)
    failed = by_status.get(PaymentStatus.FAILED.value, 0)
    terminal = completed + failed
    failure_rate = (failed / terminal * 100) if terminal > 0 else 0.0
    if failure_rate > 20.0:
        alerts.append(f"WARNING: Payment failure rate is {failure_rate:.1f}% (threshold: 20%)")

    return HealthSummary(
        date=utcnow().date().isoformat(),
        payments_by_status=by_status,
        negative_balance_count=int(metrics.negative_balances.value),
        stuck_payments=int(metrics.stuck_payments.value),
        stuck_payouts=int(metrics.stuck_payouts.value),
        failure_rate=failure_rate,
        alerts=alerts,
    )
