"""Marketplace ledger command line interface.

Provides operational tools for:
- Fee quotes
- Balance queries
- Ledger verification (replay against stored balances)
- Metrics emission and health checks
- Transaction export

Usage:
    marketplace-ledger quote --category marketplace --amount 10.00 --currency USD
    marketplace-ledger balance --user-id X
    marketplace-ledger verify-ledger [--user-id X]
    marketplace-ledger metrics --format prometheus
    marketplace-ledger export-transactions --user-id X --output ledger.csv
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_ledger.calculators import FeeCalculator, TransactionCategory
from marketplace_ledger.config import configure_logging
from marketplace_ledger.database import create_tables, dispose_db, init_db
from marketplace_ledger.exceptions import LedgerError
from marketplace_ledger.metrics import MetricsCollector, generate_health_summary
from marketplace_ledger.services.ledger_service import LedgerService

T = TypeVar("T")


def parse_datetime(s: str) -> datetime:
    """Parse ISO datetime string."""
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_decimal(s: str) -> Decimal:
    """Parse a decimal amount."""
    try:
        return Decimal(s)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"Invalid amount: {s}") from e


class LedgerCli:
    """Marketplace ledger command line interface."""

    def __init__(self, calculator: FeeCalculator | None = None) -> None:
        self.calculator = calculator or FeeCalculator()
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="marketplace-ledger",
            description="Marketplace ledger operational tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: $DATABASE_URL)",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            default="WARNING",
            help="Log level (default: WARNING)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # quote command
        quote = subparsers.add_parser(
            "quote",
            help="Show the fee breakdown for an amount",
        )
        quote.add_argument(
            "--category",
            type=str,
            choices=[c.value for c in TransactionCategory],
            required=True,
            help="Transaction category",
        )
        quote.add_argument(
            "--amount",
            type=parse_decimal,
            required=True,
            help="Subtotal before fees",
        )
        quote.add_argument(
            "--currency",
            type=str,
            default="TZS",
            help="ISO currency code (default: TZS)",
        )
        quote.add_argument(
            "--percentage-tier",
            type=str,
            help="Percentage pricing tier (basic, premium, pro)",
        )
        quote.add_argument(
            "--subscription-tier",
            type=str,
            help="Subscription tier (free, creator, professional, enterprise)",
        )

        # balance command
        balance = subparsers.add_parser(
            "balance",
            help="Query a user's balance",
        )
        balance.add_argument(
            "--user-id",
            type=parse_uuid,
            required=True,
            help="User ID",
        )

        # verify-ledger command
        verify = subparsers.add_parser(
            "verify-ledger",
            help="Replay transaction logs and compare with stored balances",
        )
        verify.add_argument(
            "--user-id",
            type=parse_uuid,
            help="Verify one user (default: every user with a balance)",
        )

        # metrics command
        metrics = subparsers.add_parser(
            "metrics",
            help="Emit ledger metrics",
        )
        metrics.add_argument(
            "--format",
            type=str,
            choices=["json", "prometheus"],
            default="json",
            help="Output format",
        )

        # health command
        subparsers.add_parser(
            "health",
            help="Summarise ledger health and alerts",
        )

        # export-transactions command
        export = subparsers.add_parser(
            "export-transactions",
            help="Export a user's transactions as CSV",
        )
        export.add_argument(
            "--user-id",
            type=parse_uuid,
            required=True,
            help="User ID",
        )
        export.add_argument(
            "--since",
            type=parse_datetime,
            help="Export transactions after this timestamp",
        )
        export.add_argument(
            "--until",
            type=parse_datetime,
            help="Export transactions before this timestamp",
        )
        export.add_argument(
            "--output",
            type=str,
            help="Output file path (default: stdout)",
        )

        # init-db command
        subparsers.add_parser(
            "init-db",
            help="Create any missing tables",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(parsed.log_level.upper())

        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "quote": self._cmd_quote,
            "balance": self._cmd_balance,
            "verify-ledger": self._cmd_verify_ledger,
            "metrics": self._cmd_metrics,
            "health": self._cmd_health,
            "export-transactions": self._cmd_export_transactions,
            "init-db": self._cmd_init_db,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return handler(parsed)
        except LedgerError as e:
            print(f"ERROR: {e.message}", file=sys.stderr)
            return 1

    def _with_session(
        self,
        args: argparse.Namespace,
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        async def runner() -> T:
            _, factory = init_db(args.database_url)
            try:
                async with factory() as session:
                    result = await work(session)
                    await session.commit()
                    return result
            finally:
                await dispose_db()

        return asyncio.run(runner())

    def _cmd_quote(self, args: argparse.Namespace) -> int:
        """Print a fee breakdown."""
        try:
            fees = self.calculator.calculate_for(
                args.category,
                args.amount,
                args.currency,
                percentage_tier=args.percentage_tier,
                subscription_tier=args.subscription_tier,
            )
        except ValueError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        print(json.dumps(fees.to_dict(), indent=2))
        return 0

    def _cmd_balance(self, args: argparse.Namespace) -> int:
        """Print a user's balance."""

        async def work(session: AsyncSession) -> dict[str, Any]:
            balance = await LedgerService(session).get_balance(args.user_id)
            return {
                "user_id": str(balance.user_id),
                "currency": balance.currency,
                "available_balance": str(balance.available_balance),
                "pending_balance": str(balance.pending_balance),
                "total_earned": str(balance.total_earned),
                "total_paid_out": str(balance.total_paid_out),
                "last_sequence": balance.last_sequence,
            }

        print(json.dumps(self._with_session(args, work), indent=2))
        return 0

    def _cmd_verify_ledger(self, args: argparse.Namespace) -> int:
        """Replay transaction logs; exit 1 on any mismatch."""

        async def work(session: AsyncSession) -> list[str]:
            ledger = LedgerService(session)
            user_ids = [args.user_id] if args.user_id else await ledger.list_user_ids()
            issues: list[str] = []
            for user_id in user_ids:
                verification = await ledger.verify_balance(user_id)
                if verification.is_consistent:
                    print(f"  ✓ {user_id} ({verification.replay.transaction_count} entries)")
                    continue
                print(f"  ✗ {user_id}")
                issues.append(
                    f"{user_id}: stored available {verification.stored_available}, "
                    f"replayed {verification.replay.available_balance}"
                )
                issues.extend(f"{user_id}: {err}" for err in verification.replay.chain_errors)
            return issues

        print("Verifying ledger balances...")
        issues = self._with_session(args, work)

        print("\n" + "=" * 60)
        if not issues:
            print("Ledger verification: PASSED")
            return 0
        print("Ledger verification: FAILED")
        print(f"\n{len(issues)} issue(s) found:")
        for issue in issues:
            print(f"  - {issue}")
        return 1

    def _cmd_metrics(self, args: argparse.Namespace) -> int:
        """Emit metrics."""

        async def work(session: AsyncSession) -> str:
            metrics = await MetricsCollector(session).collect_all()
            if args.format == "prometheus":
                return metrics.to_prometheus()
            return metrics.to_json()

        print(self._with_session(args, work))
        return 0

    def _cmd_health(self, args: argparse.Namespace) -> int:
        """Print a health summary; exit 1 on critical alerts."""
        summary = self._with_session(args, generate_health_summary)

        print(f"Ledger health for {summary.date}")
        print(f"  Payments by status: {summary.payments_by_status}")
        print(f"  Negative balances:  {summary.negative_balance_count}")
        print(f"  Stuck payments:     {summary.stuck_payments}")
        print(f"  Stuck payouts:      {summary.stuck_payouts}")
        print(f"  Failure rate:       {summary.failure_rate:.1f}%")
        if summary.alerts:
            print("\nAlerts:")
            for alert in summary.alerts:
                print(f"  - {alert}")
        return 1 if any(a.startswith("CRITICAL") for a in summary.alerts) else 0

    def _cmd_export_transactions(self, args: argparse.Namespace) -> int:
        """Write a user's transactions as CSV."""

        async def work(session: AsyncSession) -> str:
            return await LedgerService(session).export_transactions_csv(
                args.user_id, args.since, args.until
            )

        content = self._with_session(args, work)
        if args.output:
            with open(args.output, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            print(f"Exported to {args.output}")
        else:
            sys.stdout.write(content)
        return 0

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create tables."""

        async def runner() -> None:
            init_db(args.database_url)
            try:
                await create_tables()
            finally:
                await dispose_db()

        asyncio.run(runner())
        print("Tables created.")
        return 0


def main() -> int:
    """CLI entry point."""
    cli = LedgerCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
