#!/usr/bin/env python3
"""
Ledger administration commands.

Usage:
    python3 scripts/ledger_admin.py init
    python3 scripts/ledger_admin.py trial-balance [--as-of 2025-01-31]
    python3 scripts/ledger_admin.py balances --lease lease-17
    python3 scripts/ledger_admin.py post-due-charges [--as-of 2025-02-01]

Global options:
    --config PATH          settings YAML (default: LEDGER_CONFIG or packaged defaults)
    --database-url URL     overrides the configured database URL

Exit status is 0 on success and 1 when the ledger rejects the request.
"""

from __future__ import annotations

import argparse
import sys
from datetime import date
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from ledger_config import account_definitions, load_settings  # noqa: E402
from ledger_kernel.db.engine import create_tables, init_engine_from_url, session_scope  # noqa: E402
from ledger_kernel.db.immutability import register_immutability_listeners  # noqa: E402
from ledger_kernel.domain.clock import SystemClock  # noqa: E402
from ledger_kernel.exceptions import LedgerError  # noqa: E402
from ledger_kernel.logging_config import configure_logging  # noqa: E402
from ledger_kernel.selectors.ledger_selector import LedgerSelector  # noqa: E402
from ledger_kernel.services.chart_of_accounts import ChartOfAccountsService  # noqa: E402
from ledger_services.scheduled_charges import ScheduledChargeService  # noqa: E402


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {value}") from e


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Property ledger administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML file.")
    parser.add_argument("--database-url", default=None, help="Database URL override.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init", help="Create tables and seed the chart of accounts.")

    tb = commands.add_parser("trial-balance", help="Print the trial balance.")
    tb.add_argument("--as-of", type=_iso_date, default=None)
    tb.add_argument("--all-accounts", action="store_true", help="Include accounts without activity.")

    balances = commands.add_parser("balances", help="Print the receivable balance of a lease.")
    balances.add_argument("--lease", required=True)

    charges = commands.add_parser("post-due-charges", help="Post scheduled charges that are due.")
    charges.add_argument("--as-of", type=_iso_date, default=None)
    charges.add_argument("--lease", default=None)

    return parser.parse_args(argv)


def _cmd_init(session, settings, args) -> None:
    create_tables()
    created = ChartOfAccountsService(session).seed_default_chart(account_definitions(settings))
    print(f"Tables ready. {len(created)} account(s) created.")
    for account in created:
        print(f"  {account.code:<6} {account.name}")


def _cmd_trial_balance(session, settings, args) -> None:
    tb = LedgerSelector(session).trial_balance(
        as_of=args.as_of, include_zero_accounts=args.all_accounts
    )
    heading = f"TRIAL BALANCE as of {tb.as_of}" if tb.as_of else "TRIAL BALANCE"
    print(heading)
    print(f"{'Code':<6} {'Account':<34} {'Debit':>14} {'Credit':>14}")
    print("-" * 70)
    for row in tb.rows:
        print(
            f"{row.account_code:<6} {row.account_name[:34]:<34} "
            f"{row.debit_total:>14,.2f} {row.credit_total:>14,.2f}"
        )
    print("-" * 70)
    print(f"{'Totals':<41} {tb.total_debits:>14,.2f} {tb.total_credits:>14,.2f}")
    print("BALANCED" if tb.is_balanced else "OUT OF BALANCE")


def _cmd_balances(session, settings, args) -> None:
    receivable = settings.system_accounts.accounts_receivable
    selector = LedgerSelector(session)
    balance = selector.tenant_balance(args.lease, receivable)
    print(f"Lease {args.lease}: {balance:,.2f} outstanding")
    for entry in selector.entries_for_lease(args.lease):
        print(
            f"  {entry.entry_date}  {entry.account_code:<6} {entry.debit_credit.value}  "
            f"{entry.amount:>12,.2f}  {entry.description}"
        )


def _cmd_post_due_charges(session, settings, args) -> None:
    service = ScheduledChargeService(session, SystemClock(), settings)
    results = service.post_due_charges(as_of=args.as_of, lease_id=args.lease)
    if not results:
        print("No charges due.")
    for result in results:
        print(
            f"  [{result.outcome.value:<7}] {result.lease_id:<20} "
            f"{result.amount:>10,.2f}  {result.message}"
        )


COMMANDS = {
    "init": _cmd_init,
    "trial-balance": _cmd_trial_balance,
    "balances": _cmd_balances,
    "post-due-charges": _cmd_post_due_charges,
}


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        settings = load_settings(args.config)
        configure_logging(level=settings.log_level)
        init_engine_from_url(args.database_url or settings.database.url, echo=settings.database.echo)
        register_immutability_listeners()
        with session_scope() as session:
            COMMANDS[args.command](session, settings, args)
    except LedgerError as e:
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
