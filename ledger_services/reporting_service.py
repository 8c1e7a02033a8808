"""
ledger_services.reporting_service -- Reports derived from POSTED entries.

Profit and loss over a date range, aged receivables as of a date, and
outstanding receivable per lease.  No report stores anything: each call
re-aggregates the ledger, so a void is reflected the moment it happens.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_engines.aging import AgingReport, ReceivableEntry, age_receivables
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.values import ZERO, AccountType
from ledger_kernel.exceptions import ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.selectors.ledger_selector import AccountBalance, LedgerSelector

logger = get_logger("services.reporting")


@dataclass(frozen=True)
class ReportLine:
    account_code: str
    account_name: str
    amount: Decimal


@dataclass(frozen=True)
class ProfitAndLoss:
    start_date: date
    end_date: date
    income: list[ReportLine]
    expenses: list[ReportLine]

    @property
    def total_income(self) -> Decimal:
        return sum((line.amount for line in self.income), ZERO)

    @property
    def total_expenses(self) -> Decimal:
        return sum((line.amount for line in self.expenses), ZERO)

    @property
    def net_operating_income(self) -> Decimal:
        return self.total_income - self.total_expenses


@dataclass(frozen=True)
class TenantBalance:
    lease_id: str
    balance: Decimal


def _report_lines(balances: list[AccountBalance]) -> list[ReportLine]:
    return [
        ReportLine(b.account_code, b.account_name, b.balance)
        for b in balances
        if b.balance != ZERO
    ]


class ReportingService:
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.settings = settings or LedgerSettings()
        self.selector = LedgerSelector(session)

    @property
    def _receivable_code(self) -> str:
        return self.settings.system_accounts.accounts_receivable

    def profit_and_loss(self, start_date: date, end_date: date) -> ProfitAndLoss:
        """
        Income and expense per account over [start_date, end_date].

        Income accounts report CR - DR, expense accounts DR - CR, so refunds
        and reversals reduce the line they belong to.
        """
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date", field="start_date")
        income = self.selector.balances_by_account(
            (AccountType.INCOME,), start_date=start_date, end_date=end_date
        )
        expenses = self.selector.balances_by_account(
            (AccountType.EXPENSE,), start_date=start_date, end_date=end_date
        )
        report = ProfitAndLoss(
            start_date=start_date,
            end_date=end_date,
            income=_report_lines(income),
            expenses=_report_lines(expenses),
        )
        logger.info(
            "profit_and_loss_generated",
            extra={
                "start_date": start_date,
                "end_date": end_date,
                "net_operating_income": str(report.net_operating_income),
            },
        )
        return report

    def aged_receivables(self, as_of: date | None = None) -> AgingReport:
        """Open receivable per lease, oldest charges settled first, bucketed by age."""
        as_of = as_of or self.clock.today()
        grouped = self.selector.receivable_entries(as_of, self._receivable_code)
        entries_by_lease = {
            lease_id: [
                ReceivableEntry(e.entry_date, e.amount, e.debit_credit, e.description)
                for e in entries
            ]
            for lease_id, entries in grouped.items()
        }
        return age_receivables(entries_by_lease=entries_by_lease, as_of=as_of)

    def tenant_balances(self, as_of: date | None = None, include_zero: bool = False) -> list[TenantBalance]:
        """Receivable balance per lease, largest first."""
        balances = [
            TenantBalance(lease_id, balance)
            for lease_id, balance in self.selector.lease_balances(self._receivable_code, as_of).items()
            if include_zero or balance != ZERO
        ]
        balances.sort(key=lambda b: (-b.balance, b.lease_id))
        return balances
