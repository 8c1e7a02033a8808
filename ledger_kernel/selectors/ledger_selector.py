"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries: entry listings, account and
    tenant balances, per-transaction totals and the trial balance.  The
    ledger is a derived view over POSTED entries; no balance is stored.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - VOID entries never contribute to a balance or report.
    - balance = DR - CR for DR-normal accounts, CR - DR for CR-normal ones.
    - All totals are Decimal quantized to cents.

Failure modes:
    - Balances of accounts without activity are zero, not errors.
    - UnknownAccountError from account_balance() if the code is not in the
      chart (a typo must not read as a zero balance).
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import PostedEntry
from ledger_kernel.domain.values import (
    ZERO,
    AccountType,
    DebitCredit,
    EntryStatus,
    normal_balance_for,
    quantize,
)
from ledger_kernel.exceptions import UnknownAccountError
from ledger_kernel.models.account import Account
from ledger_kernel.models.ledger_entry import LedgerEntry
from ledger_kernel.selectors.base import BaseSelector

# Accounts receivable: the tenant-balance account
RECEIVABLE_ACCOUNT = "1200"


def _debit_sum():
    return func.sum(
        case((LedgerEntry.debit_credit == DebitCredit.DR.value, LedgerEntry.amount), else_=0)
    ).label("debit_total")


def _credit_sum():
    return func.sum(
        case((LedgerEntry.debit_credit == DebitCredit.CR.value, LedgerEntry.amount), else_=0)
    ).label("credit_total")


def _normal_balance(normal_side: DebitCredit | str, debits: Decimal, credits: Decimal) -> Decimal:
    if DebitCredit(normal_side) == DebitCredit.DR:
        return debits - credits
    return credits - debits


@dataclass(frozen=True)
class EntryFilter:
    """Filter for entry listings.  None means "do not filter on this"."""

    account_code: str | None = None
    lease_id: str | None = None
    status: EntryStatus | None = None
    start_date: date | None = None
    end_date: date | None = None
    transaction_id: UUID | None = None
    reference: str | None = None
    limit: int | None = None


@dataclass(frozen=True)
class AccountBalance:
    """Balance of one account, optionally narrowed to a lease or date range."""

    account_code: str
    account_name: str
    account_type: AccountType
    normal_balance: DebitCredit
    debit_total: Decimal
    credit_total: Decimal
    entry_count: int

    @property
    def balance(self) -> Decimal:
        """Signed by the account's normal side: positive means a normal balance."""
        return _normal_balance(self.normal_balance, self.debit_total, self.credit_total)


@dataclass(frozen=True)
class TrialBalanceRow:
    account_code: str
    account_name: str
    account_type: AccountType
    normal_balance: DebitCredit
    debit_total: Decimal
    credit_total: Decimal

    @property
    def balance(self) -> Decimal:
        return _normal_balance(self.normal_balance, self.debit_total, self.credit_total)

    @property
    def balance_side(self) -> str:
        """DR, CR or ZERO: which column the net amount falls in."""
        net = self.debit_total - self.credit_total
        if net > 0:
            return DebitCredit.DR.value
        if net < 0:
            return DebitCredit.CR.value
        return "ZERO"


@dataclass(frozen=True)
class TrialBalance:
    as_of: date | None
    rows: list[TrialBalanceRow]
    totals_by_type: dict[AccountType, Decimal] = field(default_factory=dict)

    @property
    def total_debits(self) -> Decimal:
        return sum((r.debit_total for r in self.rows), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((r.credit_total for r in self.rows), ZERO)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    @property
    def equation_difference(self) -> Decimal:
        """assets - (liabilities + equity + income - expenses); zero when sound."""
        t = self.totals_by_type
        return t.get(AccountType.ASSET, ZERO) - (
            t.get(AccountType.LIABILITY, ZERO)
            + t.get(AccountType.EQUITY, ZERO)
            + t.get(AccountType.INCOME, ZERO)
            - t.get(AccountType.EXPENSE, ZERO)
        )

    @property
    def equation_holds(self) -> bool:
        return self.equation_difference == ZERO


@dataclass(frozen=True)
class TransactionTotals:
    transaction_id: UUID
    debit_total: Decimal
    credit_total: Decimal
    entry_count: int

    @property
    def is_balanced(self) -> bool:
        return self.debit_total == self.credit_total


class LedgerSelector(BaseSelector[LedgerEntry]):
    """
    Read side of the ledger.

    Guarantees:
        - Balances derive from POSTED rows at query time.
        - Returns DTOs; ORM rows never leave this class.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: UUID) -> PostedEntry | None:
        entry = self.session.get(LedgerEntry, entry_id)
        return PostedEntry.from_model(entry) if entry else None

    def get_entries(self, entry_filter: EntryFilter | None = None) -> list[PostedEntry]:
        """Entries matching the filter, newest entry_date first."""
        f = entry_filter or EntryFilter()
        stmt = select(LedgerEntry)
        if f.account_code is not None:
            stmt = stmt.where(LedgerEntry.account_code == f.account_code)
        if f.lease_id is not None:
            stmt = stmt.where(LedgerEntry.lease_id == f.lease_id)
        if f.status is not None:
            stmt = stmt.where(LedgerEntry.status == EntryStatus(f.status).value)
        if f.start_date is not None:
            stmt = stmt.where(LedgerEntry.entry_date >= f.start_date)
        if f.end_date is not None:
            stmt = stmt.where(LedgerEntry.entry_date <= f.end_date)
        if f.transaction_id is not None:
            stmt = stmt.where(LedgerEntry.transaction_id == f.transaction_id)
        if f.reference is not None:
            stmt = stmt.where(LedgerEntry.reference == f.reference)
        stmt = stmt.order_by(
            LedgerEntry.entry_date.desc(),
            LedgerEntry.created_at.desc(),
            LedgerEntry.debit_credit.desc(),
        )
        if f.limit is not None:
            stmt = stmt.limit(f.limit)
        return [PostedEntry.from_model(e) for e in self.session.execute(stmt).scalars()]

    def entries_for_lease(self, lease_id: str, include_void: bool = False) -> list[PostedEntry]:
        status = None if include_void else EntryStatus.POSTED
        return self.get_entries(EntryFilter(lease_id=lease_id, status=status))

    def recent_entries(self, limit: int = 50) -> list[PostedEntry]:
        return self.get_entries(EntryFilter(limit=limit))

    def entries_for_transaction(self, transaction_id: UUID) -> list[PostedEntry]:
        return self.get_entries(EntryFilter(transaction_id=transaction_id))

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def account_balance(
        self,
        account_code: str,
        lease_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> AccountBalance:
        """
        Balance of one account from its POSTED entries.

        Raises:
            UnknownAccountError: If the code is not in the chart.
        """
        account = self.session.execute(
            select(Account).where(Account.code == account_code)
        ).scalar_one_or_none()
        if account is None:
            raise UnknownAccountError(account_code)

        stmt = (
            select(_debit_sum(), _credit_sum(), func.count(LedgerEntry.id))
            .where(LedgerEntry.account_code == account_code)
            .where(LedgerEntry.status == EntryStatus.POSTED.value)
        )
        if lease_id is not None:
            stmt = stmt.where(LedgerEntry.lease_id == lease_id)
        if start_date is not None:
            stmt = stmt.where(LedgerEntry.entry_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(LedgerEntry.entry_date <= end_date)

        debit_total, credit_total, count = self.session.execute(stmt).one()
        account_type = AccountType(account.account_type)
        return AccountBalance(
            account_code=account.code,
            account_name=account.name,
            account_type=account_type,
            normal_balance=normal_balance_for(account_type),
            debit_total=quantize(debit_total),
            credit_total=quantize(credit_total),
            entry_count=count or 0,
        )

    def tenant_balance(self, lease_id: str, receivable_code: str = RECEIVABLE_ACCOUNT) -> Decimal:
        """Amount the lease owes: its receivable balance."""
        return self.account_balance(receivable_code, lease_id=lease_id).balance

    def lease_balances(
        self,
        receivable_code: str = RECEIVABLE_ACCOUNT,
        as_of: date | None = None,
    ) -> dict[str, Decimal]:
        """Receivable balance (DR - CR) of every lease with activity, by lease id."""
        stmt = (
            select(LedgerEntry.lease_id, _debit_sum(), _credit_sum())
            .where(LedgerEntry.account_code == receivable_code)
            .where(LedgerEntry.status == EntryStatus.POSTED.value)
            .where(LedgerEntry.lease_id.is_not(None))
            .group_by(LedgerEntry.lease_id)
            .order_by(LedgerEntry.lease_id)
        )
        if as_of is not None:
            stmt = stmt.where(LedgerEntry.entry_date <= as_of)
        return {
            lease_id: quantize(debits) - quantize(credits)
            for lease_id, debits, credits in self.session.execute(stmt)
        }

    def balances_by_account(
        self,
        account_types: tuple[AccountType, ...] | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[AccountBalance]:
        """
        One AccountBalance per account with POSTED activity in the range,
        ordered by code.  Accounts without activity are omitted.
        """
        stmt = (
            select(
                Account.code,
                Account.name,
                Account.account_type,
                _debit_sum(),
                _credit_sum(),
                func.count(LedgerEntry.id),
            )
            .join(LedgerEntry, LedgerEntry.account_code == Account.code)
            .where(LedgerEntry.status == EntryStatus.POSTED.value)
            .group_by(Account.code, Account.name, Account.account_type)
            .order_by(Account.code)
        )
        if account_types:
            stmt = stmt.where(Account.account_type.in_([AccountType(t).value for t in account_types]))
        if start_date is not None:
            stmt = stmt.where(LedgerEntry.entry_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(LedgerEntry.entry_date <= end_date)

        balances = []
        for code, name, account_type, debits, credits, count in self.session.execute(stmt):
            account_type = AccountType(account_type)
            balances.append(AccountBalance(
                account_code=code,
                account_name=name,
                account_type=account_type,
                normal_balance=normal_balance_for(account_type),
                debit_total=quantize(debits),
                credit_total=quantize(credits),
                entry_count=count,
            ))
        return balances

    def receivable_entries(
        self,
        as_of: date,
        receivable_code: str = RECEIVABLE_ACCOUNT,
    ) -> dict[str, list[PostedEntry]]:
        """POSTED receivable entries up to as_of, grouped by lease, oldest first."""
        entries = self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.account_code == receivable_code)
            .where(LedgerEntry.status == EntryStatus.POSTED.value)
            .where(LedgerEntry.lease_id.is_not(None))
            .where(LedgerEntry.entry_date <= as_of)
            .order_by(LedgerEntry.lease_id, LedgerEntry.entry_date, LedgerEntry.created_at)
        ).scalars()
        grouped: dict[str, list[PostedEntry]] = {}
        for entry in entries:
            grouped.setdefault(entry.lease_id, []).append(PostedEntry.from_model(entry))
        return grouped

    def transaction_totals(self, transaction_id: UUID) -> TransactionTotals:
        debit_total, credit_total, count = self.session.execute(
            select(_debit_sum(), _credit_sum(), func.count(LedgerEntry.id))
            .where(LedgerEntry.transaction_id == transaction_id)
            .where(LedgerEntry.status == EntryStatus.POSTED.value)
        ).one()
        return TransactionTotals(
            transaction_id=transaction_id,
            debit_total=quantize(debit_total),
            credit_total=quantize(credit_total),
            entry_count=count or 0,
        )

    def trial_balance(
        self,
        as_of: date | None = None,
        include_zero_accounts: bool = False,
    ) -> TrialBalance:
        """
        Per-account DR/CR totals of POSTED entries up to as_of.

        Postconditions:
            One row per account with activity, ordered by code.  With
            include_zero_accounts every account in the chart appears,
            zero rows included.  total_debits == total_credits whenever
            every posting went through the posting engine.
        """
        join_on = (LedgerEntry.account_code == Account.code) & (
            LedgerEntry.status == EntryStatus.POSTED.value
        )
        if as_of is not None:
            join_on = join_on & (LedgerEntry.entry_date <= as_of)

        stmt = (
            select(
                Account.code,
                Account.name,
                Account.account_type,
                Account.normal_balance,
                _debit_sum(),
                _credit_sum(),
                func.count(LedgerEntry.id).label("entry_count"),
            )
            .select_from(Account)
            .outerjoin(LedgerEntry, join_on)
            .group_by(Account.code, Account.name, Account.account_type, Account.normal_balance)
            .order_by(Account.code)
        )

        rows: list[TrialBalanceRow] = []
        totals: dict[AccountType, Decimal] = {t: ZERO for t in AccountType}
        for code, name, account_type, normal_side, debits, credits, count in self.session.execute(stmt):
            if not count and not include_zero_accounts:
                continue
            row = TrialBalanceRow(
                account_code=code,
                account_name=name,
                account_type=AccountType(account_type),
                normal_balance=DebitCredit(normal_side),
                debit_total=quantize(debits),
                credit_total=quantize(credits),
            )
            rows.append(row)
            totals[row.account_type] += row.balance

        return TrialBalance(as_of=as_of, rows=rows, totals_by_type=totals)
