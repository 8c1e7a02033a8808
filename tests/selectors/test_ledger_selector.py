"""
Tests for LedgerSelector: balances and the trial balance.

Verifies:
- Account balances are signed by the account's normal side
- Lease and date filters narrow balances
- VOID entries never count
- The trial balance balances and the accounting equation holds
- include_zero_accounts adds unused accounts; inactive accounts with activity always appear
- Unknown account codes raise instead of reading as zero
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.domain.values import AccountType, EntryStatus
from ledger_kernel.exceptions import UnknownAccountError
from ledger_kernel.selectors.ledger_selector import EntryFilter
from ledger_kernel.services.chart_of_accounts import ChartOfAccountsService


@pytest.fixture
def activity(post_pair):
    """Two leases charged in January, one payment and one expense."""
    post_pair("1200", "4000", "2500", description="Rent Jan", lease_id="lease-1",
              entry_date=date(2025, 1, 1))
    post_pair("1200", "4000", "1800", description="Rent Jan", lease_id="lease-2",
              entry_date=date(2025, 1, 1))
    post_pair("1000", "1200", "1000", description="Payment", lease_id="lease-1",
              entry_date=date(2025, 1, 10))
    post_pair("5000", "1000", "350", description="Plumber", entry_date=date(2025, 1, 20))


class TestAccountBalance:
    def test_asset_balance(self, activity, selector):
        balance = selector.account_balance("1200")
        assert balance.debit_total == Decimal("4300.00")
        assert balance.credit_total == Decimal("1000.00")
        assert balance.balance == Decimal("3300.00")
        assert balance.entry_count == 3

    def test_income_balance_is_credit_normal(self, activity, selector):
        assert selector.account_balance("4000").balance == Decimal("4300.00")

    def test_lease_filter(self, activity, selector):
        assert selector.tenant_balance("lease-1") == Decimal("1500.00")
        assert selector.tenant_balance("lease-2") == Decimal("1800.00")
        assert selector.tenant_balance("lease-none") == Decimal("0.00")

    def test_date_filter(self, activity, selector):
        assert selector.account_balance("1000", end_date=date(2025, 1, 15)).balance == Decimal("1000.00")
        assert selector.account_balance("1000", start_date=date(2025, 1, 15)).balance == Decimal("-350.00")

    def test_no_activity_is_zero(self, seeded_chart, selector):
        balance = selector.account_balance("2100")
        assert balance.balance == Decimal("0.00")
        assert balance.entry_count == 0

    def test_unknown_account(self, seeded_chart, selector):
        with pytest.raises(UnknownAccountError):
            selector.account_balance("8888")

    def test_void_excluded(self, post_pair, posting_engine, selector):
        result = post_pair("1200", "4000", "700", description="Voided", lease_id="lease-3")
        posting_engine.void_entry(result.debit_entry.id, "Mistake", "manager")
        assert selector.tenant_balance("lease-3") == Decimal("0.00")


class TestLeaseBalances:
    def test_all_leases(self, activity, selector):
        assert selector.lease_balances() == {
            "lease-1": Decimal("1500.00"),
            "lease-2": Decimal("1800.00"),
        }

    def test_as_of(self, activity, selector):
        assert selector.lease_balances(as_of=date(2025, 1, 5))["lease-1"] == Decimal("2500.00")


class TestBalancesByAccount:
    def test_income_and_expense(self, activity, selector):
        rows = selector.balances_by_account((AccountType.INCOME, AccountType.EXPENSE))
        assert [(r.account_code, r.balance) for r in rows] == [
            ("4000", Decimal("4300.00")),
            ("5000", Decimal("350.00")),
        ]


class TestEntries:
    def test_entries_for_lease_newest_first(self, activity, selector):
        entries = selector.entries_for_lease("lease-1")
        assert [e.entry_date for e in entries][0] == date(2025, 1, 10)
        assert len(entries) == 4

    def test_filter_by_account_and_status(self, activity, selector):
        entries = selector.get_entries(EntryFilter(account_code="1000", status=EntryStatus.POSTED))
        assert len(entries) == 2

    def test_limit(self, activity, selector):
        assert len(selector.recent_entries(limit=3)) == 3


class TestTrialBalance:
    def test_balanced_with_equation(self, activity, selector):
        tb = selector.trial_balance()
        assert tb.is_balanced
        assert tb.total_debits == Decimal("5650.00")
        assert tb.equation_holds
        assert [r.account_code for r in tb.rows] == ["1000", "1200", "4000", "5000"]

    def test_as_of(self, activity, selector):
        tb = selector.trial_balance(as_of=date(2025, 1, 5))
        assert [r.account_code for r in tb.rows] == ["1200", "4000"]
        assert tb.is_balanced

    def test_all_accounts(self, activity, selector, settings):
        tb = selector.trial_balance(include_zero_accounts=True)
        assert len(tb.rows) == len(settings.chart_of_accounts)
        assert tb.is_balanced

    def test_zero_accounts_flag_adds_unused_not_inactive(self, activity, selector, session):
        ChartOfAccountsService(session).deactivate_account("5000")
        default = {r.account_code: r for r in selector.trial_balance().rows}
        assert "5000" in default
        assert "4100" not in default
        rows = {r.account_code: r for r in selector.trial_balance(include_zero_accounts=True).rows}
        assert rows["4100"].debit_total == rows["4100"].credit_total == Decimal("0.00")
        assert rows["4100"].balance_side == "ZERO"

    def test_balance_side(self, activity, selector):
        rows = {r.account_code: r for r in selector.trial_balance().rows}
        assert rows["1200"].balance_side == "DR"
        assert rows["4000"].balance_side == "CR"

    def test_empty_ledger(self, seeded_chart, selector):
        tb = selector.trial_balance()
        assert tb.rows == []
        assert tb.is_balanced
