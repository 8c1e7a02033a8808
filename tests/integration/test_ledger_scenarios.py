"""
End-to-end ledger scenarios across posting, transit and reconciliation.

Verifies:
- Rent, payment, rent: receivable shows what is outstanding
- record_entry payments, expenses and mixed batches balance and match lines
- A failed record_entry leaves no entries behind
- ACH reversals never touch Operating Cash
- Reconciliation state guards
- A full month: scheduled rent, ACH initiate/settle, statement import, sign-off
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from ledger_engines.statement_parser import ParsedStatementLine
from ledger_kernel.domain.values import DebitCredit, EntryStatus, LineStatus, MatchConfidence
from ledger_kernel.exceptions import InvalidStateError, MismatchError, UnknownAccountError
from ledger_kernel.models.ledger_entry import LedgerEntry
from ledger_kernel.selectors.ledger_selector import EntryFilter
from ledger_services.reconciliation_service import RecordEntryRequest, RecordEntryType
from ledger_services.scheduled_charges import ChargeOutcome

START = date(2025, 1, 1)
END = date(2025, 1, 31)


def _start(service, bank_account, *lines, auto_match=False):
    return service.start_reconciliation(
        bank_account.id, START, END, statement_balance="0",
        lines=list(lines), auto_match=auto_match,
    )


def _payment(recon, line, lease_id):
    return RecordEntryRequest(
        reconciliation_id=recon.id, line_id=line.id,
        type=RecordEntryType.PAYMENT, lease_id=lease_id,
    )


def _expense(recon, line, account_code):
    return RecordEntryRequest(
        reconciliation_id=recon.id, line_id=line.id,
        type=RecordEntryType.EXPENSE, account_code=account_code,
    )


class TestScenarioA:
    def test_rent_payment_rent(self, post_pair, selector):
        post_pair("1200", "4000", "2500", description="Rent - January 2025", lease_id="lease-1",
                  entry_date=date(2025, 1, 1))
        post_pair("1000", "1200", "2500", description="Payment", lease_id="lease-1",
                  entry_date=date(2025, 1, 5))
        post_pair("1200", "4000", "2500", description="Rent - February 2025", lease_id="lease-1",
                  entry_date=date(2025, 2, 1))

        receivable = selector.account_balance("1200")
        assert receivable.debit_total == Decimal("5000.00")
        assert receivable.credit_total == Decimal("2500.00")
        assert receivable.balance == Decimal("2500.00")
        assert selector.tenant_balance("lease-1") == Decimal("2500.00")


class TestScenarioB:
    def test_record_payment(self, reconciliation_service, bank_account, selector):
        recon = _start(
            reconciliation_service, bank_account,
            ParsedStatementLine(date(2025, 1, 5), "ACH DEPOSIT", Decimal("2500.00")),
        )
        result = reconciliation_service.record_entry(_payment(recon, recon.lines[0], "lease-1"))

        assert result.updated_line.status == LineStatus.MATCHED
        assert result.updated_line.match_confidence == MatchConfidence.MANUAL
        entries = selector.entries_for_transaction(result.entries.transaction_id)
        assert sorted((e.account_code, e.debit_credit.value, e.amount, e.status.value) for e in entries) == [
            ("1000", "DR", Decimal("2500.00"), "POSTED"),
            ("1200", "CR", Decimal("2500.00"), "POSTED"),
        ]


class TestScenarioC:
    def test_record_expense_without_vendor(self, reconciliation_service, bank_account, selector):
        recon = _start(
            reconciliation_service, bank_account,
            ParsedStatementLine(date(2025, 1, 9), "ACE PLUMBING", Decimal("-850.00")),
        )
        result = reconciliation_service.record_entry(_expense(recon, recon.lines[0], "5000"))

        assert result.updated_line.status == LineStatus.MATCHED
        assert result.created_vendor is None
        entries = selector.entries_for_transaction(result.entries.transaction_id)
        assert sorted((e.account_code, e.debit_credit.value, e.amount) for e in entries) == [
            ("1000", "CR", Decimal("850.00")),
            ("5000", "DR", Decimal("850.00")),
        ]


class TestScenarioD:
    def test_mixed_batch_balances(self, reconciliation_service, bank_account, selector):
        recon = _start(
            reconciliation_service, bank_account,
            ParsedStatementLine(date(2025, 1, 5), "DEPOSIT A", Decimal("3000.00")),
            ParsedStatementLine(date(2025, 1, 8), "DEPOSIT B", Decimal("1000.00")),
            ParsedStatementLine(date(2025, 1, 12), "LANDSCAPER", Decimal("-750.00")),
        )
        first, second, third = recon.lines
        results = [
            reconciliation_service.record_entry(_payment(recon, first, "lease-1")),
            reconciliation_service.record_entry(_payment(recon, second, "lease-2")),
            reconciliation_service.record_entry(_expense(recon, third, "5070")),
        ]

        entries = [
            e for r in results for e in selector.entries_for_transaction(r.entries.transaction_id)
        ]
        debits = sum(e.amount for e in entries if e.debit_credit == DebitCredit.DR)
        credits = sum(e.amount for e in entries if e.debit_credit == DebitCredit.CR)
        assert debits == credits == Decimal("4750.00")

        view = reconciliation_service.get_reconciliation(recon.id)
        assert all(line.status == LineStatus.MATCHED for line in view.lines)
        assert view.summary.ready_to_finalize


class TestAtomicityOnFailure:
    def test_unknown_expense_account(self, reconciliation_service, bank_account, session):
        recon = _start(
            reconciliation_service, bank_account,
            ParsedStatementLine(date(2025, 1, 9), "MYSTERY CHARGE", Decimal("-42.00")),
        )
        with pytest.raises(UnknownAccountError):
            reconciliation_service.record_entry(_expense(recon, recon.lines[0], "5999"))

        line = reconciliation_service.get_reconciliation(recon.id).lines[0]
        assert line.status == LineStatus.UNMATCHED
        assert line.ledger_entry_id is None
        count = session.execute(
            select(func.count(LedgerEntry.id)).where(LedgerEntry.description == "MYSTERY CHARGE")
        ).scalar_one()
        assert count == 0


class TestTransitIsolation:
    def test_reversal_never_touches_operating_cash(self, transit_service, selector, post_pair):
        post_pair("1200", "4000", "1200", description="Rent - January 2025", lease_id="lease-5")
        transit_service.initiate("pi_900", "1200", "lease-5", date(2025, 1, 2))
        reversal = transit_service.reverse("pi_900", date(2025, 1, 6), failure_message="Account closed")

        cash_entries = selector.get_entries(EntryFilter(account_code="1000"))
        assert reversal.debit_entry.description not in {e.description for e in cash_entries}

        transit_sides = [e.debit_credit for e in selector.get_entries(EntryFilter(account_code="1001"))]
        assert DebitCredit.DR in transit_sides
        assert DebitCredit.CR in transit_sides
        assert selector.tenant_balance("lease-5") == Decimal("1200.00")


class TestStateGuards:
    @pytest.fixture
    def recon(self, reconciliation_service, bank_account):
        return _start(
            reconciliation_service, bank_account,
            ParsedStatementLine(date(2025, 1, 5), "DEPOSIT", Decimal("100.00")),
            ParsedStatementLine(date(2025, 1, 6), "FEE", Decimal("-5.00")),
        )

    def test_already_matched_line(self, reconciliation_service, recon):
        reconciliation_service.record_entry(_payment(recon, recon.lines[0], "lease-1"))
        with pytest.raises(InvalidStateError):
            reconciliation_service.record_entry(_payment(recon, recon.lines[0], "lease-1"))

    def test_finalized_reconciliation(self, reconciliation_service, recon):
        reconciliation_service.record_entry(_payment(recon, recon.lines[0], "lease-1"))
        reconciliation_service.exclude_line(recon.id, recon.lines[1].id)
        reconciliation_service.finalize(recon.id, finalized_by="admin")
        with pytest.raises(InvalidStateError):
            reconciliation_service.record_entry(_expense(recon, recon.lines[1], "5100"))

    def test_line_from_other_reconciliation(self, reconciliation_service, bank_account, recon):
        other = _start(
            reconciliation_service, bank_account,
            ParsedStatementLine(date(2025, 1, 7), "OTHER", Decimal("10.00")),
        )
        with pytest.raises(MismatchError):
            reconciliation_service.record_entry(_payment(recon, other.lines[0], "lease-1"))


class TestFullMonth:
    def test_rent_autopay_and_reconciliation(
        self, charge_service, transit_service, reconciliation_service, bank_account, selector
    ):
        charge_service.create_charge("lease-7", "Rent", "2500", charge_day=1)
        [charged] = charge_service.post_due_charges(as_of=date(2025, 1, 1))
        assert charged.outcome == ChargeOutcome.POSTED

        transit_service.initiate("pi_100", "2500", "lease-7", date(2025, 1, 2))
        assert selector.tenant_balance("lease-7") == Decimal("0.00")
        assert selector.account_balance("1000").balance == Decimal("0.00")

        settlement = transit_service.settle("pi_100", date(2025, 1, 5))
        assert selector.account_balance("1000").balance == Decimal("2500.00")

        recon = reconciliation_service.start_reconciliation(
            bank_account.id, START, END, statement_balance="2485.00",
            lines=[
                ParsedStatementLine(date(2025, 1, 6), "STRIPE TRANSFER", Decimal("2500.00")),
                ParsedStatementLine(date(2025, 1, 31), "MONTHLY FEE", Decimal("-15.00")),
            ],
        )
        deposit, fee = recon.lines
        assert deposit.ledger_entry_id == settlement.debit_entry.id
        assert fee.status == LineStatus.UNMATCHED

        reconciliation_service.record_entry(_expense(recon, fee, "5100"))
        final = reconciliation_service.finalize(recon.id, finalized_by="admin")

        assert final.ledger_balance == Decimal("2485.00")
        assert final.summary.difference == Decimal("0.00")
        assert transit_service.in_flight_balance() == Decimal("0.00")

        tb = selector.trial_balance()
        assert tb.is_balanced
        assert tb.equation_holds
        assert all(
            e.status == EntryStatus.POSTED for e in selector.entries_for_lease("lease-7")
        )
