"""
Tests for ScheduledChargeService.

Verifies:
- Charge definitions are validated
- Due charges post DR Receivable / CR income with a month-stamped description
- A second run in the same month skips; the next month posts again
- One failing charge does not stop the batch
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import EntrySpec
from ledger_kernel.exceptions import (
    InvalidAmountError,
    ScheduledChargeNotFoundError,
    UnknownAccountError,
    ValidationError,
)
from ledger_kernel.utils.idempotency import operation_key
from ledger_services.scheduled_charges import ChargeOutcome, charge_description, charge_period


@pytest.fixture
def rent(charge_service):
    return charge_service.create_charge("lease-1", "Rent", "2500", charge_day=1)


@pytest.fixture
def pet_fee(charge_service):
    return charge_service.create_charge("lease-1", "Pet Fee", "35", charge_day=5, account_code="4040")


def test_charge_description():
    assert charge_description("Rent", date(2025, 1, 1)) == "Rent - January 2025"
    assert charge_period(date(2025, 11, 3)) == "2025-11"


class TestCreateCharge:
    def test_defaults_to_rental_income(self, rent):
        assert rent.account_code == "4000"
        assert rent.amount == Decimal("2500.00")
        assert rent.active
        assert rent.last_charged_date is None

    @pytest.mark.parametrize(
        "lease_id, description, charge_day",
        [("", "Rent", 1), ("lease-1", " ", 1), ("lease-1", "Rent", 0), ("lease-1", "Rent", 29)],
    )
    def test_invalid(self, charge_service, lease_id, description, charge_day):
        with pytest.raises(ValidationError):
            charge_service.create_charge(lease_id, description, "100", charge_day)

    def test_non_positive_amount(self, charge_service):
        with pytest.raises(InvalidAmountError):
            charge_service.create_charge("lease-1", "Rent", "0", 1)

    def test_unknown_account(self, charge_service):
        with pytest.raises(UnknownAccountError):
            charge_service.create_charge("lease-1", "Rent", "100", 1, account_code="4999")


class TestPostDueCharges:
    def test_posts_due_charges(self, charge_service, rent, pet_fee, selector):
        results = charge_service.post_due_charges(as_of=date(2025, 1, 1))

        assert [r.charge_id for r in results] == [rent.id]
        [posted] = results
        assert posted.outcome == ChargeOutcome.POSTED
        assert posted.message == "Posted Rent of $2500.00"
        assert posted.transaction_id is not None

        entries = selector.entries_for_transaction(posted.transaction_id)
        assert {(e.account_code, e.debit_credit.value) for e in entries} == {("1200", "DR"), ("4000", "CR")}
        assert all(e.description == "Rent - January 2025" for e in entries)
        assert all(e.posted_by == "scheduled" for e in entries)
        assert all(e.entry_date == date(2025, 1, 1) for e in entries)
        assert selector.tenant_balance("lease-1") == Decimal("2500.00")

    def test_charge_day_reached(self, charge_service, rent, pet_fee, selector):
        results = charge_service.post_due_charges(as_of=date(2025, 1, 5))
        assert [r.outcome for r in results] == [ChargeOutcome.POSTED, ChargeOutcome.POSTED]
        assert selector.account_balance("4040").balance == Decimal("35.00")
        assert selector.tenant_balance("lease-1") == Decimal("2535.00")

    def test_second_run_skips(self, charge_service, rent, selector):
        charge_service.post_due_charges(as_of=date(2025, 1, 1))
        again = charge_service.post_due_charges(as_of=date(2025, 1, 20))
        assert [r.outcome for r in again] == [ChargeOutcome.SKIPPED]
        assert selector.tenant_balance("lease-1") == Decimal("2500.00")

    def test_next_month_posts_again(self, charge_service, rent, selector):
        charge_service.post_due_charges(as_of=date(2025, 1, 1))
        [february] = charge_service.post_due_charges(as_of=date(2025, 2, 1))
        assert february.outcome == ChargeOutcome.POSTED
        assert selector.tenant_balance("lease-1") == Decimal("5000.00")
        assert charge_service.list_charges()[0].last_charged_date == date(2025, 2, 1)

    def test_defaults_to_today(self, charge_service, rent, clock):
        [result] = charge_service.post_due_charges()
        assert result.outcome == ChargeOutcome.POSTED
        assert charge_service.list_charges()[0].last_charged_date == clock.today()

    def test_lease_filter(self, charge_service, rent):
        charge_service.create_charge("lease-2", "Rent", "1800", charge_day=1)
        results = charge_service.post_due_charges(as_of=date(2025, 1, 1), lease_id="lease-2")
        assert [r.lease_id for r in results] == ["lease-2"]

    def test_inactive_not_posted(self, charge_service, rent):
        charge_service.deactivate_charge(rent.id)
        assert charge_service.post_due_charges(as_of=date(2025, 1, 1)) == []

    def test_failure_isolated(self, charge_service, rent, posting_engine, selector, captured_logs):
        other = charge_service.create_charge("lease-2", "Rent", "1800", charge_day=1)
        # Someone already used this month's key for a different amount
        posting_engine.post_double_entry(
            EntrySpec.debit("1200", "10", "Manual", date(2025, 1, 1), "admin", lease_id="lease-1"),
            EntrySpec.credit("4000", "10", "Manual", date(2025, 1, 1), "admin", lease_id="lease-1"),
            idempotency_key=operation_key("scheduled-charge", rent.id, "2025-01"),
        )

        results = {r.charge_id: r for r in charge_service.post_due_charges(as_of=date(2025, 1, 1))}

        assert results[rent.id].outcome == ChargeOutcome.ERROR
        assert results[other.id].outcome == ChargeOutcome.POSTED
        assert selector.tenant_balance("lease-2") == Decimal("1800.00")
        assert [c.last_charged_date for c in charge_service.list_charges(lease_id="lease-1")] == [None]
        [record] = [r for r in captured_logs() if r["message"] == "scheduled_charge_failed"]
        assert record["error_code"] == "IDEMPOTENCY_CONFLICT"

    def test_run_logged(self, charge_service, rent, captured_logs):
        charge_service.post_due_charges(as_of=date(2025, 1, 1))
        [record] = [r for r in captured_logs() if r["message"] == "scheduled_charges_run"]
        assert record["posted"] == 1
        assert record["skipped"] == 0


class TestMaintenance:
    def test_deactivate(self, charge_service, rent):
        assert charge_service.deactivate_charge(rent.id).active is False
        assert charge_service.list_charges() == []
        assert len(charge_service.list_charges(active_only=False)) == 1

    def test_deactivate_unknown(self, charge_service):
        with pytest.raises(ScheduledChargeNotFoundError):
            charge_service.deactivate_charge(uuid4())

    def test_list_ordering(self, charge_service, rent, pet_fee):
        charge_service.create_charge("lease-0", "Parking", "50", charge_day=10, account_code="4030")
        assert [(c.lease_id, c.charge_day) for c in charge_service.list_charges()] == [
            ("lease-0", 10), ("lease-1", 1), ("lease-1", 5),
        ]
