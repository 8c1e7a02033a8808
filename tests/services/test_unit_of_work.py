"""
Tests for the unit of work: commit on success, full rollback on error.

These run against their own SQLite file because they commit.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from ledger_config import account_definitions
from ledger_kernel.db.engine import build_engine, create_tables, session_scope
from ledger_kernel.domain.dtos import EntrySpec
from ledger_kernel.exceptions import UnbalancedEntryError, UnknownAccountError
from ledger_kernel.models.ledger_entry import LedgerEntry
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.chart_of_accounts import ChartOfAccountsService
from ledger_kernel.services.unit_of_work import ledger_unit_of_work, with_ledger_transaction

D = date(2025, 1, 1)


@pytest.fixture
def session_factory(tmp_path, settings):
    engine = build_engine(f"sqlite:///{tmp_path / 'uow.db'}")
    create_tables(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    with session_scope(factory) as session:
        ChartOfAccountsService(session).seed_default_chart(account_definitions(settings))
    yield factory
    engine.dispose()


def _rent(amount="100"):
    return (
        EntrySpec.debit("1200", amount, "Rent", D, "test", lease_id="lease-1"),
        EntrySpec.credit("4000", amount, "Rent", D, "test", lease_id="lease-1"),
    )


def _tenant_balance(factory) -> Decimal:
    with session_scope(factory) as session:
        return LedgerSelector(session).tenant_balance("lease-1")


def _entry_count(factory) -> int:
    with session_scope(factory) as session:
        return session.execute(select(func.count(LedgerEntry.id))).scalar_one()


class TestLedgerUnitOfWork:
    def test_commits_on_success(self, session_factory, clock):
        with ledger_unit_of_work(session_factory, clock) as uow:
            uow.post_double_entry(*_rent())
        assert _tenant_balance(session_factory) == Decimal("100.00")

    def test_rolls_back_everything_on_error(self, session_factory, clock, captured_logs):
        with pytest.raises(UnknownAccountError):
            with ledger_unit_of_work(session_factory, clock) as uow:
                uow.post_double_entry(*_rent())
                uow.post_entry(EntrySpec.debit("9999", "5", "Nowhere", D, "test"))

        assert _entry_count(session_factory) == 0
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())

    def test_caller_exception_rolls_back(self, session_factory, clock):
        with pytest.raises(RuntimeError):
            with ledger_unit_of_work(session_factory, clock) as uow:
                uow.post_double_entry(*_rent())
                raise RuntimeError("handler crashed")
        assert _entry_count(session_factory) == 0


class TestWithLedgerTransaction:
    def test_balanced_entries_commit_together(self, session_factory, clock):
        def post_rent(session, post_entry):
            debit, credit = _rent("250")
            return [post_entry(debit), post_entry(credit)]

        entries = with_ledger_transaction(post_rent, session_factory, clock)

        assert len({e.transaction_id for e in entries}) == 1
        assert _tenant_balance(session_factory) == Decimal("250.00")

    def test_unbalanced_commits_nothing(self, session_factory, clock):
        def post_half(session, post_entry):
            post_entry(_rent("250")[0])

        with pytest.raises(UnbalancedEntryError):
            with_ledger_transaction(post_half, session_factory, clock)
        assert _entry_count(session_factory) == 0
