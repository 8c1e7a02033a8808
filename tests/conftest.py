"""
Pytest fixtures for the property ledger test suite.

Provides:
- Structured-log capture
- A session-scoped engine and schema, with per-test rollback isolation
- A deterministic clock, the packaged settings and a seeded chart of accounts
- Service fixtures bound to the test session

Environment Variables:
- DATABASE_URL: SQLAlchemy URL of the test database.  Defaults to an
  in-memory SQLite database; set a postgresql:// URL to run the suite
  against PostgreSQL.
"""

import json
import logging
import os
from datetime import date
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from ledger_config import DEFAULT_CONFIG_PATH, account_definitions, load_yaml_file, parse_settings
from ledger_kernel.db.engine import build_engine, create_tables, drop_tables
from ledger_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import EntrySpec
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.chart_of_accounts import ChartOfAccountsService
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_services.reconciliation_service import ReconciliationService
from ledger_services.reporting_service import ReportingService
from ledger_services.scheduled_charges import ScheduledChargeService
from ledger_services.transit_service import TransitService

DEFAULT_TEST_URL = "sqlite://"

TEST_ACTOR = "test-user"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, posting_engine):
            posting_engine.post_double_entry(...)
            logs = captured_logs()
            assert any(r["message"] == "double_entry_posted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_TEST_URL)


# =============================================================================
# Session-scoped DB infrastructure (engine + tables created ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """
    Single engine for the whole run.

    Built with build_engine() rather than init_engine_from_url() so tests
    that exercise the module-level engine (CLI, session_scope) cannot
    dispose it.
    """
    eng = build_engine(get_database_url())
    yield eng
    eng.dispose()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session; immutability listeners stay registered."""
    drop_tables(db_engine)
    create_tables(db_engine)
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables(db_engine)


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """
    Session joined to an outer transaction that is rolled back at teardown.

    Services open savepoints with begin_nested(); a session.commit() in a
    test releases a savepoint and never reaches the database.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    """Clock fixed at 2025-01-01 12:00 UTC."""
    return DeterministicClock()


@pytest.fixture(scope="session")
def settings():
    """Packaged defaults, read without environment overrides."""
    return parse_settings(load_yaml_file(DEFAULT_CONFIG_PATH), source=str(DEFAULT_CONFIG_PATH))


@pytest.fixture
def seeded_chart(session, settings):
    """The default chart of accounts, created in the test transaction."""
    return ChartOfAccountsService(session).seed_default_chart(account_definitions(settings))


@pytest.fixture
def posting_engine(session, clock, seeded_chart) -> PostingEngine:
    return PostingEngine(session, clock)


@pytest.fixture
def selector(session) -> LedgerSelector:
    return LedgerSelector(session)


@pytest.fixture
def transit_service(session, clock, settings, seeded_chart) -> TransitService:
    return TransitService(session, clock, settings)


@pytest.fixture
def reconciliation_service(session, clock, settings, seeded_chart) -> ReconciliationService:
    return ReconciliationService(session, clock, settings)


@pytest.fixture
def charge_service(session, clock, settings, seeded_chart) -> ScheduledChargeService:
    return ScheduledChargeService(session, clock, settings)


@pytest.fixture
def reporting_service(session, clock, settings, seeded_chart) -> ReportingService:
    return ReportingService(session, clock, settings)


@pytest.fixture
def bank_account(reconciliation_service):
    """Operating account at a bank, mirrored by ledger account 1000."""
    return reconciliation_service.create_bank_account(
        "Operating Checking", institution="First Community Bank", last_four="4321"
    )


@pytest.fixture
def post_pair(posting_engine):
    """
    Post a DR/CR pair with test defaults.

    Usage::

        post_pair("1200", "4000", "2500.00", lease_id="lease-1")
    """

    def _post(
        debit_code: str,
        credit_code: str,
        amount,
        description: str = "Test posting",
        entry_date: date = date(2025, 1, 1),
        lease_id: str | None = None,
        idempotency_key: str | None = None,
        posted_by: str = TEST_ACTOR,
    ):
        return posting_engine.post_double_entry(
            EntrySpec.debit(debit_code, amount, description, entry_date, posted_by, lease_id=lease_id),
            EntrySpec.credit(credit_code, amount, description, entry_date, posted_by, lease_id=lease_id),
            idempotency_key=idempotency_key,
        )

    return _post
