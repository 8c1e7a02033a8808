"""
Tests for the ledger administration CLI (scripts/ledger_admin.py).

Each test gets its own SQLite file; main() initializes the module-level
engine, which is reset afterwards.
"""

import pytest
from sqlalchemy.orm import sessionmaker

from ledger_kernel.db.engine import build_engine, reset_engine, session_scope
from ledger_kernel.domain.clock import DeterministicClock
from ledger_services.scheduled_charges import ScheduledChargeService
from scripts.ledger_admin import main


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    monkeypatch.delenv("LEDGER_CONFIG", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    yield f"sqlite:///{tmp_path / 'admin.db'}"
    reset_engine()


def run(database_url, *args):
    return main(["--database-url", database_url, *args])


def test_init_seeds_chart_once(database_url, capsys):
    assert run(database_url, "init") == 0
    out = capsys.readouterr().out
    assert "account(s) created" in out
    assert "1001   Cash in Transit" in out

    assert run(database_url, "init") == 0
    assert "0 account(s) created" in capsys.readouterr().out


def test_post_due_charges_then_report(database_url, capsys, settings):
    run(database_url, "init")
    engine = build_engine(database_url)
    try:
        with session_scope(sessionmaker(bind=engine)) as session:
            ScheduledChargeService(session, DeterministicClock(), settings).create_charge(
                "lease-1", "Rent", "2500", charge_day=1
            )
    finally:
        engine.dispose()
    capsys.readouterr()

    assert run(database_url, "post-due-charges", "--as-of", "2025-01-01") == 0
    out = capsys.readouterr().out
    assert "[posted ]" in out
    assert "Posted Rent of $2500.00" in out

    assert run(database_url, "post-due-charges", "--as-of", "2025-01-15") == 0
    assert "[skipped]" in capsys.readouterr().out

    assert run(database_url, "balances", "--lease", "lease-1") == 0
    out = capsys.readouterr().out
    assert "Lease lease-1: 2,500.00 outstanding" in out
    assert "Rent - January 2025" in out

    assert run(database_url, "trial-balance") == 0
    out = capsys.readouterr().out
    assert "2,500.00" in out
    assert out.strip().endswith("BALANCED")


def test_no_charges_due(database_url, capsys):
    run(database_url, "init")
    capsys.readouterr()
    assert run(database_url, "post-due-charges", "--as-of", "2025-01-01") == 0
    assert "No charges due." in capsys.readouterr().out


def test_bad_config_reports_error(database_url, tmp_path, capsys):
    missing = tmp_path / "missing.yaml"
    assert main(["--config", str(missing), "--database-url", database_url, "init"]) == 1
    assert "ERROR [CONFIGURATION_ERROR]" in capsys.readouterr().err


def test_invalid_date_rejected(database_url, capsys):
    with pytest.raises(SystemExit) as exc_info:
        run(database_url, "trial-balance", "--as-of", "31/01/2025")
    assert exc_info.value.code == 2
