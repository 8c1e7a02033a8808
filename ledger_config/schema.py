"""
Typed configuration schema (``ledger_config.schema``).

Every section of the YAML settings file parses into one of these frozen
dataclasses.  Nothing here reads files or the environment; see loader.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///ledger.db"
    echo: bool = False


@dataclass(frozen=True)
class SystemAccounts:
    """Account codes the services post to without being told."""

    operating_cash: str = "1000"
    cash_in_transit: str = "1001"
    accounts_receivable: str = "1200"
    rental_income: str = "4000"


@dataclass(frozen=True)
class MatchingSettings:
    """Bank-statement auto-match tuning."""

    window_days: int = 3
    amount_tolerance: Decimal = Decimal("0.005")


@dataclass(frozen=True)
class TransitSettings:
    # Transfers in flight longer than this are reported as stale
    stale_after_days: int = 5


@dataclass(frozen=True)
class AccountConfig:
    code: str
    name: str
    type: str
    description: str | None = None
    active: bool = True


@dataclass(frozen=True)
class LedgerSettings:
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    log_level: str = "INFO"
    system_accounts: SystemAccounts = field(default_factory=SystemAccounts)
    matching: MatchingSettings = field(default_factory=MatchingSettings)
    transit: TransitSettings = field(default_factory=TransitSettings)
    chart_of_accounts: tuple[AccountConfig, ...] = ()
    source: str | None = None
