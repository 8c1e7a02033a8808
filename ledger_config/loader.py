"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Reads the YAML settings file and parses it into ``ledger_config.schema``
dataclasses.

Resolution order
----------------
1. An explicit ``path`` argument.
2. The ``LEDGER_CONFIG`` environment variable.
3. The packaged ``defaults/ledger.yaml``.

``DATABASE_URL`` in the environment replaces ``database.url`` whichever
file was used.

Failure modes
-------------
* Missing file, malformed YAML, unknown account type, bad numbers
  -> ``ConfigurationError`` naming the source file.
"""

from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    AccountConfig,
    DatabaseSettings,
    LedgerSettings,
    MatchingSettings,
    SystemAccounts,
    TransitSettings,
)
from ledger_kernel.domain.values import AccountType
from ledger_kernel.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "ledger.yaml"

CONFIG_ENV_VAR = "LEDGER_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML file into a dict (empty dict for an empty file).

    Raises:
        ConfigurationError: Missing file, invalid YAML, or a non-mapping root.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigurationError(f"Config file not found: {path}", source=str(path)) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}", source=str(path)) from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root must be a mapping: {path}", source=str(path))
    return data


def parse_system_accounts(data: dict[str, Any]) -> SystemAccounts:
    defaults = SystemAccounts()
    return SystemAccounts(
        operating_cash=str(data.get("operating_cash", defaults.operating_cash)),
        cash_in_transit=str(data.get("cash_in_transit", defaults.cash_in_transit)),
        accounts_receivable=str(data.get("accounts_receivable", defaults.accounts_receivable)),
        rental_income=str(data.get("rental_income", defaults.rental_income)),
    )


def parse_matching(data: dict[str, Any], source: str | None = None) -> MatchingSettings:
    try:
        window_days = int(data.get("window_days", 3))
        tolerance = Decimal(str(data.get("amount_tolerance", "0.005")))
    except (ValueError, InvalidOperation) as e:
        raise ConfigurationError(f"Invalid matching settings: {data}", source=source) from e
    if window_days < 0 or tolerance < 0:
        raise ConfigurationError("Matching window and tolerance must be >= 0", source=source)
    return MatchingSettings(window_days=window_days, amount_tolerance=tolerance)


def parse_account(data: dict[str, Any], source: str | None = None) -> AccountConfig:
    try:
        code = str(data["code"])
        name = data["name"]
        account_type = AccountType(str(data["type"]).upper())
    except KeyError as e:
        raise ConfigurationError(f"Account entry missing {e}: {data}", source=source) from e
    except ValueError as e:
        raise ConfigurationError(f"Unknown account type in {data}", source=source) from e
    return AccountConfig(
        code=code,
        name=name,
        type=account_type.value,
        description=data.get("description"),
        active=bool(data.get("active", True)),
    )


def parse_settings(data: dict[str, Any], source: str | None = None) -> LedgerSettings:
    """Parse a full settings mapping.  Missing sections take their defaults."""
    database = data.get("database") or {}
    transit = data.get("transit") or {}
    try:
        stale_after_days = int(transit.get("stale_after_days", 5))
    except ValueError as e:
        raise ConfigurationError(f"Invalid transit settings: {transit}", source=source) from e

    accounts = tuple(parse_account(a, source) for a in data.get("chart_of_accounts") or [])
    codes = [a.code for a in accounts]
    if len(codes) != len(set(codes)):
        raise ConfigurationError("Duplicate account codes in chart_of_accounts", source=source)

    return LedgerSettings(
        database=DatabaseSettings(
            url=database.get("url", DatabaseSettings.url),
            echo=bool(database.get("echo", False)),
        ),
        log_level=str((data.get("logging") or {}).get("level", "INFO")).upper(),
        system_accounts=parse_system_accounts(data.get("system_accounts") or {}),
        matching=parse_matching(data.get("matching") or {}, source),
        transit=TransitSettings(stale_after_days=stale_after_days),
        chart_of_accounts=accounts,
        source=source,
    )


def load_settings(path: Path | str | None = None) -> LedgerSettings:
    """Resolve, read and parse the settings file, then apply env overrides."""
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    path = Path(path)
    settings = parse_settings(load_yaml_file(path), source=str(path))

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        settings = LedgerSettings(
            database=DatabaseSettings(url=database_url, echo=settings.database.echo),
            log_level=settings.log_level,
            system_accounts=settings.system_accounts,
            matching=settings.matching,
            transit=settings.transit,
            chart_of_accounts=settings.chart_of_accounts,
            source=settings.source,
        )
    return settings
