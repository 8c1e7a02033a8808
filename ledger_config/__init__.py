"""
ledger_config -- YAML settings for the ledger.

Runtime code obtains settings through ``get_settings()``, which loads and
caches them once per process.  Tests build ``LedgerSettings`` directly or
call ``load_settings(path)``.  The kernel never imports this package; the
services and admin scripts do.
"""

from __future__ import annotations

import threading

from ledger_config.bridges import account_definitions
from ledger_config.loader import DEFAULT_CONFIG_PATH, load_settings, load_yaml_file, parse_settings
from ledger_config.schema import (
    AccountConfig,
    DatabaseSettings,
    LedgerSettings,
    MatchingSettings,
    SystemAccounts,
    TransitSettings,
)

_settings: LedgerSettings | None = None
_lock = threading.Lock()


def get_settings() -> LedgerSettings:
    global _settings
    with _lock:
        if _settings is None:
            _settings = load_settings()
        return _settings


def reset_settings() -> None:
    """Forget cached settings. FOR TESTING ONLY."""
    global _settings
    with _lock:
        _settings = None


__all__ = [
    "AccountConfig",
    "DatabaseSettings",
    "DEFAULT_CONFIG_PATH",
    "LedgerSettings",
    "MatchingSettings",
    "SystemAccounts",
    "TransitSettings",
    "account_definitions",
    "get_settings",
    "load_settings",
    "load_yaml_file",
    "parse_settings",
    "reset_settings",
]
