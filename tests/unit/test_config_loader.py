"""
Tests for ledger_config: YAML settings loading and parsing.

Verifies:
- The packaged defaults parse into the documented system accounts
- Missing sections fall back to schema defaults
- LEDGER_CONFIG and DATABASE_URL environment overrides
- Malformed files surface as ConfigurationError naming the source
- account_definitions() feeds the chart of accounts service
"""

from decimal import Decimal

import pytest

from ledger_config import (
    DEFAULT_CONFIG_PATH,
    LedgerSettings,
    account_definitions,
    get_settings,
    load_settings,
    parse_settings,
    reset_settings,
)
from ledger_kernel.domain.values import AccountType
from ledger_kernel.exceptions import ConfigurationError


@pytest.fixture
def clean_env(monkeypatch):
    monkeypatch.delenv("LEDGER_CONFIG", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    reset_settings()
    yield monkeypatch
    reset_settings()


class TestPackagedDefaults:
    def test_system_accounts(self, clean_env):
        settings = load_settings()
        accounts = settings.system_accounts
        assert accounts.operating_cash == "1000"
        assert accounts.cash_in_transit == "1001"
        assert accounts.accounts_receivable == "1200"
        assert accounts.rental_income == "4000"

    def test_matching_and_transit(self, clean_env):
        settings = load_settings()
        assert settings.matching.window_days == 3
        assert settings.matching.amount_tolerance == Decimal("0.005")
        assert settings.transit.stale_after_days == 5

    def test_chart_contains_system_accounts(self, clean_env):
        codes = {a.code for a in load_settings().chart_of_accounts}
        assert {"1000", "1001", "1200", "4000", "5000"} <= codes

    def test_source_recorded(self, clean_env):
        assert load_settings().source == str(DEFAULT_CONFIG_PATH)

    def test_get_settings_caches(self, clean_env):
        assert get_settings() is get_settings()


class TestParseSettings:
    def test_empty_mapping_gives_defaults(self):
        settings = parse_settings({})
        assert settings == LedgerSettings(source=None)

    def test_codes_are_strings(self):
        settings = parse_settings({
            "system_accounts": {"operating_cash": 1010},
            "chart_of_accounts": [{"code": 1010, "name": "Reserve Cash", "type": "asset"}],
        })
        assert settings.system_accounts.operating_cash == "1010"
        assert settings.chart_of_accounts[0].code == "1010"
        assert settings.chart_of_accounts[0].type == "ASSET"

    def test_log_level_upper_cased(self):
        assert parse_settings({"logging": {"level": "debug"}}).log_level == "DEBUG"

    def test_unknown_account_type(self):
        with pytest.raises(ConfigurationError):
            parse_settings({"chart_of_accounts": [{"code": "9", "name": "X", "type": "REVENUE"}]})

    def test_account_missing_name(self):
        with pytest.raises(ConfigurationError):
            parse_settings({"chart_of_accounts": [{"code": "9", "type": "ASSET"}]})

    def test_duplicate_codes(self):
        with pytest.raises(ConfigurationError):
            parse_settings({"chart_of_accounts": [
                {"code": "1000", "name": "A", "type": "ASSET"},
                {"code": "1000", "name": "B", "type": "ASSET"},
            ]})

    def test_negative_window(self):
        with pytest.raises(ConfigurationError):
            parse_settings({"matching": {"window_days": -1}})

    def test_bad_tolerance(self):
        with pytest.raises(ConfigurationError):
            parse_settings({"matching": {"amount_tolerance": "lots"}})


class TestLoadSettingsFromFiles:
    def test_explicit_path(self, clean_env, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text("transit:\n  stale_after_days: 9\n")
        settings = load_settings(path)
        assert settings.transit.stale_after_days == 9
        assert settings.source == str(path)

    def test_env_var_path(self, clean_env, tmp_path):
        path = tmp_path / "env.yaml"
        path.write_text("matching:\n  window_days: 5\n")
        clean_env.setenv("LEDGER_CONFIG", str(path))
        assert load_settings().matching.window_days == 5

    def test_database_url_override(self, clean_env):
        clean_env.setenv("DATABASE_URL", "postgresql://ledger@localhost/ledger")
        settings = load_settings()
        assert settings.database.url == "postgresql://ledger@localhost/ledger"
        assert settings.system_accounts.operating_cash == "1000"

    def test_missing_file(self, clean_env, tmp_path):
        missing = tmp_path / "nope.yaml"
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(missing)
        assert exc_info.value.source == str(missing)

    def test_invalid_yaml(self, clean_env, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("matching: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_settings(path)

    def test_non_mapping_root(self, clean_env, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError):
            load_settings(path)

    def test_empty_file_is_all_defaults(self, clean_env, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_settings(path).chart_of_accounts == ()


class TestAccountDefinitions:
    def test_translates_chart(self, settings):
        definitions = account_definitions(settings)
        by_code = {d.code: d for d in definitions}
        assert by_code["1001"].account_type == AccountType.ASSET
        assert by_code["4000"].account_type == AccountType.INCOME
        assert by_code["1001"].description
        assert len(definitions) == len(settings.chart_of_accounts)
