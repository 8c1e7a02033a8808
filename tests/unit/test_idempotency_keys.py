"""
Tests for idempotency key construction.

Verifies:
- derive_entry_key is stable and sensitive to every semantic field
- operation_key joins parts and hashes keys that would not fit the column
- side_key suffixes the pair key with the side
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.domain.values import DebitCredit
from ledger_kernel.utils.idempotency import (
    MAX_KEY_LENGTH,
    derive_entry_key,
    operation_key,
    side_key,
)

BASE = dict(
    account_code="1200",
    amount=Decimal("2500.00"),
    debit_credit=DebitCredit.DR,
    description="Rent - January 2025",
    lease_id="lease-1",
    entry_date=date(2025, 1, 1),
)


class TestDeriveEntryKey:
    def test_stable(self):
        assert derive_entry_key(**BASE) == derive_entry_key(**BASE)

    def test_prefix_and_length(self):
        key = derive_entry_key(**BASE)
        assert key.startswith("entry:")
        assert len(key) == len("entry:") + 64

    def test_string_side_equals_enum_side(self):
        assert derive_entry_key(**{**BASE, "debit_credit": "DR"}) == derive_entry_key(**BASE)

    @pytest.mark.parametrize(
        "field, value",
        [
            ("account_code", "4000"),
            ("amount", Decimal("2500.01")),
            ("debit_credit", DebitCredit.CR),
            ("description", "Rent - February 2025"),
            ("lease_id", "lease-2"),
            ("entry_date", date(2025, 1, 2)),
        ],
    )
    def test_every_field_changes_the_key(self, field, value):
        assert derive_entry_key(**{**BASE, field: value}) != derive_entry_key(**BASE)

    def test_missing_lease_is_distinct_from_named_lease(self):
        assert derive_entry_key(**{**BASE, "lease_id": None}) != derive_entry_key(**BASE)


class TestOperationKey:
    def test_joins_parts(self):
        assert operation_key("transit", "pi_123", "settle") == "transit:pi_123:settle"

    def test_non_string_parts(self):
        assert operation_key("scheduled-charge", 7, "2025-01") == "scheduled-charge:7:2025-01"

    def test_requires_a_part(self):
        with pytest.raises(ValueError):
            operation_key()

    def test_long_keys_are_hashed_with_room_for_the_side(self):
        key = operation_key("x" * 300)
        assert key.startswith("op:")
        assert len(side_key(key, DebitCredit.CR)) <= MAX_KEY_LENGTH

    def test_long_keys_stay_distinct(self):
        assert operation_key("x" * 300) != operation_key("y" * 300)


class TestSideKey:
    def test_suffixes(self):
        assert side_key("transit:pi_1:initiate", DebitCredit.DR) == "transit:pi_1:initiate:DR"
        assert side_key("transit:pi_1:initiate", "CR") == "transit:pi_1:initiate:CR"
