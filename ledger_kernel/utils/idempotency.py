"""
Idempotency key generation.

A key names one logical posting.  Callers that have a natural identity for
the operation (a payment intent, a statement line, a charge and month) pass
an explicit key built with operation_key(); everything else falls back to
derive_entry_key(), a hash of the entry's own fields.

The derived key is the weaker option: two genuinely different operations
with identical account, amount, side, description, lease and date collapse
into one entry.  Callers needing both must pass explicit keys.
"""

import hashlib
from datetime import date
from decimal import Decimal

from ledger_kernel.domain.values import DebitCredit

# Longest key the ledger_entries.idempotency_key column stores
MAX_KEY_LENGTH = 200


def derive_entry_key(
    account_code: str,
    amount: Decimal,
    debit_credit: DebitCredit | str,
    description: str,
    lease_id: str | None,
    entry_date: date,
) -> str:
    """
    Derive a key from the semantic identity of a single entry.

    amount must already be normalized to cents so "2500" and
    Decimal("2500.00") hash identically.

    Example:
        >>> derive_entry_key("1200", Decimal("2500.00"), "DR", "Rent", "L1", date(2025, 1, 1))
        'entry:5d0c...'
    """
    material = "|".join([
        account_code,
        f"{amount:.2f}",
        DebitCredit(debit_credit).value,
        description,
        lease_id or "no-lease",
        entry_date.isoformat(),
    ])
    return "entry:" + hashlib.sha256(material.encode("utf-8")).hexdigest()


def operation_key(*parts: object) -> str:
    """
    Build an explicit key from its parts.

    Example:
        >>> operation_key("transit", "pi_123", "settle")
        'transit:pi_123:settle'
    """
    if not parts:
        raise ValueError("operation_key requires at least one part")
    key = ":".join(str(p) for p in parts)
    if len(key) > MAX_KEY_LENGTH - 3:
        # Leave room for the :DR / :CR suffix
        key = "op:" + hashlib.sha256(key.encode("utf-8")).hexdigest()
    return key


def side_key(key: str, debit_credit: DebitCredit | str) -> str:
    """Per-side key of a double entry posted under a pair-level key."""
    return f"{key}:{DebitCredit(debit_credit).value}"


def derive_set_key(leg_keys: list[str]) -> str:
    """
    Key for a balanced set of legs, from the legs' derived keys in order.

    Each leg is then posted under operation_key(set_key, "leg", index), so
    two identical legs within one set stay two entries.
    """
    material = "|".join(leg_keys)
    return "set:" + hashlib.sha256(material.encode("utf-8")).hexdigest()
