"""
Values -- closed enums and amount normalization for the ledger.

Responsibility:
    The vocabulary every other layer speaks: account types, entry sides,
    entry/line/reconciliation statuses, and the single place where
    caller-supplied amounts become cent-precision Decimals.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - normal_balance_for is total over AccountType.
    - Stored amounts are Decimal quantized to cents; floats are rejected
      outright rather than converted.
    - |amount| <= MAX_AMOUNT, the range of the Numeric(12, 2) columns.
    - Posted amounts are strictly positive after quantization.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum

from ledger_kernel.exceptions import InvalidAmountError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Largest magnitude a Numeric(12, 2) money column holds
MAX_AMOUNT = Decimal("9999999999.99")
_OUT_OF_RANGE = Decimal("1E10")


class AccountType(str, Enum):
    """Financial statement class of an account."""

    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    EQUITY = "EQUITY"


class DebitCredit(str, Enum):
    """Side of a ledger entry, and the normal balance side of an account."""

    DR = "DR"
    CR = "CR"


class EntryStatus(str, Enum):
    """POSTED counts toward balances. VOID is retained for audit only."""

    POSTED = "POSTED"
    VOID = "VOID"


class ReconciliationStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    FINALIZED = "FINALIZED"


class LineStatus(str, Enum):
    UNMATCHED = "UNMATCHED"
    MATCHED = "MATCHED"
    EXCLUDED = "EXCLUDED"


class MatchConfidence(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


def normal_balance_for(account_type: AccountType | str) -> DebitCredit:
    """
    Side on which an account of this type naturally increases.

    Raises:
        ValueError: If account_type is not an AccountType value.
    """
    match AccountType(account_type):
        case AccountType.ASSET | AccountType.EXPENSE:
            return DebitCredit.DR
        case AccountType.LIABILITY | AccountType.INCOME | AccountType.EQUITY:
            return DebitCredit.CR


def to_amount(value: Decimal | int | str) -> Decimal:
    """
    Normalize a caller-supplied amount to a cent-precision Decimal.

    Accepts Decimal, int or a numeric string ("2500", "2,500.00", "$12.5").
    Rejects float, bool, NaN, infinity and anything beyond MAX_AMOUNT.

    Raises:
        InvalidAmountError: If the value cannot be used as a money amount.
    """
    if isinstance(value, bool):
        raise InvalidAmountError(value, "booleans are not amounts")
    if isinstance(value, float):
        raise InvalidAmountError(value, "floats are not accepted; pass Decimal or str")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("$", "")
        try:
            amount = Decimal(cleaned)
        except InvalidOperation as e:
            raise InvalidAmountError(value, "not a number") from e
    else:
        raise InvalidAmountError(value, f"unsupported type {type(value).__name__}")

    if not amount.is_finite():
        raise InvalidAmountError(value, "amount must be finite")
    if amount.copy_abs() >= _OUT_OF_RANGE:
        raise InvalidAmountError(value, f"amount exceeds {MAX_AMOUNT}")
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount.copy_abs() > MAX_AMOUNT:
        raise InvalidAmountError(value, f"amount exceeds {MAX_AMOUNT}")
    return amount


def to_positive_amount(value: Decimal | int | str) -> Decimal:
    """
    Normalize an amount that is about to be posted.

    Raises:
        InvalidAmountError: If not a valid amount or not > 0 after rounding.
    """
    amount = to_amount(value)
    if amount <= ZERO:
        raise InvalidAmountError(value, "amount must be greater than zero")
    return amount


def signed_amount(amount: Decimal, side: DebitCredit | str) -> Decimal:
    """DR entries count positive, CR entries negative."""
    return amount if DebitCredit(side) == DebitCredit.DR else -amount


def quantize(value: Decimal | int | float | str | None) -> Decimal:
    """
    Re-quantize a database aggregate to cents.

    Aggregates come back from some drivers as float or int; they are
    converted through str so no binary float digits survive.
    """
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
