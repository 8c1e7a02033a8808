"""
Pure domain layer.

Enums, amount normalization, DTOs and the clock abstraction.  No ORM, no
database, no wall-clock reads outside SystemClock.
"""

from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.dtos import AccountInfo, DoubleEntryResult, EntrySpec, PostedEntry
from ledger_kernel.domain.values import (
    AccountType,
    DebitCredit,
    EntryStatus,
    LineStatus,
    MatchConfidence,
    ReconciliationStatus,
    normal_balance_for,
    signed_amount,
    to_amount,
    to_positive_amount,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "AccountInfo",
    "DoubleEntryResult",
    "EntrySpec",
    "PostedEntry",
    "AccountType",
    "DebitCredit",
    "EntryStatus",
    "LineStatus",
    "MatchConfidence",
    "ReconciliationStatus",
    "normal_balance_for",
    "signed_amount",
    "to_amount",
    "to_positive_amount",
]
