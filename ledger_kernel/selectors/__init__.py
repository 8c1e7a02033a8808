"""Selectors for the ledger kernel (read side)."""

from ledger_kernel.selectors.ledger_selector import (
    AccountBalance,
    EntryFilter,
    LedgerSelector,
    TransactionTotals,
    TrialBalance,
    TrialBalanceRow,
)

__all__ = [
    "AccountBalance",
    "EntryFilter",
    "LedgerSelector",
    "TransactionTotals",
    "TrialBalance",
    "TrialBalanceRow",
]
