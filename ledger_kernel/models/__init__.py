"""ORM models for the ledger."""

from ledger_kernel.models.account import Account
from ledger_kernel.models.ledger_entry import LedgerEntry
from ledger_kernel.models.reconciliation import BankAccount, Reconciliation, ReconciliationLine
from ledger_kernel.models.scheduled_charge import ScheduledCharge
from ledger_kernel.models.vendor import Vendor

__all__ = [
    "Account",
    "LedgerEntry",
    "BankAccount",
    "Reconciliation",
    "ReconciliationLine",
    "ScheduledCharge",
    "Vendor",
]
