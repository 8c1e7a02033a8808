"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.chart_of_accounts import AccountDefinition, ChartOfAccountsService
from ledger_kernel.services.posting_engine import LedgerTransaction, PostingEngine
from ledger_kernel.services.unit_of_work import (
    LedgerUnitOfWork,
    ledger_unit_of_work,
    with_ledger_transaction,
)

__all__ = [
    "AccountDefinition",
    "ChartOfAccountsService",
    "LedgerTransaction",
    "PostingEngine",
    "LedgerUnitOfWork",
    "ledger_unit_of_work",
    "with_ledger_transaction",
]
