"""Utility modules for the ledger kernel."""

from ledger_kernel.utils.idempotency import (
    derive_entry_key,
    operation_key,
    side_key,
)

__all__ = ["derive_entry_key", "operation_key", "side_key"]
