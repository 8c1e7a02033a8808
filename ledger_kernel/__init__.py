"""
Ledger Kernel

The double-entry core of the property-management ledger:
- Balanced, atomic posting of debit/credit pairs
- Idempotent posting keyed by explicit or derived keys
- VOID as the only correction path (no hard delete)
- Balances derived from posted entries, never stored
"""

__version__ = "0.1.0"
