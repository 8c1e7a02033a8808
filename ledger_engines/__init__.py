"""
Module: ledger_engines
Responsibility:
    Pure calculation engines used by the ledger services: bank-statement
    parsing, statement-to-ledger auto-matching and receivables aging.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ledger_kernel.domain, ledger_kernel.exceptions and
    ledger_kernel.logging_config.  MUST NOT import ledger_services.

Invariants enforced:
    - Purity: engines never read the clock; dates are parameters.
    - Decimal-only arithmetic for money.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine entry point is wrapped in ``@traced_engine`` and emits an
    ``engine_trace`` log record.
"""

from ledger_engines.aging import (
    RECEIVABLE_BUCKETS,
    AgeBucket,
    AgingReport,
    LeaseAging,
    OpenCharge,
    ReceivableEntry,
    age_lease,
    age_receivables,
    apply_fifo,
    classify,
)
from ledger_engines.matching import (
    DEFAULT_TOLERANCE,
    DEFAULT_WINDOW_DAYS,
    MatchableLine,
    MatchCandidate,
    MatchProposal,
    auto_match,
)
from ledger_engines.statement_parser import (
    ParsedStatementLine,
    parse_currency,
    parse_statement_csv,
    parse_statement_date,
)
from ledger_engines.tracer import traced_engine

__all__ = [
    "AgeBucket",
    "AgingReport",
    "DEFAULT_TOLERANCE",
    "DEFAULT_WINDOW_DAYS",
    "LeaseAging",
    "MatchCandidate",
    "MatchProposal",
    "MatchableLine",
    "OpenCharge",
    "ParsedStatementLine",
    "RECEIVABLE_BUCKETS",
    "ReceivableEntry",
    "age_lease",
    "age_receivables",
    "apply_fifo",
    "auto_match",
    "classify",
    "parse_currency",
    "parse_statement_csv",
    "parse_statement_date",
    "traced_engine",
]
