"""
Module: ledger_engines.matching
Responsibility:
    Propose links between imported bank-statement lines and the ledger
    entries on the bank's cash account, so an operator only has to look at
    what is left over.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    The reconciliation service loads the lines and candidate entries,
    calls auto_match(), and applies the proposals.

Invariants enforced:
    - One-to-one: each ledger entry is proposed for at most one line, and
      each line receives at most one proposal.
    - Amounts compare signed: a DR to the cash account is a deposit (+),
      a CR is a withdrawal (-).  A deposit never matches a withdrawal.
    - Deterministic: ties are broken by candidate order, so the same
      inputs always produce the same proposals.

Algorithm:
    Pass 1 (dated): amount within tolerance and entry date within
        +/- window_days of the line date.  The closest date wins.
    Pass 2 (period): for lines still unmatched, amount within tolerance
        anywhere in the candidate set (the caller restricts candidates to
        the reconciliation period).  The closest date still wins.

Failure modes:
    - ValueError for a negative window or tolerance.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from ledger_kernel.domain.values import MatchConfidence
from ledger_kernel.logging_config import get_logger
from ledger_engines.tracer import traced_engine

logger = get_logger("engines.matching")

DEFAULT_WINDOW_DAYS = 3
DEFAULT_TOLERANCE = Decimal("0.005")


@dataclass(frozen=True)
class MatchableLine:
    """A statement line awaiting a match.  amount is signed."""

    line_id: UUID
    line_date: date
    amount: Decimal


@dataclass(frozen=True)
class MatchCandidate:
    """A POSTED entry on the bank's ledger account."""

    entry_id: UUID
    entry_date: date
    signed_amount: Decimal


@dataclass(frozen=True)
class MatchProposal:
    line_id: UUID
    entry_id: UUID
    day_distance: int
    match_pass: int
    confidence: MatchConfidence = MatchConfidence.AUTO


def _closest(
    line: MatchableLine,
    candidates: Sequence[MatchCandidate],
    used: set[UUID],
    tolerance: Decimal,
    window_days: int | None,
) -> MatchCandidate | None:
    best: MatchCandidate | None = None
    best_distance = 0
    for candidate in candidates:
        if candidate.entry_id in used:
            continue
        if abs(candidate.signed_amount - line.amount) > tolerance:
            continue
        distance = abs((candidate.entry_date - line.line_date).days)
        if window_days is not None and distance > window_days:
            continue
        if best is None or distance < best_distance:
            best, best_distance = candidate, distance
    return best


@traced_engine("matching", "1.0", fingerprint_fields=("window_days", "tolerance"))
def auto_match(
    lines: Sequence[MatchableLine],
    candidates: Sequence[MatchCandidate],
    window_days: int = DEFAULT_WINDOW_DAYS,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> list[MatchProposal]:
    """
    Two-pass, one-to-one auto-match.

    Postconditions:
        Every returned proposal pairs a distinct line with a distinct
        entry.  Lines are processed in date order (then input order).
    """
    if window_days < 0:
        raise ValueError("window_days cannot be negative")
    if tolerance < 0:
        raise ValueError("tolerance cannot be negative")

    ordered = sorted(enumerate(lines), key=lambda pair: (pair[1].line_date, pair[0]))
    used: set[UUID] = set()
    proposals: dict[UUID, MatchProposal] = {}

    for match_pass, window in ((1, window_days), (2, None)):
        for _, line in ordered:
            if line.line_id in proposals:
                continue
            found = _closest(line, candidates, used, tolerance, window)
            if found is None:
                continue
            used.add(found.entry_id)
            proposals[line.line_id] = MatchProposal(
                line_id=line.line_id,
                entry_id=found.entry_id,
                day_distance=abs((found.entry_date - line.line_date).days),
                match_pass=match_pass,
            )

    logger.info(
        "auto_match_completed",
        extra={
            "lines": len(lines),
            "candidates": len(candidates),
            "matched": len(proposals),
            "dated_matches": sum(1 for p in proposals.values() if p.match_pass == 1),
        },
    )
    return list(proposals.values())
