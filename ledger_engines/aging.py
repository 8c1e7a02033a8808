"""
Module: ledger_engines.aging
Responsibility:
    Age the open receivable of each lease.  Charges (DR to receivables)
    are settled by payments and credits (CR) oldest-first; whatever is
    still open is classified by how many days old the charge is.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    The reporting service loads POSTED receivable entries and passes them
    in; the as-of date is always an explicit parameter.

Invariants enforced:
    - FIFO: a credit always settles the oldest open charge first.  Credit
      left over after every earlier charge is settled is held and applied
      to later charges, so for a lease that owes money the buckets add up
      to its balance exactly.
    - Decimal-only arithmetic; percentages are rounded to one decimal
      place, amounts to cents.
    - Deterministic for identical inputs.

Failure modes:
    - ValueError when an entry is dated after as_of, or a bucket set is
      malformed.

Usage:
    from ledger_engines.aging import ReceivableEntry, age_receivables

    report = age_receivables(entries_by_lease, as_of=date(2025, 3, 31))
    report.totals["90+"]     # Decimal
    report.critical_count    # leases with anything older than 90 days
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Sequence

from ledger_kernel.domain.values import ZERO, DebitCredit, quantize
from ledger_kernel.logging_config import get_logger
from ledger_engines.tracer import traced_engine

logger = get_logger("engines.aging")

# Leases owing less than this are left off the report
MIN_REPORTED_BALANCE = Decimal("0.01")


@dataclass(frozen=True)
class AgeBucket:
    """A contiguous range of days; max_days None means unbounded."""

    name: str
    min_days: int
    max_days: int | None
    label: str

    def __post_init__(self) -> None:
        if self.min_days < 0:
            raise ValueError("min_days cannot be negative")
        if self.max_days is not None and self.max_days < self.min_days:
            raise ValueError("max_days cannot be less than min_days")

    def contains(self, age_days: int) -> bool:
        if age_days < self.min_days:
            return False
        return self.max_days is None or age_days <= self.max_days


RECEIVABLE_BUCKETS: tuple[AgeBucket, ...] = (
    AgeBucket("current", 0, 30, "0-30 Days"),
    AgeBucket("31-60", 31, 60, "31-60 Days"),
    AgeBucket("61-90", 61, 90, "61-90 Days"),
    AgeBucket("90+", 91, None, "90+ Days"),
)


@dataclass(frozen=True)
class ReceivableEntry:
    entry_date: date
    amount: Decimal
    debit_credit: DebitCredit
    description: str = ""


@dataclass(frozen=True)
class OpenCharge:
    charge_date: date
    remaining: Decimal
    description: str
    age_days: int
    bucket: str


@dataclass(frozen=True)
class LeaseAging:
    lease_id: str
    total_balance: Decimal
    buckets: dict[str, Decimal]
    open_charges: list[OpenCharge]
    oldest_unpaid_date: date | None
    days_outstanding: int

    def amount_in(self, bucket_name: str) -> Decimal:
        return self.buckets.get(bucket_name, ZERO)


@dataclass(frozen=True)
class AgingReport:
    as_of: date
    rows: list[LeaseAging]
    totals: dict[str, Decimal]
    percentages: dict[str, Decimal]
    buckets: tuple[AgeBucket, ...] = field(default=RECEIVABLE_BUCKETS)

    @property
    def total_receivables(self) -> Decimal:
        return sum((r.total_balance for r in self.rows), ZERO)

    @property
    def tenants_with_balance(self) -> int:
        return len(self.rows)

    @property
    def average_balance(self) -> Decimal:
        if not self.rows:
            return ZERO
        return quantize(self.total_receivables / len(self.rows))

    @property
    def high_risk_count(self) -> int:
        """Leases with anything older than 60 days."""
        return sum(1 for r in self.rows if r.amount_in("61-90") > 0 or r.amount_in("90+") > 0)

    @property
    def critical_count(self) -> int:
        """Leases with anything older than 90 days."""
        return sum(1 for r in self.rows if r.amount_in("90+") > 0)


def classify(age_days: int, buckets: Sequence[AgeBucket] = RECEIVABLE_BUCKETS) -> AgeBucket:
    for bucket in buckets:
        if bucket.contains(age_days):
            return bucket
    raise ValueError(f"No bucket covers an age of {age_days} days")


def apply_fifo(entries: Sequence[ReceivableEntry]) -> list[tuple[ReceivableEntry, Decimal]]:
    """
    Settle charges oldest-first.

    Returns (charge, remaining) for every charge with something left open,
    in date order.  Entries are processed by entry_date; same-day entries
    keep their input order.
    """
    open_charges: deque[list] = deque()
    unapplied_credit = ZERO
    for entry in sorted(entries, key=lambda e: e.entry_date):
        if DebitCredit(entry.debit_credit) == DebitCredit.DR:
            remaining = entry.amount
            if unapplied_credit > 0:
                applied = min(remaining, unapplied_credit)
                remaining -= applied
                unapplied_credit -= applied
            if remaining > 0:
                open_charges.append([entry, remaining])
            continue

        payment = entry.amount
        while payment > 0 and open_charges:
            charge = open_charges[0]
            applied = min(charge[1], payment)
            charge[1] -= applied
            payment -= applied
            if charge[1] == 0:
                open_charges.popleft()
        unapplied_credit += payment

    return [(charge, remaining) for charge, remaining in open_charges]


def age_lease(
    lease_id: str,
    entries: Sequence[ReceivableEntry],
    as_of: date,
    buckets: Sequence[AgeBucket] = RECEIVABLE_BUCKETS,
) -> LeaseAging:
    """Age one lease's receivable entries as of a date."""
    for entry in entries:
        if entry.entry_date > as_of:
            raise ValueError(
                f"Entry dated {entry.entry_date} is after the as-of date {as_of}"
            )

    total = ZERO
    for entry in entries:
        if DebitCredit(entry.debit_credit) == DebitCredit.DR:
            total += entry.amount
        else:
            total -= entry.amount

    amounts = {b.name: ZERO for b in buckets}
    open_charges: list[OpenCharge] = []
    for charge, remaining in apply_fifo(entries):
        age = (as_of - charge.entry_date).days
        bucket = classify(age, buckets)
        amounts[bucket.name] += remaining
        open_charges.append(OpenCharge(
            charge_date=charge.entry_date,
            remaining=quantize(remaining),
            description=charge.description,
            age_days=age,
            bucket=bucket.name,
        ))

    oldest = open_charges[0].charge_date if open_charges else None
    return LeaseAging(
        lease_id=lease_id,
        total_balance=quantize(total),
        buckets={name: quantize(value) for name, value in amounts.items()},
        open_charges=open_charges,
        oldest_unpaid_date=oldest,
        days_outstanding=(as_of - oldest).days if oldest else 0,
    )


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return Decimal("0.0")
    return (part / whole * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


@traced_engine("aging", "1.0", fingerprint_fields=("as_of",))
def age_receivables(
    entries_by_lease: Mapping[str, Sequence[ReceivableEntry]],
    as_of: date,
    buckets: Sequence[AgeBucket] = RECEIVABLE_BUCKETS,
) -> AgingReport:
    """
    Build the aged-receivables report.

    Postconditions:
        Only leases owing at least MIN_REPORTED_BALANCE appear, largest
        balance first.  totals has one entry per bucket.
    """
    rows = [
        age_lease(lease_id, entries, as_of, buckets)
        for lease_id, entries in entries_by_lease.items()
    ]
    rows = [r for r in rows if r.total_balance >= MIN_REPORTED_BALANCE]
    rows.sort(key=lambda r: (-r.total_balance, r.lease_id))

    totals = {b.name: sum((r.amount_in(b.name) for r in rows), ZERO) for b in buckets}
    grand_total = sum((r.total_balance for r in rows), ZERO)
    percentages = {name: _percent(amount, grand_total) for name, amount in totals.items()}

    logger.info(
        "receivables_aged",
        extra={
            "as_of": as_of,
            "leases": len(rows),
            "total_receivables": str(grand_total),
        },
    )
    return AgingReport(
        as_of=as_of,
        rows=rows,
        totals=totals,
        percentages=percentages,
        buckets=tuple(buckets),
    )
