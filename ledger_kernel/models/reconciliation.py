"""
Module: ledger_kernel.models.reconciliation
Responsibility: ORM persistence for bank accounts, bank reconciliations
    and the imported statement lines being matched to ledger entries.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - A FINALIZED reconciliation is terminal: neither it nor any of its
      lines may be modified afterwards (db/immutability.py).
    - A MATCHED line carries ledger_entry_id, matched_at and
      match_confidence; an UNMATCHED line carries none of them.
    - Line amounts are signed: positive = deposit, negative = withdrawal.

Audit relevance:
    ledger_balance is captured at finalize time so the reconciled state can
    be compared with the statement balance long after later postings.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TimestampedBase, UUIDString
from ledger_kernel.domain.values import LineStatus, MatchConfidence, ReconciliationStatus


class BankAccount(TimestampedBase):
    """A real bank account, tied to the ledger account that mirrors it."""

    __tablename__ = "bank_accounts"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Usually 1000 Operating Cash
    ledger_account_code: Mapped[str] = mapped_column(
        String(10), ForeignKey("accounts.code"), nullable=False
    )

    institution: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_four: Mapped[str | None] = mapped_column(String(4), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Reconciliation(TimestampedBase):
    """One statement period of one bank account."""

    __tablename__ = "reconciliations"

    __table_args__ = (
        Index("idx_reconciliation_bank_account", "bank_account_id"),
    )

    bank_account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bank_accounts.id"), nullable=False
    )

    start_date: Mapped[date] = mapped_column(nullable=False)
    end_date: Mapped[date] = mapped_column(nullable=False)

    # Closing balance printed on the statement
    statement_balance: Mapped[Decimal] = mapped_column(nullable=False)

    # Ledger balance of the bank's account as of end_date, set on finalize
    ledger_balance: Mapped[Decimal | None] = mapped_column(nullable=True)

    status: Mapped[ReconciliationStatus] = mapped_column(
        String(20), default=ReconciliationStatus.IN_PROGRESS.value, nullable=False
    )

    finalized_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finalized_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    statement_file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    bank_account: Mapped[BankAccount] = relationship()
    lines: Mapped[list["ReconciliationLine"]] = relationship(
        back_populates="reconciliation",
        order_by="ReconciliationLine.line_date",
    )

    @property
    def is_finalized(self) -> bool:
        return self.status == ReconciliationStatus.FINALIZED


class ReconciliationLine(TimestampedBase):
    """One row of an imported bank statement."""

    __tablename__ = "reconciliation_lines"

    __table_args__ = (
        Index("idx_reconciliation_line_reconciliation", "reconciliation_id"),
        Index("idx_reconciliation_line_entry", "ledger_entry_id"),
    )

    reconciliation_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("reconciliations.id"), nullable=False
    )

    line_date: Mapped[date] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)

    # Signed: + deposit, - withdrawal
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[LineStatus] = mapped_column(
        String(20), default=LineStatus.UNMATCHED.value, nullable=False
    )

    ledger_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("ledger_entries.id"), nullable=True
    )
    matched_at: Mapped[datetime | None] = mapped_column(nullable=True)
    match_confidence: Mapped[MatchConfidence | None] = mapped_column(
        String(10), nullable=True
    )

    reconciliation: Mapped[Reconciliation] = relationship(back_populates="lines")

    def mark_matched(self, ledger_entry_id: UUID, matched_at: datetime,
                     confidence: MatchConfidence) -> None:
        self.status = LineStatus.MATCHED.value
        self.ledger_entry_id = ledger_entry_id
        self.matched_at = matched_at
        self.match_confidence = MatchConfidence(confidence).value

    def clear_match(self) -> None:
        self.status = LineStatus.UNMATCHED.value
        self.ledger_entry_id = None
        self.matched_at = None
        self.match_confidence = None
