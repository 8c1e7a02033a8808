"""
Module: ledger_kernel.models.ledger_entry
Responsibility: ORM persistence for single-sided ledger entries.  Every
    balance and report in the system is an aggregate over this table.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - amount > 0 (CHECK constraint; the posting engine validates first).
    - debit_credit is DR or CR.
    - idempotency_key is unique: one logical operation, one row.
    - Entries written together share a transaction_id, and for every
      transaction_id sum(DR) == sum(CR) among POSTED rows.
    - Rows are never deleted.  The only permitted update is POSTED -> VOID
      together with the void_* audit columns (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate idempotency_key; the posting engine turns
      that race into "return the existing entry".

Audit relevance:
    VOID rows stay in the table with who/when/why so the history of every
    correction can be reconstructed.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TimestampedBase, UUIDString
from ledger_kernel.domain.values import DebitCredit, EntryStatus


class LedgerEntry(TimestampedBase):
    """
    One debit or one credit against one account.

    Contract:
        Created only by PostingEngine.  There is intentionally no delete
        path; "deleting" an entry means voiding it.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_ledger_entry_idempotency"),
        CheckConstraint("amount > 0", name="ck_ledger_entry_amount_positive"),
        CheckConstraint(
            "debit_credit IN ('DR', 'CR')", name="ck_ledger_entry_debit_credit"
        ),
        Index("idx_ledger_entry_account_date", "account_code", "entry_date"),
        Index("idx_ledger_entry_lease", "lease_id"),
        Index("idx_ledger_entry_transaction", "transaction_id"),
        Index("idx_ledger_entry_reference", "reference"),
    )

    # Groups the rows written by one posting call
    transaction_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    account_code: Mapped[str] = mapped_column(
        String(10), ForeignKey("accounts.code"), nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    debit_credit: Mapped[DebitCredit] = mapped_column(String(2), nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    entry_date: Mapped[date] = mapped_column(nullable=False)

    # Lease dimension (lease records live outside the ledger)
    lease_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Actor: user id, "scheduled", "stripe_webhook", ...
    posted_by: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[EntryStatus] = mapped_column(
        String(10), default=EntryStatus.POSTED.value, nullable=False
    )

    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)

    # External reference (payment intent id, check number, ...)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # On a correcting entry: the entry it replaces
    void_of_entry_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    voided_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.id} {self.debit_credit} {self.account_code} "
            f"{self.amount} {self.status}>"
        )

    @property
    def is_posted(self) -> bool:
        return self.status == EntryStatus.POSTED

    @property
    def is_void(self) -> bool:
        return self.status == EntryStatus.VOID
