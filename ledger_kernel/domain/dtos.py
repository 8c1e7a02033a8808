"""
DTOs -- immutable data crossing the kernel boundary.

Responsibility:
    EntrySpec is what callers hand the posting engine; PostedEntry and
    DoubleEntryResult are what they get back.  Services return DTOs, never
    ORM instances, so callers cannot mutate a stored entry by accident.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  from_model() converters exist for
    the service layer and are the only place ORM types are touched.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from ledger_kernel.domain.values import (
    AccountType,
    DebitCredit,
    EntryStatus,
)

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.ledger_entry import LedgerEntry as LedgerEntryModel


@dataclass(frozen=True)
class EntrySpec:
    """
    One side of a posting as requested by a caller.

    amount is normalized (and validated) by the posting engine, so callers
    may pass Decimal, int or a numeric string.  idempotency_key is optional;
    without it the engine derives one from the other fields.
    """

    account_code: str
    amount: Decimal | int | str
    debit_credit: DebitCredit
    description: str
    entry_date: date
    posted_by: str
    lease_id: str | None = None
    reference: str | None = None
    idempotency_key: str | None = None

    @classmethod
    def debit(cls, account_code: str, amount: Decimal | int | str, description: str,
              entry_date: date, posted_by: str, **kwargs) -> EntrySpec:
        return cls(account_code, amount, DebitCredit.DR, description, entry_date,
                   posted_by, **kwargs)

    @classmethod
    def credit(cls, account_code: str, amount: Decimal | int | str, description: str,
               entry_date: date, posted_by: str, **kwargs) -> EntrySpec:
        return cls(account_code, amount, DebitCredit.CR, description, entry_date,
                   posted_by, **kwargs)

    def with_key(self, idempotency_key: str | None) -> EntrySpec:
        return replace(self, idempotency_key=idempotency_key)


@dataclass(frozen=True)
class PostedEntry:
    """
    A stored ledger entry.

    was_duplicate is True when the idempotency guard returned an entry that
    already existed instead of inserting a new row.
    """

    id: UUID
    transaction_id: UUID
    account_code: str
    amount: Decimal
    debit_credit: DebitCredit
    description: str
    entry_date: date
    posted_by: str
    status: EntryStatus
    idempotency_key: str
    created_at: datetime
    lease_id: str | None = None
    reference: str | None = None
    void_reason: str | None = None
    voided_by: str | None = None
    voided_at: datetime | None = None
    was_duplicate: bool = False

    @property
    def is_posted(self) -> bool:
        return self.status == EntryStatus.POSTED

    @classmethod
    def from_model(cls, model: LedgerEntryModel, was_duplicate: bool = False) -> PostedEntry:
        return cls(
            id=model.id,
            transaction_id=model.transaction_id,
            account_code=model.account_code,
            amount=model.amount,
            debit_credit=DebitCredit(model.debit_credit),
            description=model.description,
            entry_date=model.entry_date,
            posted_by=model.posted_by,
            status=EntryStatus(model.status),
            idempotency_key=model.idempotency_key,
            created_at=model.created_at,
            lease_id=model.lease_id,
            reference=model.reference,
            void_reason=model.void_reason,
            voided_by=model.voided_by,
            voided_at=model.voided_at,
            was_duplicate=was_duplicate,
        )


@dataclass(frozen=True)
class DoubleEntryResult:
    """The DR/CR pair produced by one double-entry post."""

    debit_entry: PostedEntry
    credit_entry: PostedEntry

    @property
    def transaction_id(self) -> UUID:
        return self.debit_entry.transaction_id

    @property
    def amount(self) -> Decimal:
        return self.debit_entry.amount

    @property
    def was_duplicate(self) -> bool:
        return self.debit_entry.was_duplicate and self.credit_entry.was_duplicate


@dataclass(frozen=True)
class AccountInfo:
    """Read-only view of a chart-of-accounts row."""

    id: UUID
    code: str
    name: str
    account_type: AccountType
    normal_balance: DebitCredit
    active: bool
    description: str | None = None

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == DebitCredit.DR

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountInfo:
        return cls(
            id=model.id,
            code=model.code,
            name=model.name,
            account_type=AccountType(model.account_type),
            normal_balance=DebitCredit(model.normal_balance),
            active=model.active,
            description=model.description,
        )
