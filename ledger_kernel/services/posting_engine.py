"""
PostingEngine -- the only writer of ledger entries.

Responsibility:
    Validates and persists ledger entries: single-sided idempotent posts,
    balanced DR/CR pairs, general N-leg balanced postings, voids and
    corrections.

Architecture position:
    Kernel > Services.  Imports models, domain and utils.  Called by
    ledger_services (transit, reconciliation, scheduled charges) and by the
    unit of work.

Invariants enforced:
    - Every posted amount is a positive, cent-quantized Decimal.
    - Every account code exists in the chart of accounts (any status).
    - Entries written by one call share a transaction_id and balance:
      sum(DR) == sum(CR).  A call that cannot balance writes nothing.
    - One idempotency key, one row.  A repeated key returns the stored
      entry instead of inserting.
    - The only mutation of a stored entry is POSTED -> VOID, applied to a
      whole transaction at once so the remaining POSTED set stays balanced.

Failure modes:
    - InvalidAmountError, InvalidSideError, UnbalancedEntryError,
      ValidationError: rejected before any write.
    - UnknownAccountError: account code not in the chart.
    - IdempotencyConflictError: explicit key reused for a different entry,
      or only one side of a pair already exists.
    - EntryNotFoundError / EntryAlreadyVoidError on void.

Audit relevance:
    Every insert logs entry_posted, every idempotent replay logs
    entry_duplicate_returned, every void logs entries_voided with the
    actor and reason.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Iterator, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import DoubleEntryResult, EntrySpec, PostedEntry
from ledger_kernel.domain.values import (
    ZERO,
    DebitCredit,
    EntryStatus,
    to_positive_amount,
)
from ledger_kernel.exceptions import (
    EntryAlreadyVoidError,
    EntryNotFoundError,
    IdempotencyConflictError,
    InvalidSideError,
    UnbalancedEntryError,
    UnknownAccountError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.ledger_entry import LedgerEntry
from ledger_kernel.services.base import BaseService
from ledger_kernel.utils.idempotency import derive_entry_key, derive_set_key, operation_key, side_key

logger = get_logger("services.posting")

MAX_DESCRIPTION_LENGTH = 500


def _side(value: DebitCredit | str) -> DebitCredit:
    try:
        return DebitCredit(value)
    except ValueError as e:
        raise InvalidSideError("DR or CR", str(value)) from e


@dataclass(frozen=True)
class _PreparedEntry:
    """An EntrySpec after validation and normalization."""

    account_code: str
    amount: Decimal
    debit_credit: DebitCredit
    description: str
    entry_date: date
    posted_by: str
    lease_id: str | None
    reference: str | None
    idempotency_key: str
    explicit_key: bool


@dataclass
class LedgerTransaction:
    """
    Handle passed to code running inside PostingEngine.transaction().

    Everything posted through it shares one transaction_id.  On exit the
    entries it newly created must balance or the whole block rolls back.
    """

    engine: PostingEngine
    transaction_id: UUID
    debit_total: Decimal = ZERO
    credit_total: Decimal = ZERO
    entries: list[PostedEntry] = field(default_factory=list)

    def post_entry(self, spec: EntrySpec) -> PostedEntry:
        posted = self.engine._post_single(spec, self.transaction_id)
        self._track(posted)
        return posted

    def post_double_entry(
        self,
        debit: EntrySpec,
        credit: EntrySpec,
        idempotency_key: str | None = None,
    ) -> DoubleEntryResult:
        result = self.engine._post_pair(debit, credit, idempotency_key, self.transaction_id)
        self._track(result.debit_entry)
        self._track(result.credit_entry)
        return result

    def _track(self, posted: PostedEntry) -> None:
        self.entries.append(posted)
        if posted.was_duplicate:
            return
        if posted.debit_credit == DebitCredit.DR:
            self.debit_total += posted.amount
        else:
            self.credit_total += posted.amount

    def assert_balanced(self) -> None:
        if self.debit_total != self.credit_total:
            logger.warning(
                "transaction_unbalanced",
                extra={
                    "transaction_id": str(self.transaction_id),
                    "debits": str(self.debit_total),
                    "credits": str(self.credit_total),
                },
            )
            raise UnbalancedEntryError(str(self.debit_total), str(self.credit_total))


class PostingEngine(BaseService[LedgerEntry]):
    """
    Posts and voids ledger entries within the caller's transaction.

    Contract:
        Each public posting method runs inside its own savepoint: it either
        writes every entry it was asked for or none of them.  The caller
        commits.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post_entry(self, spec: EntrySpec, transaction_id: UUID | None = None) -> PostedEntry:
        """
        Idempotent single-sided post.

        A single entry does not balance on its own; callers combine it with
        an opposite entry under the same transaction_id, or use
        transaction() / post_double_entry().

        Postconditions:
            Calling twice with an identical spec returns the same id and
            leaves exactly one row.
        """
        return self._post_single(spec, transaction_id or uuid4())

    def post_double_entry(
        self,
        debit: EntrySpec,
        credit: EntrySpec,
        idempotency_key: str | None = None,
    ) -> DoubleEntryResult:
        """
        Atomically post a balanced DR/CR pair.

        Preconditions:
            - debit.debit_credit is DR, credit.debit_credit is CR.
            - Both amounts are positive and equal after cent quantization.
            - Both account codes exist.

        Postconditions:
            Two POSTED rows sharing a transaction_id, or (on any failure)
            no rows at all.  Re-posting the same pair returns the original
            pair with was_duplicate=True.

        Raises:
            InvalidSideError, InvalidAmountError, UnbalancedEntryError,
            UnknownAccountError, IdempotencyConflictError.
        """
        return self._post_pair(debit, credit, idempotency_key, uuid4())

    def post_balanced_entries(
        self,
        specs: Sequence[EntrySpec],
        idempotency_key: str | None = None,
    ) -> list[PostedEntry]:
        """
        Post N entries that balance as a group (e.g. a split payment).

        Legs without their own key are keyed by the set key and their
        position, so identical legs in one set are posted separately.  The
        set key is idempotency_key, or derived from all legs when omitted.

        Raises:
            ValidationError: If there is not at least one DR and one CR.
            UnbalancedEntryError: If sum(DR) != sum(CR) after quantization.
            IdempotencyConflictError: Only some legs of the set exist, or
                the set key already names different legs.
        """
        prepared = [self._prepare(spec) for spec in specs]
        sides = {p.debit_credit for p in prepared}
        if sides != {DebitCredit.DR, DebitCredit.CR}:
            raise ValidationError(
                "A balanced posting needs at least one debit and one credit",
                field="debit_credit",
            )
        self._require_balanced(prepared)

        set_key = idempotency_key or derive_set_key([p.idempotency_key for p in prepared])
        keyed = [
            spec if spec.idempotency_key is not None
            else spec.with_key(operation_key(set_key, "leg", index))
            for index, spec in enumerate(specs)
        ]
        existing = [self._find_by_key(spec.idempotency_key) for spec in keyed]
        stored = [e for e in existing if e is not None]
        if stored and len(stored) != len(existing):
            missing = next(s for s, e in zip(keyed, existing) if e is None)
            found = stored[0]
            logger.warning(
                "balanced_entries_partial_duplicate",
                extra={"idempotency_key": missing.idempotency_key, "existing_entry_id": str(found.id)},
            )
            raise IdempotencyConflictError(missing.idempotency_key, str(found.id), "counterpart")

        with self.transaction() as txn:
            for spec in keyed:
                txn.post_entry(spec)
        return txn.entries

    @contextmanager
    def transaction(self) -> Iterator[LedgerTransaction]:
        """
        Group several posts under one transaction_id and one savepoint.

        Usage:
            with engine.transaction() as txn:
                txn.post_entry(EntrySpec.debit("1200", amount, ...))
                txn.post_entry(EntrySpec.credit("4000", amount, ...))

        The block's new entries must balance on exit; otherwise
        UnbalancedEntryError is raised and the savepoint is rolled back.
        """
        with self.session.begin_nested():
            txn = LedgerTransaction(engine=self, transaction_id=uuid4())
            yield txn
            txn.assert_balanced()

    # ------------------------------------------------------------------
    # Voids and corrections
    # ------------------------------------------------------------------

    def void_entry(self, entry_id: UUID, reason: str, voided_by: str) -> list[PostedEntry]:
        """
        Void an entry together with the rest of its transaction.

        Voiding one leg of a pair alone would leave the other leg POSTED and
        the ledger out of balance, so the whole transaction flips to VOID.

        Raises:
            EntryNotFoundError: Unknown entry id.
            EntryAlreadyVoidError: The entry is already VOID.
        """
        entry = self.session.get(LedgerEntry, entry_id)
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        if entry.status == EntryStatus.VOID:
            raise EntryAlreadyVoidError(str(entry_id))
        return self.void_transaction(entry.transaction_id, reason, voided_by)

    def void_transaction(
        self, transaction_id: UUID, reason: str, voided_by: str
    ) -> list[PostedEntry]:
        """
        Flip every POSTED entry of a transaction to VOID.

        Raises:
            EntryNotFoundError: No entries carry this transaction_id.
            EntryAlreadyVoidError: Every entry of the transaction is VOID.
            ValidationError: Empty reason or actor.
        """
        if not reason or not reason.strip():
            raise ValidationError("A void reason is required", field="reason")
        if not voided_by:
            raise ValidationError("voided_by is required", field="voided_by")

        entries = list(self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.transaction_id == transaction_id)
            .with_for_update()
        ).scalars())
        if not entries:
            raise EntryNotFoundError(str(transaction_id))

        posted = [e for e in entries if e.status == EntryStatus.POSTED]
        if not posted:
            raise EntryAlreadyVoidError(str(entries[0].id))

        now = self.clock.now()
        with self.session.begin_nested():
            for entry in posted:
                entry.status = EntryStatus.VOID.value
                entry.void_reason = reason.strip()
                entry.voided_by = voided_by
                entry.voided_at = now

        logger.info(
            "entries_voided",
            extra={
                "transaction_id": str(transaction_id),
                "entry_ids": [str(e.id) for e in posted],
                "reason": reason,
                "voided_by": voided_by,
            },
        )
        return [PostedEntry.from_model(e) for e in posted]

    def post_correction(
        self,
        entry_id: UUID,
        debit: EntrySpec,
        credit: EntrySpec,
        reason: str,
        corrected_by: str,
    ) -> DoubleEntryResult:
        """
        Replace a posted transaction: void it and post the corrected pair.

        Both steps share one savepoint.  The new entries carry
        void_of_entry_id pointing at the entry being corrected.
        """
        with self.session.begin_nested():
            self.void_entry(entry_id, reason, corrected_by)
            result = self._post_pair(
                debit,
                credit,
                operation_key("correction", entry_id),
                uuid4(),
                void_of_entry_id=entry_id,
            )
        logger.info(
            "entry_corrected",
            extra={
                "corrected_entry_id": str(entry_id),
                "transaction_id": str(result.transaction_id),
                "corrected_by": corrected_by,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _post_pair(
        self,
        debit: EntrySpec,
        credit: EntrySpec,
        idempotency_key: str | None,
        transaction_id: UUID,
        void_of_entry_id: UUID | None = None,
    ) -> DoubleEntryResult:
        if _side(debit.debit_credit) != DebitCredit.DR:
            raise InvalidSideError(DebitCredit.DR.value, _side(debit.debit_credit).value)
        if _side(credit.debit_credit) != DebitCredit.CR:
            raise InvalidSideError(DebitCredit.CR.value, _side(credit.debit_credit).value)

        if idempotency_key is not None:
            debit = debit.with_key(side_key(idempotency_key, DebitCredit.DR))
            credit = credit.with_key(side_key(idempotency_key, DebitCredit.CR))

        dr = self._prepare(debit)
        cr = self._prepare(credit)
        if dr.amount != cr.amount:
            logger.warning(
                "double_entry_rejected",
                extra={"reason": "amount_mismatch", "debit": str(dr.amount), "credit": str(cr.amount)},
            )
            raise UnbalancedEntryError(str(dr.amount), str(cr.amount))

        duplicate = self._existing_pair(dr, cr)
        if duplicate is not None:
            return duplicate

        try:
            with self.session.begin_nested():
                debit_entry = self._insert(dr, transaction_id, void_of_entry_id)
                credit_entry = self._insert(cr, transaction_id, void_of_entry_id)
        except IntegrityError:
            # Concurrent delivery of the same pair: the other writer won
            duplicate = self._existing_pair(dr, cr)
            if duplicate is None:
                raise
            return duplicate

        logger.info(
            "double_entry_posted",
            extra={
                "transaction_id": str(transaction_id),
                "debit_account": dr.account_code,
                "credit_account": cr.account_code,
                "amount": str(dr.amount),
                "lease_id": dr.lease_id or cr.lease_id,
            },
        )
        return DoubleEntryResult(
            debit_entry=PostedEntry.from_model(debit_entry),
            credit_entry=PostedEntry.from_model(credit_entry),
        )

    def _existing_pair(
        self, dr: _PreparedEntry, cr: _PreparedEntry
    ) -> DoubleEntryResult | None:
        """
        The stored pair for these side keys, or None when neither side exists.

        Raises:
            IdempotencyConflictError: Only one side exists, or a stored side
                differs from the request.
        """
        existing_dr = self._find_by_key(dr.idempotency_key)
        existing_cr = self._find_by_key(cr.idempotency_key)
        if existing_dr is None and existing_cr is None:
            return None
        if existing_dr is None or existing_cr is None:
            found, prepared = (existing_dr, dr) if existing_dr is not None else (existing_cr, cr)
            logger.warning(
                "double_entry_partial_duplicate",
                extra={"idempotency_key": prepared.idempotency_key, "existing_entry_id": str(found.id)},
            )
            raise IdempotencyConflictError(prepared.idempotency_key, str(found.id), "counterpart")

        self._check_conflict(existing_dr, dr)
        self._check_conflict(existing_cr, cr)
        logger.info(
            "double_entry_duplicate_returned",
            extra={
                "transaction_id": str(existing_dr.transaction_id),
                "debit_entry_id": str(existing_dr.id),
                "credit_entry_id": str(existing_cr.id),
            },
        )
        return DoubleEntryResult(
            debit_entry=PostedEntry.from_model(existing_dr, was_duplicate=True),
            credit_entry=PostedEntry.from_model(existing_cr, was_duplicate=True),
        )

    def _post_single(self, spec: EntrySpec, transaction_id: UUID) -> PostedEntry:
        prepared = self._prepare(spec)

        existing = self._find_by_key(prepared.idempotency_key)
        if existing is not None:
            return self._duplicate(existing, prepared)

        try:
            with self.session.begin_nested():
                entry = self._insert(prepared, transaction_id)
        except IntegrityError:
            # Concurrent insert of the same key: the other writer won
            existing = self._find_by_key(prepared.idempotency_key)
            if existing is None:
                raise
            return self._duplicate(existing, prepared)

        return PostedEntry.from_model(entry)

    def _duplicate(self, existing: LedgerEntry, prepared: _PreparedEntry) -> PostedEntry:
        self._check_conflict(existing, prepared)
        logger.info(
            "entry_duplicate_returned",
            extra={
                "entry_id": str(existing.id),
                "idempotency_key": prepared.idempotency_key,
                "status": existing.status,
            },
        )
        return PostedEntry.from_model(existing, was_duplicate=True)

    def _insert(
        self,
        prepared: _PreparedEntry,
        transaction_id: UUID,
        void_of_entry_id: UUID | None = None,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            transaction_id=transaction_id,
            account_code=prepared.account_code,
            amount=prepared.amount,
            debit_credit=prepared.debit_credit.value,
            description=prepared.description,
            entry_date=prepared.entry_date,
            lease_id=prepared.lease_id,
            posted_by=prepared.posted_by,
            status=EntryStatus.POSTED.value,
            idempotency_key=prepared.idempotency_key,
            reference=prepared.reference,
            void_of_entry_id=void_of_entry_id,
            created_at=self.clock.now(),
        )
        self.session.add(entry)
        self.session.flush()
        logger.info(
            "entry_posted",
            extra={
                "entry_id": str(entry.id),
                "transaction_id": str(transaction_id),
                "account_code": prepared.account_code,
                "debit_credit": prepared.debit_credit.value,
                "amount": str(prepared.amount),
                "lease_id": prepared.lease_id,
                "posted_by": prepared.posted_by,
            },
        )
        return entry

    def _prepare(self, spec: EntrySpec) -> _PreparedEntry:
        amount = to_positive_amount(spec.amount)
        side = _side(spec.debit_credit)

        description = (spec.description or "").strip()
        if not description:
            raise ValidationError("description is required", field="description")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"description exceeds {MAX_DESCRIPTION_LENGTH} characters",
                field="description",
            )
        if not spec.posted_by:
            raise ValidationError("posted_by is required", field="posted_by")

        entry_date = spec.entry_date
        if isinstance(entry_date, datetime):
            entry_date = entry_date.date()
        if not isinstance(entry_date, date):
            raise ValidationError("entry_date must be a date", field="entry_date")

        self._require_account(spec.account_code)

        explicit = spec.idempotency_key is not None
        key = spec.idempotency_key if explicit else derive_entry_key(
            spec.account_code, amount, side, description, spec.lease_id, entry_date
        )
        return _PreparedEntry(
            account_code=spec.account_code,
            amount=amount,
            debit_credit=side,
            description=description,
            entry_date=entry_date,
            posted_by=spec.posted_by,
            lease_id=spec.lease_id,
            reference=spec.reference,
            idempotency_key=key,
            explicit_key=explicit,
        )

    def _require_account(self, account_code: str) -> None:
        found = self.session.execute(
            select(Account.code).where(Account.code == account_code)
        ).scalar_one_or_none()
        if found is None:
            logger.warning("posting_rejected_unknown_account", extra={"account_code": account_code})
            raise UnknownAccountError(account_code)

    def _require_balanced(self, prepared: Sequence[_PreparedEntry]) -> None:
        debits = sum((p.amount for p in prepared if p.debit_credit == DebitCredit.DR), ZERO)
        credits = sum((p.amount for p in prepared if p.debit_credit == DebitCredit.CR), ZERO)
        if debits != credits:
            logger.warning(
                "balanced_entries_rejected",
                extra={"debits": str(debits), "credits": str(credits)},
            )
            raise UnbalancedEntryError(str(debits), str(credits))

    def _find_by_key(self, idempotency_key: str) -> LedgerEntry | None:
        return self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.idempotency_key == idempotency_key)
            .with_for_update()
        ).scalar_one_or_none()

    @staticmethod
    def _check_conflict(existing: LedgerEntry, prepared: _PreparedEntry) -> None:
        """An explicit key must keep naming the same entry."""
        if not prepared.explicit_key:
            return
        for name, stored, requested in (
            ("account_code", existing.account_code, prepared.account_code),
            ("amount", existing.amount, prepared.amount),
            ("debit_credit", existing.debit_credit, prepared.debit_credit),
        ):
            if stored != requested:
                logger.warning(
                    "idempotency_conflict",
                    extra={
                        "idempotency_key": prepared.idempotency_key,
                        "existing_entry_id": str(existing.id),
                        "field": name,
                    },
                )
                raise IdempotencyConflictError(prepared.idempotency_key, str(existing.id), name)
