"""
ledger_services.reconciliation_service -- Bank reconciliation lifecycle.

Responsibility:
    Imports a bank statement period, auto-matches its lines to entries on
    the bank's ledger account, lets an operator match, unmatch, exclude or
    record a new payment/expense for each remaining line, and finally
    freezes the reconciliation.

Architecture position:
    Services -- orchestration over the kernel (posting engine, selector,
    models) and the pure engines (statement_parser, matching).

Invariants enforced:
    - record_entry is all-or-nothing: the optional vendor, the double
      entry and the line's transition to MATCHED share one savepoint.
    - record_entry checks its preconditions in a fixed order and the first
      failure wins: request shape, reconciliation exists, reconciliation
      IN_PROGRESS, line exists, line belongs to it, line UNMATCHED.
    - Lines of a FINALIZED reconciliation never change (also enforced by
      db/immutability.py).
    - A ledger entry backs at most one MATCHED line.
    - finalize requires zero UNMATCHED lines.

Failure modes:
    - ValidationError: malformed request (payment without lease, expense
      without account, bad dates, no statement lines).
    - ReconciliationNotFoundError / ReconciliationLineNotFoundError /
      BankAccountNotFoundError / VendorNotFoundError / EntryNotFoundError.
    - MismatchError: line belongs to another reconciliation.
    - ReconciliationFinalizedError, LineAlreadyMatchedError,
      LineStateError, UnmatchedLinesRemainError.
    - UnknownAccountError and other posting errors, after which nothing
      from the call is left behind.

Audit relevance:
    Every state change logs an event (reconciliation_started,
    auto_match_applied, record_entry_completed, line_matched,
    line_unmatched, line_excluded, line_included,
    reconciliation_finalized) bound to the reconciliation id.

Usage:
    service = ReconciliationService(session, clock)
    recon = service.start_reconciliation(
        bank_account_id, date(2025, 1, 1), date(2025, 1, 31),
        statement_balance="12450.00", csv_text=uploaded, created_by="admin",
    )
    service.record_entry(RecordEntryRequest(
        reconciliation_id=recon.id, line_id=line.id, type=RecordEntryType.PAYMENT,
        lease_id="lease-17",
    ))
    service.finalize(recon.id, finalized_by="admin")
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_engines.matching import MatchableLine, MatchCandidate
from ledger_engines.matching import auto_match as propose_matches
from ledger_engines.statement_parser import ParsedStatementLine, parse_statement_csv
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import DoubleEntryResult, EntrySpec, PostedEntry
from ledger_kernel.domain.values import (
    ZERO,
    DebitCredit,
    EntryStatus,
    LineStatus,
    MatchConfidence,
    ReconciliationStatus,
    signed_amount,
    to_amount,
)
from ledger_kernel.exceptions import (
    BankAccountNotFoundError,
    EntryNotFoundError,
    InvalidStateError,
    LineAlreadyMatchedError,
    LineStateError,
    MismatchError,
    ReconciliationFinalizedError,
    ReconciliationLineNotFoundError,
    ReconciliationNotFoundError,
    UnknownAccountError,
    UnmatchedLinesRemainError,
    ValidationError,
    VendorNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.ledger_entry import LedgerEntry
from ledger_kernel.models.reconciliation import BankAccount, Reconciliation, ReconciliationLine
from ledger_kernel.models.vendor import Vendor
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.utils.idempotency import operation_key, side_key

logger = get_logger("services.reconciliation")


class RecordEntryType(str, Enum):
    PAYMENT = "payment"
    EXPENSE = "expense"


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NewVendor:
    name: str
    company: str | None = None
    email: str | None = None
    phone: str | None = None
    specialties: tuple[str, ...] = ()
    payment_terms: str | None = None


@dataclass(frozen=True)
class VendorInfo:
    id: UUID
    name: str
    company: str | None
    email: str | None
    phone: str | None
    specialties: list[str]
    payment_terms: str | None
    active: bool

    @classmethod
    def from_model(cls, model: Vendor) -> VendorInfo:
        return cls(
            id=model.id,
            name=model.name,
            company=model.company,
            email=model.email,
            phone=model.phone,
            specialties=list(model.specialties or []),
            payment_terms=model.payment_terms,
            active=model.active,
        )


@dataclass(frozen=True)
class BankAccountInfo:
    id: UUID
    name: str
    ledger_account_code: str
    institution: str | None
    last_four: str | None
    active: bool

    @classmethod
    def from_model(cls, model: BankAccount) -> BankAccountInfo:
        return cls(
            id=model.id,
            name=model.name,
            ledger_account_code=model.ledger_account_code,
            institution=model.institution,
            last_four=model.last_four,
            active=model.active,
        )


@dataclass(frozen=True)
class LineInfo:
    id: UUID
    reconciliation_id: UUID
    line_date: date
    description: str
    amount: Decimal
    reference: str | None
    status: LineStatus
    ledger_entry_id: UUID | None
    matched_at: datetime | None
    match_confidence: MatchConfidence | None

    @property
    def is_matched(self) -> bool:
        return self.status == LineStatus.MATCHED

    @classmethod
    def from_model(cls, model: ReconciliationLine) -> LineInfo:
        return cls(
            id=model.id,
            reconciliation_id=model.reconciliation_id,
            line_date=model.line_date,
            description=model.description,
            amount=model.amount,
            reference=model.reference,
            status=LineStatus(model.status),
            ledger_entry_id=model.ledger_entry_id,
            matched_at=model.matched_at,
            match_confidence=(
                MatchConfidence(model.match_confidence) if model.match_confidence else None
            ),
        )


@dataclass(frozen=True)
class ReconciliationSummary:
    total_lines: int
    matched: int
    unmatched: int
    excluded: int
    auto_matched: int
    statement_balance: Decimal
    ledger_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.statement_balance - self.ledger_balance

    @property
    def ready_to_finalize(self) -> bool:
        return self.unmatched == 0


@dataclass(frozen=True)
class ReconciliationView:
    id: UUID
    bank_account_id: UUID
    start_date: date
    end_date: date
    statement_balance: Decimal
    status: ReconciliationStatus
    ledger_balance: Decimal | None
    finalized_at: datetime | None
    finalized_by: str | None
    notes: str | None
    statement_file_name: str | None
    created_by: str | None
    lines: list[LineInfo]
    summary: ReconciliationSummary

    @property
    def is_finalized(self) -> bool:
        return self.status == ReconciliationStatus.FINALIZED


@dataclass(frozen=True)
class RecordEntryRequest:
    """
    Record a payment or expense for an unmatched statement line.

    amount defaults to the absolute line amount, description to the line
    description and entry_date to the line date.
    """

    reconciliation_id: UUID
    line_id: UUID
    type: RecordEntryType
    amount: Decimal | int | str | None = None
    description: str | None = None
    entry_date: date | None = None
    lease_id: str | None = None
    account_code: str | None = None
    vendor_id: UUID | None = None
    new_vendor: NewVendor | None = None
    posted_by: str = "user"


@dataclass(frozen=True)
class RecordEntryResult:
    cash_entry: PostedEntry
    entries: DoubleEntryResult
    updated_line: LineInfo
    created_vendor: VendorInfo | None = None
    vendor_id: UUID | None = None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ReconciliationService:
    """
    Bank reconciliation, from statement import to sign-off.

    Contract:
        Runs inside the caller's transaction and never commits.  Every
        mutating method either completes or leaves no trace.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.settings = settings or LedgerSettings()
        self.engine = PostingEngine(session, self.clock)
        self.selector = LedgerSelector(session)

    # ------------------------------------------------------------------
    # Bank accounts
    # ------------------------------------------------------------------

    def create_bank_account(
        self,
        name: str,
        ledger_account_code: str | None = None,
        institution: str | None = None,
        last_four: str | None = None,
    ) -> BankAccountInfo:
        """
        Raises:
            ValidationError: Empty name or a last_four that is not 4 digits.
            UnknownAccountError: The ledger account is not in the chart.
        """
        if not name or not name.strip():
            raise ValidationError("Bank account name is required", field="name")
        if last_four is not None and not (len(last_four) == 4 and last_four.isdigit()):
            raise ValidationError("last_four must be exactly 4 digits", field="last_four")

        code = ledger_account_code or self.settings.system_accounts.operating_cash
        exists = self.session.execute(
            select(Account.code).where(Account.code == code)
        ).scalar_one_or_none()
        if exists is None:
            raise UnknownAccountError(code)

        bank_account = BankAccount(
            name=name.strip(),
            ledger_account_code=code,
            institution=institution,
            last_four=last_four,
            active=True,
        )
        self.session.add(bank_account)
        self.session.flush()
        logger.info(
            "bank_account_created",
            extra={"bank_account_id": str(bank_account.id), "ledger_account_code": code},
        )
        return BankAccountInfo.from_model(bank_account)

    def list_bank_accounts(self, active_only: bool = True) -> list[BankAccountInfo]:
        stmt = select(BankAccount).order_by(BankAccount.name)
        if active_only:
            stmt = stmt.where(BankAccount.active.is_(True))
        return [BankAccountInfo.from_model(b) for b in self.session.execute(stmt).scalars()]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_reconciliation(
        self,
        bank_account_id: UUID,
        start_date: date,
        end_date: date,
        statement_balance: Decimal | int | str,
        lines: Sequence[ParsedStatementLine] | None = None,
        csv_text: str | None = None,
        auto_match: bool = True,
        created_by: str | None = None,
        statement_file_name: str | None = None,
    ) -> ReconciliationView:
        """
        Create a reconciliation with its statement lines.

        Exactly one of lines / csv_text is given.  With auto_match the
        two-pass matcher links lines to unmatched cash entries of the
        period.

        Raises:
            BankAccountNotFoundError, ValidationError, StatementParseError.
        """
        bank_account = self.session.get(BankAccount, bank_account_id)
        if bank_account is None:
            raise BankAccountNotFoundError(str(bank_account_id))
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date", field="start_date")
        if (lines is None) == (csv_text is None):
            raise ValidationError("Provide either statement lines or CSV text", field="lines")

        statement_lines = list(lines) if lines is not None else parse_statement_csv(csv_text)
        if not statement_lines:
            raise ValidationError("A statement needs at least one line", field="lines")

        with self.session.begin_nested():
            reconciliation = Reconciliation(
                bank_account_id=bank_account.id,
                start_date=start_date,
                end_date=end_date,
                statement_balance=to_amount(statement_balance),
                status=ReconciliationStatus.IN_PROGRESS.value,
                created_by=created_by,
                statement_file_name=statement_file_name,
            )
            self.session.add(reconciliation)
            self.session.flush()

            for parsed in statement_lines:
                amount = to_amount(parsed.amount)
                if amount == ZERO:
                    raise ValidationError("Statement line amounts must be non-zero", field="amount")
                self.session.add(ReconciliationLine(
                    reconciliation_id=reconciliation.id,
                    line_date=parsed.line_date,
                    description=(parsed.description or "").strip(),
                    amount=amount,
                    reference=parsed.reference,
                    status=LineStatus.UNMATCHED.value,
                ))
            self.session.flush()

            with LogContext.bind(reconciliation_id=reconciliation.id):
                logger.info(
                    "reconciliation_started",
                    extra={
                        "bank_account_id": str(bank_account.id),
                        "start_date": start_date,
                        "end_date": end_date,
                        "lines": len(statement_lines),
                    },
                )
                if auto_match:
                    self._apply_auto_match(reconciliation, bank_account)

        return self.get_reconciliation(reconciliation.id)

    def get_reconciliation(self, reconciliation_id: UUID) -> ReconciliationView:
        reconciliation = self._require_reconciliation(reconciliation_id)
        lines = self._lines(reconciliation.id)
        return ReconciliationView(
            id=reconciliation.id,
            bank_account_id=reconciliation.bank_account_id,
            start_date=reconciliation.start_date,
            end_date=reconciliation.end_date,
            statement_balance=reconciliation.statement_balance,
            status=ReconciliationStatus(reconciliation.status),
            ledger_balance=reconciliation.ledger_balance,
            finalized_at=reconciliation.finalized_at,
            finalized_by=reconciliation.finalized_by,
            notes=reconciliation.notes,
            statement_file_name=reconciliation.statement_file_name,
            created_by=reconciliation.created_by,
            lines=[LineInfo.from_model(line) for line in lines],
            summary=self._summarize(reconciliation, lines),
        )

    def summary(self, reconciliation_id: UUID) -> ReconciliationSummary:
        reconciliation = self._require_reconciliation(reconciliation_id)
        return self._summarize(reconciliation, self._lines(reconciliation.id))

    def finalize(
        self,
        reconciliation_id: UUID,
        finalized_by: str,
        notes: str | None = None,
    ) -> ReconciliationView:
        """
        Sign off a reconciliation.  Terminal.

        Stores the ledger balance of the bank's account as of end_date.

        Raises:
            ReconciliationFinalizedError: Already finalized.
            UnmatchedLinesRemainError: Some line is still UNMATCHED.
        """
        if not finalized_by:
            raise ValidationError("finalized_by is required", field="finalized_by")
        reconciliation = self._require_open(reconciliation_id)
        lines = self._lines(reconciliation.id)
        unmatched = sum(1 for line in lines if line.status == LineStatus.UNMATCHED)

        with LogContext.bind(reconciliation_id=reconciliation.id, actor=finalized_by):
            if unmatched:
                logger.warning(
                    "reconciliation_finalize_rejected",
                    extra={"unmatched": unmatched},
                )
                raise UnmatchedLinesRemainError(str(reconciliation.id), unmatched)

            ledger_balance = self._ledger_balance(reconciliation)
            with self.session.begin_nested():
                reconciliation.ledger_balance = ledger_balance
                reconciliation.notes = notes
                reconciliation.finalized_at = self.clock.now()
                reconciliation.finalized_by = finalized_by
                reconciliation.status = ReconciliationStatus.FINALIZED.value
                self.session.flush()

            logger.info(
                "reconciliation_finalized",
                extra={
                    "statement_balance": str(reconciliation.statement_balance),
                    "ledger_balance": str(ledger_balance),
                    "difference": str(reconciliation.statement_balance - ledger_balance),
                },
            )
        return self.get_reconciliation(reconciliation.id)

    # ------------------------------------------------------------------
    # Line operations
    # ------------------------------------------------------------------

    def record_entry(self, request: RecordEntryRequest) -> RecordEntryResult:
        """
        Post the ledger side of an unmatched statement line and match it.

        payment: DR bank ledger account / CR receivables, for lease_id.
        expense: DR account_code / CR bank ledger account, optionally
        against an existing or newly created vendor.

        Postconditions:
            On success the line is MATCHED to the cash-side entry with
            confidence 'manual'.  On any failure the line is still
            UNMATCHED and neither a vendor nor an entry was created.
        """
        entry_type = self._validate_request(request)

        with LogContext.bind(reconciliation_id=request.reconciliation_id, lease_id=request.lease_id):
            reconciliation = self._require_open(request.reconciliation_id)
            line = self._require_line(reconciliation, request.line_id, for_update=True)
            self._require_line_state(line, LineStatus.UNMATCHED)

            bank_account = self.session.get(BankAccount, reconciliation.bank_account_id)
            cash_account = bank_account.ledger_account_code
            amount = request.amount if request.amount is not None else abs(line.amount)
            description = (request.description or line.description or "").strip()
            entry_date = request.entry_date or line.line_date
            common = dict(lease_id=request.lease_id, reference=line.reference)

            with self.session.begin_nested():
                created_vendor = None
                vendor_id = request.vendor_id
                if entry_type == RecordEntryType.EXPENSE and request.new_vendor is not None:
                    created_vendor = self._create_vendor(request.new_vendor)
                    vendor_id = created_vendor.id
                elif vendor_id is not None and self.session.get(Vendor, vendor_id) is None:
                    raise VendorNotFoundError(str(vendor_id))

                if entry_type == RecordEntryType.PAYMENT:
                    debit = EntrySpec.debit(
                        cash_account, amount, description, entry_date, request.posted_by, **common
                    )
                    credit = EntrySpec.credit(
                        self.settings.system_accounts.accounts_receivable, amount,
                        description, entry_date, request.posted_by, **common,
                    )
                else:
                    debit = EntrySpec.debit(
                        request.account_code, amount, description, entry_date,
                        request.posted_by, **common,
                    )
                    credit = EntrySpec.credit(
                        cash_account, amount, description, entry_date, request.posted_by, **common
                    )

                entries = self.engine.post_double_entry(
                    debit, credit, idempotency_key=self._record_entry_key(line.id)
                )
                cash_entry = (
                    entries.debit_entry if entry_type == RecordEntryType.PAYMENT
                    else entries.credit_entry
                )
                line.mark_matched(cash_entry.id, self.clock.now(), MatchConfidence.MANUAL)
                self.session.flush()

            logger.info(
                "record_entry_completed",
                extra={
                    "line_id": str(line.id),
                    "entry_type": entry_type.value,
                    "amount": str(entries.amount),
                    "cash_entry_id": str(cash_entry.id),
                    "transaction_id": str(entries.transaction_id),
                    "vendor_id": str(vendor_id) if vendor_id else None,
                    "vendor_created": created_vendor is not None,
                },
            )
            return RecordEntryResult(
                cash_entry=cash_entry,
                entries=entries,
                updated_line=LineInfo.from_model(line),
                created_vendor=created_vendor,
                vendor_id=vendor_id,
            )

    def match_line(
        self,
        reconciliation_id: UUID,
        line_id: UUID,
        ledger_entry_id: UUID,
        matched_by: str | None = None,
    ) -> LineInfo:
        """
        Manually link a line to an existing POSTED entry on the bank's
        ledger account.

        Raises:
            EntryNotFoundError: Unknown entry.
            ValidationError: Entry is on another account.
            InvalidStateError: Entry is VOID or already backs another line.
        """
        with LogContext.bind(reconciliation_id=reconciliation_id, actor=matched_by):
            reconciliation = self._require_open(reconciliation_id)
            line = self._require_line(reconciliation, line_id, for_update=True)
            self._require_line_state(line, LineStatus.UNMATCHED)

            entry = self.session.get(LedgerEntry, ledger_entry_id)
            if entry is None:
                raise EntryNotFoundError(str(ledger_entry_id))
            bank_account = self.session.get(BankAccount, reconciliation.bank_account_id)
            if entry.account_code != bank_account.ledger_account_code:
                raise ValidationError(
                    f"Entry {ledger_entry_id} is on account {entry.account_code}, "
                    f"not the bank's account {bank_account.ledger_account_code}",
                    field="ledger_entry_id",
                )
            if entry.status != EntryStatus.POSTED:
                raise InvalidStateError(
                    f"Entry {ledger_entry_id} is void and cannot be matched",
                    current_state=EntryStatus.VOID.value,
                )
            if self._entry_already_matched(entry.id):
                raise InvalidStateError(
                    f"Entry {ledger_entry_id} is already matched to a statement line",
                    current_state=LineStatus.MATCHED.value,
                )

            line.mark_matched(entry.id, self.clock.now(), MatchConfidence.MANUAL)
            self.session.flush()
            logger.info(
                "line_matched",
                extra={"line_id": str(line.id), "ledger_entry_id": str(entry.id)},
            )
            return LineInfo.from_model(line)

    def unmatch_line(self, reconciliation_id: UUID, line_id: UUID) -> LineInfo:
        """Undo a match.  The ledger entry itself is untouched."""
        with LogContext.bind(reconciliation_id=reconciliation_id):
            reconciliation = self._require_open(reconciliation_id)
            line = self._require_line(reconciliation, line_id, for_update=True)
            self._require_line_state(line, LineStatus.MATCHED)
            previous = line.ledger_entry_id
            line.clear_match()
            self.session.flush()
            logger.info(
                "line_unmatched",
                extra={"line_id": str(line.id), "ledger_entry_id": str(previous)},
            )
            return LineInfo.from_model(line)

    def exclude_line(self, reconciliation_id: UUID, line_id: UUID) -> LineInfo:
        """Mark an UNMATCHED line as not needing a ledger counterpart."""
        return self._set_excluded(reconciliation_id, line_id, exclude=True)

    def include_line(self, reconciliation_id: UUID, line_id: UUID) -> LineInfo:
        """Return an EXCLUDED line to UNMATCHED."""
        return self._set_excluded(reconciliation_id, line_id, exclude=False)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_request(request: RecordEntryRequest) -> RecordEntryType:
        try:
            entry_type = RecordEntryType(request.type)
        except ValueError as e:
            raise ValidationError(
                f"type must be 'payment' or 'expense', got {request.type!r}", field="type"
            ) from e
        if entry_type == RecordEntryType.PAYMENT and not request.lease_id:
            raise ValidationError("leaseId is required for payment entries", field="lease_id")
        if entry_type == RecordEntryType.EXPENSE and not request.account_code:
            raise ValidationError(
                "accountCode is required for expense entries", field="account_code"
            )
        if request.vendor_id is not None and request.new_vendor is not None:
            raise ValidationError(
                "Pass either vendor_id or new_vendor, not both", field="vendor_id"
            )
        return entry_type

    def _require_reconciliation(self, reconciliation_id: UUID) -> Reconciliation:
        reconciliation = self.session.get(Reconciliation, reconciliation_id)
        if reconciliation is None:
            raise ReconciliationNotFoundError(str(reconciliation_id))
        return reconciliation

    def _require_open(self, reconciliation_id: UUID) -> Reconciliation:
        reconciliation = self._require_reconciliation(reconciliation_id)
        if reconciliation.status != ReconciliationStatus.IN_PROGRESS:
            logger.warning(
                "finalized_reconciliation_modification_rejected",
                extra={"requested_reconciliation_id": str(reconciliation_id)},
            )
            raise ReconciliationFinalizedError(str(reconciliation_id))
        return reconciliation

    def _require_line(
        self, reconciliation: Reconciliation, line_id: UUID, for_update: bool = False
    ) -> ReconciliationLine:
        line = self.session.get(ReconciliationLine, line_id, with_for_update=for_update)
        if line is None:
            raise ReconciliationLineNotFoundError(str(line_id))
        if line.reconciliation_id != reconciliation.id:
            raise MismatchError(str(line_id), str(reconciliation.id), str(line.reconciliation_id))
        return line

    @staticmethod
    def _require_line_state(line: ReconciliationLine, required: LineStatus) -> None:
        current = LineStatus(line.status)
        if current == required:
            return
        if required == LineStatus.UNMATCHED and current == LineStatus.MATCHED:
            raise LineAlreadyMatchedError(str(line.id), current.value)
        raise LineStateError(str(line.id), current.value, required.value)

    def _record_entry_key(self, line_id: UUID) -> str:
        """
        Pair key for recording a line.  A retry replays the same key; once
        an earlier attempt has been voided the next attempt gets a fresh key,
        so a MATCHED line is never backed by a VOID entry.
        """
        base = operation_key("reconciliation-line", line_id)
        key, attempt = base, 1
        while self._key_voided(side_key(key, DebitCredit.DR)):
            attempt += 1
            key = operation_key(base, "attempt", attempt)
        return key

    def _key_voided(self, idempotency_key: str) -> bool:
        status = self.session.execute(
            select(LedgerEntry.status).where(LedgerEntry.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        return status == EntryStatus.VOID

    def _set_excluded(self, reconciliation_id: UUID, line_id: UUID, exclude: bool) -> LineInfo:
        with LogContext.bind(reconciliation_id=reconciliation_id):
            reconciliation = self._require_open(reconciliation_id)
            line = self._require_line(reconciliation, line_id, for_update=True)
            if exclude:
                self._require_line_state(line, LineStatus.UNMATCHED)
                line.status = LineStatus.EXCLUDED.value
            else:
                self._require_line_state(line, LineStatus.EXCLUDED)
                line.status = LineStatus.UNMATCHED.value
            self.session.flush()
            logger.info(
                "line_excluded" if exclude else "line_included",
                extra={"line_id": str(line.id)},
            )
            return LineInfo.from_model(line)

    def _create_vendor(self, new_vendor: NewVendor) -> VendorInfo:
        if not new_vendor.name or not new_vendor.name.strip():
            raise ValidationError("Vendor name is required", field="new_vendor")
        vendor = Vendor(
            name=new_vendor.name.strip(),
            company=new_vendor.company,
            email=new_vendor.email,
            phone=new_vendor.phone,
            specialties=list(new_vendor.specialties),
            payment_terms=new_vendor.payment_terms,
            active=True,
        )
        self.session.add(vendor)
        self.session.flush()
        logger.info("vendor_created", extra={"vendor_id": str(vendor.id)})
        return VendorInfo.from_model(vendor)

    def _lines(self, reconciliation_id: UUID) -> list[ReconciliationLine]:
        return list(self.session.execute(
            select(ReconciliationLine)
            .where(ReconciliationLine.reconciliation_id == reconciliation_id)
            .order_by(ReconciliationLine.line_date, ReconciliationLine.created_at)
        ).scalars())

    def _entry_already_matched(self, entry_id: UUID) -> bool:
        return self.session.execute(
            select(ReconciliationLine.id)
            .where(ReconciliationLine.ledger_entry_id == entry_id)
            .where(ReconciliationLine.status == LineStatus.MATCHED.value)
            .limit(1)
        ).first() is not None

    def _ledger_balance(self, reconciliation: Reconciliation) -> Decimal:
        bank_account = self.session.get(BankAccount, reconciliation.bank_account_id)
        return self.selector.account_balance(
            bank_account.ledger_account_code, end_date=reconciliation.end_date
        ).balance

    def _summarize(
        self, reconciliation: Reconciliation, lines: list[ReconciliationLine]
    ) -> ReconciliationSummary:
        def count(status: LineStatus) -> int:
            return sum(1 for line in lines if line.status == status)

        ledger_balance = reconciliation.ledger_balance
        if ledger_balance is None:
            ledger_balance = self._ledger_balance(reconciliation)
        return ReconciliationSummary(
            total_lines=len(lines),
            matched=count(LineStatus.MATCHED),
            unmatched=count(LineStatus.UNMATCHED),
            excluded=count(LineStatus.EXCLUDED),
            auto_matched=sum(
                1 for line in lines
                if line.status == LineStatus.MATCHED
                and line.match_confidence == MatchConfidence.AUTO
            ),
            statement_balance=reconciliation.statement_balance,
            ledger_balance=ledger_balance,
        )

    def _apply_auto_match(self, reconciliation: Reconciliation, bank_account: BankAccount) -> int:
        already_matched = select(ReconciliationLine.ledger_entry_id).where(
            ReconciliationLine.status == LineStatus.MATCHED.value,
            ReconciliationLine.ledger_entry_id.is_not(None),
        )
        entries = self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.account_code == bank_account.ledger_account_code)
            .where(LedgerEntry.status == EntryStatus.POSTED.value)
            .where(LedgerEntry.entry_date >= reconciliation.start_date)
            .where(LedgerEntry.entry_date <= reconciliation.end_date)
            .where(LedgerEntry.id.not_in(already_matched))
            .order_by(LedgerEntry.entry_date, LedgerEntry.created_at)
        ).scalars().all()
        lines = [
            line for line in self._lines(reconciliation.id)
            if line.status == LineStatus.UNMATCHED
        ]

        matching = self.settings.matching
        proposals = propose_matches(
            lines=[MatchableLine(line.id, line.line_date, line.amount) for line in lines],
            candidates=[
                MatchCandidate(e.id, e.entry_date, signed_amount(e.amount, e.debit_credit))
                for e in entries
            ],
            window_days=matching.window_days,
            tolerance=matching.amount_tolerance,
        )

        by_id = {line.id: line for line in lines}
        now = self.clock.now()
        for proposal in proposals:
            by_id[proposal.line_id].mark_matched(proposal.entry_id, now, proposal.confidence)
        self.session.flush()

        logger.info(
            "auto_match_applied",
            extra={"matched": len(proposals), "unmatched": len(lines) - len(proposals)},
        )
        return len(proposals)
