"""
ledger_services.transit_service -- Cash-in-Transit settlement of bank transfers.

Responsibility:
    Records an ACH-style transfer in two steps so that money the bank has
    only promised never shows up as Operating Cash:

        initiate   DR Cash in Transit (1001)  / CR Receivable (1200)
        settle     DR Operating Cash (1000)   / CR Cash in Transit (1001)
        reverse    DR Receivable (1200)       / CR Cash in Transit (1001)

Architecture position:
    Services -- orchestration over the kernel posting engine and ledger
    selector.  Called by the payment webhook and autopay layers.

Invariants enforced:
    - A reversal never posts to Operating Cash.
    - Every step is keyed by the transfer reference
      (transit:<ref>:initiate|settle|reverse), so webhook re-delivery
      returns the original pair instead of posting twice.
    - A transfer is settled or reversed at most once, and only after it
      was initiated.  Settle and reverse exclude each other.
    - A settle or reverse whose pair was voided no longer counts: the
      transfer is IN_FLIGHT again and the next attempt posts under a
      fresh key.

Failure modes:
    - TransferNotInFlightError: settle/reverse of a transfer that was
      never initiated, was voided, or already took the other branch.
    - ValidationError: empty reference.
    - Posting errors (UnknownAccountError, InvalidAmountError, ...)
      propagate from the posting engine.

Audit relevance:
    transit_initiated / transit_settled / transit_reversed log records
    carry the reference, lease and amount.  stale_transfers() is the
    monitoring hook for money stuck in transit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import DoubleEntryResult, EntrySpec
from ledger_kernel.domain.values import DebitCredit, EntryStatus
from ledger_kernel.exceptions import TransferNotInFlightError, ValidationError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.ledger_entry import LedgerEntry
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.utils.idempotency import operation_key, side_key

logger = get_logger("services.transit")

INITIATE = "initiate"
SETTLE = "settle"
REVERSE = "reverse"


class TransferState(str, Enum):
    NOT_INITIATED = "NOT_INITIATED"
    IN_FLIGHT = "IN_FLIGHT"
    SETTLED = "SETTLED"
    REVERSED = "REVERSED"
    VOIDED = "VOIDED"


@dataclass(frozen=True)
class InFlightTransfer:
    reference: str
    amount: Decimal
    lease_id: str | None
    initiated_on: date
    age_days: int


def transit_key(reference: str, step: str) -> str:
    return operation_key("transit", reference, step)


class TransitService:
    """
    Cash-in-Transit transfer lifecycle.

    Contract:
        Runs inside the caller's transaction and never commits.  Every
        method that posts does so through PostingEngine.post_double_entry,
        so each step is atomic on its own.
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
        self.accounts = self.settings.system_accounts
        self.engine = PostingEngine(session, self.clock)
        self.selector = LedgerSelector(session)

    def initiate(
        self,
        reference: str,
        amount: Decimal | int | str,
        lease_id: str | None,
        entry_date: date,
        description: str | None = None,
        posted_by: str = "autopay",
    ) -> DoubleEntryResult:
        """Record a transfer the bank has accepted but not yet settled."""
        reference = self._require_reference(reference)
        description = description or f"ACH Payment Initiated: {reference}"
        with LogContext.bind(lease_id=lease_id):
            result = self.engine.post_double_entry(
                EntrySpec.debit(
                    self.accounts.cash_in_transit, amount, description, entry_date,
                    posted_by, lease_id=lease_id, reference=reference,
                ),
                EntrySpec.credit(
                    self.accounts.accounts_receivable, amount, description, entry_date,
                    posted_by, lease_id=lease_id, reference=reference,
                ),
                idempotency_key=transit_key(reference, INITIATE),
            )
            logger.info(
                "transit_initiated",
                extra={
                    "reference": reference,
                    "amount": str(result.amount),
                    "transaction_id": str(result.transaction_id),
                    "was_duplicate": result.was_duplicate,
                },
            )
        return result

    def settle(
        self,
        reference: str,
        entry_date: date,
        posted_by: str = "stripe_webhook",
    ) -> DoubleEntryResult:
        """
        The bank confirmed the transfer: move it from transit to cash.

        Raises:
            TransferNotInFlightError: Not initiated, voided, or reversed.
        """
        reference = self._require_reference(reference)
        initiation = self._require_step_allowed(reference, SETTLE)
        description = f"ACH Settlement Confirmed: {reference}"
        with LogContext.bind(lease_id=initiation.lease_id):
            result = self.engine.post_double_entry(
                EntrySpec.debit(
                    self.accounts.operating_cash, initiation.amount, description,
                    entry_date, posted_by, lease_id=initiation.lease_id, reference=reference,
                ),
                EntrySpec.credit(
                    self.accounts.cash_in_transit, initiation.amount, description,
                    entry_date, posted_by, lease_id=initiation.lease_id, reference=reference,
                ),
                idempotency_key=self._step_attempt(reference, SETTLE)[0],
            )
            logger.info(
                "transit_settled",
                extra={
                    "reference": reference,
                    "amount": str(result.amount),
                    "transaction_id": str(result.transaction_id),
                    "was_duplicate": result.was_duplicate,
                },
            )
        return result

    def reverse(
        self,
        reference: str,
        entry_date: date,
        failure_message: str | None = None,
        posted_by: str = "webhook_reversal",
    ) -> DoubleEntryResult:
        """
        The transfer failed: put the amount back on the tenant's balance.

        Operating Cash is not touched; the transit debit is simply undone
        against receivables.

        Raises:
            TransferNotInFlightError: Not initiated, voided, or settled.
        """
        reference = self._require_reference(reference)
        initiation = self._require_step_allowed(reference, REVERSE)
        message = failure_message or "Payment failed"
        description = f"REVERSED: Payment failed - {message} [{reference}]"
        with LogContext.bind(lease_id=initiation.lease_id):
            result = self.engine.post_double_entry(
                EntrySpec.debit(
                    self.accounts.accounts_receivable, initiation.amount, description,
                    entry_date, posted_by, lease_id=initiation.lease_id, reference=reference,
                ),
                EntrySpec.credit(
                    self.accounts.cash_in_transit, initiation.amount, description,
                    entry_date, posted_by, lease_id=initiation.lease_id, reference=reference,
                ),
                idempotency_key=self._step_attempt(reference, REVERSE)[0],
            )
            logger.warning(
                "transit_reversed",
                extra={
                    "reference": reference,
                    "amount": str(result.amount),
                    "failure_message": message,
                    "transaction_id": str(result.transaction_id),
                    "was_duplicate": result.was_duplicate,
                },
            )
        return result

    def transfer_state(self, reference: str) -> TransferState:
        """
        Where a transfer stands.  A voided settlement or reversal no longer
        counts, so the transfer reads IN_FLIGHT again and the step can be
        posted afresh.
        """
        initiation = self._initiation_entry(reference)
        if initiation is None:
            return TransferState.NOT_INITIATED
        if initiation.status == EntryStatus.VOID:
            return TransferState.VOIDED
        if self._step_entry(reference, SETTLE) is not None:
            return TransferState.SETTLED
        if self._step_entry(reference, REVERSE) is not None:
            return TransferState.REVERSED
        return TransferState.IN_FLIGHT

    def in_flight_balance(self) -> Decimal:
        """Current balance of Cash in Transit: money promised but not confirmed."""
        return self.selector.account_balance(self.accounts.cash_in_transit).balance

    def stale_transfers(
        self, as_of: date | None = None, max_age_days: int | None = None
    ) -> list[InFlightTransfer]:
        """
        Transfers still in flight more than max_age_days after initiation.

        Defaults: as_of is today, max_age_days comes from settings.
        """
        as_of = as_of or self.clock.today()
        if max_age_days is None:
            max_age_days = self.settings.transit.stale_after_days
        cutoff = as_of - timedelta(days=max_age_days)

        initiations = self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.account_code == self.accounts.cash_in_transit)
            .where(LedgerEntry.debit_credit == DebitCredit.DR.value)
            .where(LedgerEntry.status == EntryStatus.POSTED.value)
            .where(LedgerEntry.idempotency_key.like("transit:%:initiate:DR"))
            .where(LedgerEntry.entry_date <= cutoff)
            .order_by(LedgerEntry.entry_date, LedgerEntry.reference)
        ).scalars()

        stale = []
        for entry in initiations:
            if self.transfer_state(entry.reference) != TransferState.IN_FLIGHT:
                continue
            stale.append(InFlightTransfer(
                reference=entry.reference,
                amount=entry.amount,
                lease_id=entry.lease_id,
                initiated_on=entry.entry_date,
                age_days=(as_of - entry.entry_date).days,
            ))
        if stale:
            logger.warning(
                "transit_stale_transfers",
                extra={"count": len(stale), "as_of": as_of, "max_age_days": max_age_days},
            )
        return stale

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require_reference(reference: str) -> str:
        reference = (reference or "").strip()
        if not reference:
            raise ValidationError("A transfer reference is required", field="reference")
        return reference

    def _dr_leg(self, key: str) -> LedgerEntry | None:
        return self.session.execute(
            select(LedgerEntry).where(LedgerEntry.idempotency_key == side_key(key, DebitCredit.DR))
        ).scalar_one_or_none()

    def _initiation_entry(self, reference: str) -> LedgerEntry | None:
        return self._dr_leg(transit_key(reference, INITIATE))

    def _step_attempt(self, reference: str, step: str) -> tuple[str, LedgerEntry | None]:
        """
        Key the next post of a settle or reverse goes under, and the DR leg
        already stored under it.

        Each voided attempt moves the key on to
        transit:<ref>:<step>:attempt:<n>, so the returned leg is either
        POSTED or None.
        """
        base = transit_key(reference, step)
        key, attempt = base, 1
        entry = self._dr_leg(key)
        while entry is not None and entry.status == EntryStatus.VOID:
            attempt += 1
            key = operation_key(base, "attempt", attempt)
            entry = self._dr_leg(key)
        return key, entry

    def _step_entry(self, reference: str, step: str) -> LedgerEntry | None:
        """The POSTED DR leg of a settle or reverse, if one stands."""
        return self._step_attempt(reference, step)[1]

    def _require_step_allowed(self, reference: str, step: str) -> LedgerEntry:
        """
        Return the initiation entry if `step` may be posted.

        Re-delivery of the step already taken is allowed through; the
        posting engine returns the original pair for it.
        """
        state = self.transfer_state(reference)
        already_taken = TransferState.SETTLED if step == SETTLE else TransferState.REVERSED
        if state not in (TransferState.IN_FLIGHT, already_taken):
            logger.warning(
                "transit_step_rejected",
                extra={"reference": reference, "step": step, "state": state.value},
            )
            raise TransferNotInFlightError(reference, state.value)
        return self._initiation_entry(reference)
