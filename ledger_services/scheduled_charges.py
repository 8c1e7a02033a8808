"""
ledger_services.scheduled_charges -- Recurring lease charges.

Responsibility:
    Keeps the per-lease schedule of monthly charges (rent, pet fee,
    parking, ...) and posts the ones that are due: DR Receivable (1200) /
    CR the charge's income account.

Architecture position:
    Services -- called by the daily cron job and the admin CLI.  The
    ledger does not schedule anything itself; post_due_charges() is the
    operation a scheduler calls.

Invariants enforced:
    - At most one posting per charge per calendar month.  The month is
      part of the idempotency key (scheduled-charge:<id>:<YYYY-MM>), so a
      second or concurrent run of the batch cannot double-charge.
    - The posting and the charge's last_charged_date update share one
      savepoint.
    - Charges are independent: one failing charge is reported and the
      batch moves on.

Failure modes:
    - ValidationError / UnknownAccountError from create_charge.
    - ScheduledChargeNotFoundError for an unknown charge id.
    - Per-charge posting failures are returned as ChargeOutcome.ERROR
      results, not raised.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import EntrySpec
from ledger_kernel.domain.values import to_positive_amount
from ledger_kernel.exceptions import (
    LedgerError,
    ScheduledChargeNotFoundError,
    UnknownAccountError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.scheduled_charge import ScheduledCharge
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.utils.idempotency import operation_key

logger = get_logger("services.scheduled_charges")

SCHEDULED_POSTER = "scheduled"
MAX_CHARGE_DAY = 28


class ChargeOutcome(str, Enum):
    POSTED = "posted"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class ScheduledChargeInfo:
    id: UUID
    lease_id: str
    description: str
    amount: Decimal
    account_code: str
    charge_day: int
    active: bool
    last_charged_date: date | None

    @classmethod
    def from_model(cls, model: ScheduledCharge) -> ScheduledChargeInfo:
        return cls(
            id=model.id,
            lease_id=model.lease_id,
            description=model.description,
            amount=model.amount,
            account_code=model.account_code,
            charge_day=model.charge_day,
            active=model.active,
            last_charged_date=model.last_charged_date,
        )


@dataclass(frozen=True)
class ChargeResult:
    charge_id: UUID
    lease_id: str
    description: str
    amount: Decimal
    outcome: ChargeOutcome
    message: str
    transaction_id: UUID | None = None


def charge_period(day: date) -> str:
    """YYYY-MM of the month a charge is posted for."""
    return f"{day.year:04d}-{day.month:02d}"


def charge_description(description: str, day: date) -> str:
    """'Rent' on 2025-01-01 -> 'Rent - January 2025'."""
    return f"{description} - {calendar.month_name[day.month]} {day.year}"


class ScheduledChargeService:
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

    def create_charge(
        self,
        lease_id: str,
        description: str,
        amount: Decimal | int | str,
        charge_day: int,
        account_code: str | None = None,
    ) -> ScheduledChargeInfo:
        """
        Raises:
            ValidationError: Missing lease or description, charge_day
                outside 1..28, non-positive amount.
            UnknownAccountError: account_code not in the chart.
        """
        if not lease_id:
            raise ValidationError("lease_id is required", field="lease_id")
        if not description or not description.strip():
            raise ValidationError("description is required", field="description")
        if not isinstance(charge_day, int) or not 1 <= charge_day <= MAX_CHARGE_DAY:
            raise ValidationError(
                f"charge_day must be between 1 and {MAX_CHARGE_DAY}", field="charge_day"
            )
        amount = to_positive_amount(amount)
        account_code = account_code or self.settings.system_accounts.rental_income
        found = self.session.execute(
            select(Account.code).where(Account.code == account_code)
        ).scalar_one_or_none()
        if found is None:
            raise UnknownAccountError(account_code)

        charge = ScheduledCharge(
            lease_id=lease_id,
            description=description.strip(),
            amount=amount,
            account_code=account_code,
            charge_day=charge_day,
            active=True,
        )
        self.session.add(charge)
        self.session.flush()
        logger.info(
            "scheduled_charge_created",
            extra={
                "charge_id": str(charge.id),
                "lease_id": lease_id,
                "amount": str(amount),
                "charge_day": charge_day,
            },
        )
        return ScheduledChargeInfo.from_model(charge)

    def deactivate_charge(self, charge_id: UUID) -> ScheduledChargeInfo:
        charge = self.session.get(ScheduledCharge, charge_id)
        if charge is None:
            raise ScheduledChargeNotFoundError(str(charge_id))
        charge.active = False
        self.session.flush()
        logger.info("scheduled_charge_deactivated", extra={"charge_id": str(charge_id)})
        return ScheduledChargeInfo.from_model(charge)

    def list_charges(self, lease_id: str | None = None, active_only: bool = True) -> list[ScheduledChargeInfo]:
        stmt = select(ScheduledCharge).order_by(ScheduledCharge.lease_id, ScheduledCharge.charge_day)
        if lease_id is not None:
            stmt = stmt.where(ScheduledCharge.lease_id == lease_id)
        if active_only:
            stmt = stmt.where(ScheduledCharge.active.is_(True))
        return [ScheduledChargeInfo.from_model(c) for c in self.session.execute(stmt).scalars()]

    def post_due_charges(self, as_of: date | None = None, lease_id: str | None = None) -> list[ChargeResult]:
        """
        Post every active charge due on or before as_of.day this month.

        Postconditions:
            One result per due charge.  POSTED charges have a transaction
            and last_charged_date == as_of.  SKIPPED charges were already
            charged this month.  ERROR results carry the failure message;
            nothing from that charge was written.
        """
        as_of = as_of or self.clock.today()
        stmt = (
            select(ScheduledCharge)
            .where(ScheduledCharge.active.is_(True))
            .where(ScheduledCharge.charge_day <= as_of.day)
            .order_by(ScheduledCharge.lease_id, ScheduledCharge.charge_day, ScheduledCharge.id)
        )
        if lease_id is not None:
            stmt = stmt.where(ScheduledCharge.lease_id == lease_id)

        results = [self._post_charge(charge, as_of) for charge in self.session.execute(stmt).scalars().all()]

        logger.info(
            "scheduled_charges_run",
            extra={
                "as_of": as_of,
                "posted": sum(1 for r in results if r.outcome == ChargeOutcome.POSTED),
                "skipped": sum(1 for r in results if r.outcome == ChargeOutcome.SKIPPED),
                "errors": sum(1 for r in results if r.outcome == ChargeOutcome.ERROR),
            },
        )
        return results

    def _post_charge(self, charge: ScheduledCharge, as_of: date) -> ChargeResult:
        def result(outcome: ChargeOutcome, message: str, transaction_id: UUID | None = None) -> ChargeResult:
            return ChargeResult(
                charge_id=charge.id,
                lease_id=charge.lease_id,
                description=charge.description,
                amount=charge.amount,
                outcome=outcome,
                message=message,
                transaction_id=transaction_id,
            )

        with LogContext.bind(lease_id=charge.lease_id):
            if charge.charged_in_month(as_of):
                return result(ChargeOutcome.SKIPPED, "Already charged this month")

            description = charge_description(charge.description, as_of)
            try:
                with self.session.begin_nested():
                    posted = self.engine.post_double_entry(
                        EntrySpec.debit(
                            self.settings.system_accounts.accounts_receivable,
                            charge.amount, description, as_of, SCHEDULED_POSTER,
                            lease_id=charge.lease_id,
                        ),
                        EntrySpec.credit(
                            charge.account_code, charge.amount, description, as_of,
                            SCHEDULED_POSTER, lease_id=charge.lease_id,
                        ),
                        idempotency_key=operation_key(
                            "scheduled-charge", charge.id, charge_period(as_of)
                        ),
                    )
                    charge.last_charged_date = as_of
                    self.session.flush()
            except LedgerError as e:
                logger.error(
                    "scheduled_charge_failed",
                    extra={"charge_id": str(charge.id), "error_code": e.code, "error": str(e)},
                )
                return result(ChargeOutcome.ERROR, str(e))

            if posted.was_duplicate:
                return result(
                    ChargeOutcome.SKIPPED, "Already charged this month", posted.transaction_id
                )

            logger.info(
                "scheduled_charge_posted",
                extra={
                    "charge_id": str(charge.id),
                    "transaction_id": str(posted.transaction_id),
                    "amount": str(posted.amount),
                    "period": charge_period(as_of),
                },
            )
            return result(
                ChargeOutcome.POSTED,
                f"Posted {charge.description} of ${posted.amount:.2f}",
                posted.transaction_id,
            )
