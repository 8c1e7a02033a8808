"""
Module: ledger_kernel.models.scheduled_charge
Responsibility: Recurring per-lease charges (rent, pet fee, parking) that
    the monthly batch posts as DR Receivable / CR <account_code>.

Invariants enforced:
    - charge_day is 1..28 so every month has the day.
    - last_charged_date changes in the same savepoint as the posting it
      records.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TimestampedBase


class ScheduledCharge(TimestampedBase):
    __tablename__ = "scheduled_charges"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_scheduled_charge_amount_positive"),
        CheckConstraint(
            "charge_day BETWEEN 1 AND 28", name="ck_scheduled_charge_day"
        ),
        Index("idx_scheduled_charge_lease", "lease_id"),
    )

    lease_id: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    # Credit side of the charge, usually 4000 Rental Income
    account_code: Mapped[str] = mapped_column(
        String(10), ForeignKey("accounts.code"), nullable=False
    )

    charge_day: Mapped[int] = mapped_column(Integer, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_charged_date: Mapped[date | None] = mapped_column(nullable=True)

    def charged_in_month(self, day: date) -> bool:
        last = self.last_charged_date
        return last is not None and (last.year, last.month) == (day.year, day.month)
