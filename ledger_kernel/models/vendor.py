"""Vendors referenced by expense entries. Owned by the property app; the
ledger only creates them inline while recording a reconciliation expense."""

from sqlalchemy import JSON, Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TimestampedBase


class Vendor(TimestampedBase):
    __tablename__ = "vendors"

    __table_args__ = (Index("idx_vendor_name", "name"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # e.g. ["plumbing", "hvac"]
    specialties: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    payment_terms: Mapped[str | None] = mapped_column(String(50), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Vendor {self.name}>"
