"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the chart of accounts, the target of
    every ledger entry.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - code is unique; entries reference accounts by code.
    - normal_balance is derived from account_type when the row is created
      (normal_balance_for) and is never supplied independently.
    - Accounts are never deleted; deactivation is the only retirement path
      (db/immutability.py blocks ORM deletes).
    - code and account_type are frozen once any entry references the account.
"""

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TimestampedBase
from ledger_kernel.domain.values import AccountType, DebitCredit, normal_balance_for


class Account(TimestampedBase):
    """
    Chart of accounts entry.

    Contract:
        Posting accepts any account that exists, active or not; ``active``
        only controls what the chart offers for new configuration.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_type", "account_type"),
    )

    # Human-readable code, e.g. "1000"
    code: Mapped[str] = mapped_column(String(10), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Financial statement class
    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    # DR or CR, always normal_balance_for(account_type)
    normal_balance: Mapped[DebitCredit] = mapped_column(String(2), nullable=False)

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __init__(self, **kwargs):
        if "account_type" in kwargs and "normal_balance" not in kwargs:
            kwargs["normal_balance"] = normal_balance_for(kwargs["account_type"])
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == DebitCredit.DR
