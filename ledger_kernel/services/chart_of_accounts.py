"""
ChartOfAccountsService -- configuration of the account registry.

Accounts are created from configuration (see ledger_config defaults) or by
an operator, renamed or deactivated later, and never deleted.  The normal
balance is always derived from the type.
"""

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select

from ledger_kernel.domain.dtos import AccountInfo
from ledger_kernel.domain.values import AccountType, normal_balance_for
from ledger_kernel.exceptions import DuplicateAccountError, UnknownAccountError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.services.base import BaseService

logger = get_logger("services.chart_of_accounts")

MAX_CODE_LENGTH = 10


@dataclass(frozen=True)
class AccountDefinition:
    """One account as written in configuration."""

    code: str
    name: str
    account_type: AccountType
    description: str | None = None
    active: bool = True


class ChartOfAccountsService(BaseService[Account]):

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        description: str | None = None,
        active: bool = True,
    ) -> AccountInfo:
        """
        Add an account to the chart.

        Raises:
            ValidationError: Empty or over-long code, empty name, unknown type.
            DuplicateAccountError: The code is taken.
        """
        code = (code or "").strip()
        if not code or len(code) > MAX_CODE_LENGTH:
            raise ValidationError(
                f"Account code must be 1-{MAX_CODE_LENGTH} characters", field="code"
            )
        if not name or not name.strip():
            raise ValidationError("Account name is required", field="name")
        try:
            account_type = AccountType(account_type)
        except ValueError as e:
            raise ValidationError(f"Unknown account type: {account_type}", field="account_type") from e

        if self._find(code) is not None:
            raise DuplicateAccountError(code)

        account = Account(
            code=code,
            name=name.strip(),
            account_type=account_type.value,
            normal_balance=normal_balance_for(account_type).value,
            description=description,
            active=active,
        )
        self.session.add(account)
        self.session.flush()
        logger.info(
            "account_created",
            extra={
                "account_code": code,
                "account_type": account_type.value,
                "normal_balance": account.normal_balance,
            },
        )
        return AccountInfo.from_model(account)

    def get_account(self, code: str) -> AccountInfo | None:
        account = self._find(code)
        return AccountInfo.from_model(account) if account else None

    def require_account(self, code: str) -> AccountInfo:
        """
        Raises:
            UnknownAccountError: If the code is not in the chart.
        """
        account = self._find(code)
        if account is None:
            raise UnknownAccountError(code)
        return AccountInfo.from_model(account)

    def list_accounts(self, active_only: bool = False) -> list[AccountInfo]:
        stmt = select(Account).order_by(Account.code)
        if active_only:
            stmt = stmt.where(Account.active.is_(True))
        return [AccountInfo.from_model(a) for a in self.session.execute(stmt).scalars()]

    def update_account(
        self,
        code: str,
        name: str | None = None,
        description: str | None = None,
    ) -> AccountInfo:
        """Rename or re-describe an account.  Structural fields are not editable."""
        account = self._require(code)
        if name is not None:
            if not name.strip():
                raise ValidationError("Account name is required", field="name")
            account.name = name.strip()
        if description is not None:
            account.description = description
        self.session.flush()
        logger.info("account_updated", extra={"account_code": code})
        return AccountInfo.from_model(account)

    def deactivate_account(self, code: str) -> AccountInfo:
        """Soft-retire an account.  Existing and future postings still resolve."""
        return self._set_active(code, False)

    def reactivate_account(self, code: str) -> AccountInfo:
        return self._set_active(code, True)

    def seed_default_chart(self, definitions: Iterable[AccountDefinition]) -> list[AccountInfo]:
        """
        Create every configured account that does not exist yet.

        Idempotent: existing codes are left untouched and not returned.
        """
        created = []
        for definition in definitions:
            if self._find(definition.code) is not None:
                continue
            created.append(self.create_account(
                code=definition.code,
                name=definition.name,
                account_type=definition.account_type,
                description=definition.description,
                active=definition.active,
            ))
        logger.info("chart_seeded", extra={"accounts_created": len(created)})
        return created

    def _set_active(self, code: str, active: bool) -> AccountInfo:
        account = self._require(code)
        account.active = active
        self.session.flush()
        logger.info(
            "account_activated" if active else "account_deactivated",
            extra={"account_code": code},
        )
        return AccountInfo.from_model(account)

    def _find(self, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()

    def _require(self, code: str) -> Account:
        account = self._find(code)
        if account is None:
            raise UnknownAccountError(code)
        return account
