"""Translate parsed settings into kernel inputs."""

from ledger_config.schema import LedgerSettings
from ledger_kernel.domain.values import AccountType
from ledger_kernel.services.chart_of_accounts import AccountDefinition


def account_definitions(settings: LedgerSettings) -> list[AccountDefinition]:
    return [
        AccountDefinition(
            code=a.code,
            name=a.name,
            account_type=AccountType(a.type),
            description=a.description,
            active=a.active,
        )
        for a in settings.chart_of_accounts
    ]
