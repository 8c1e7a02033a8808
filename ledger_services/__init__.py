"""
ledger_services -- Orchestration on top of the ledger kernel.

Transit settlement, bank reconciliation, scheduled charges and reports.
Every service takes the caller's session, never commits, and reads its
account codes and tuning from ledger_config settings.
"""

from ledger_services.reconciliation_service import (
    BankAccountInfo,
    LineInfo,
    NewVendor,
    ReconciliationService,
    ReconciliationSummary,
    ReconciliationView,
    RecordEntryRequest,
    RecordEntryResult,
    RecordEntryType,
    VendorInfo,
)
from ledger_services.reporting_service import (
    ProfitAndLoss,
    ReportingService,
    ReportLine,
    TenantBalance,
)
from ledger_services.scheduled_charges import (
    ChargeOutcome,
    ChargeResult,
    ScheduledChargeInfo,
    ScheduledChargeService,
)
from ledger_services.transit_service import InFlightTransfer, TransferState, TransitService

__all__ = [
    "BankAccountInfo",
    "ChargeOutcome",
    "ChargeResult",
    "InFlightTransfer",
    "LineInfo",
    "NewVendor",
    "ProfitAndLoss",
    "ReconciliationService",
    "ReconciliationSummary",
    "ReconciliationView",
    "RecordEntryRequest",
    "RecordEntryResult",
    "RecordEntryType",
    "ReportLine",
    "ReportingService",
    "ScheduledChargeInfo",
    "ScheduledChargeService",
    "TenantBalance",
    "TransferState",
    "TransitService",
]
