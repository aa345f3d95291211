"""Financial statements: trial balance, profit & loss, balance sheet, party ledger."""

from ledger_modules.reporting.config import ReportingConfig
from ledger_modules.reporting.models import (
    BalanceSheetReport,
    PartyLedgerReport,
    ProfitAndLossReport,
    ReportMetadata,
    ReportType,
    TrialBalanceReport,
)
from ledger_modules.reporting.service import ReportingService

__all__ = [
    "BalanceSheetReport",
    "PartyLedgerReport",
    "ProfitAndLossReport",
    "ReportMetadata",
    "ReportType",
    "ReportingConfig",
    "ReportingService",
    "TrialBalanceReport",
]
