"""
Financial Reporting Domain Models (``ledger_modules.reporting.models``).

Responsibility
--------------
Frozen dataclass value objects representing statement outputs: trial
balance, profit & loss, balance sheet and party ledger.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Consumed by
``ReportingService`` and returned to callers.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Decimal`` -- NEVER ``float``.

Audit relevance
---------------
* ``ReportMetadata`` records carry generation timestamp and parameters
  for report reproducibility.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class ReportType(str, Enum):
    TRIAL_BALANCE = "trial_balance"
    PROFIT_AND_LOSS = "profit_and_loss"
    BALANCE_SHEET = "balance_sheet"
    PARTY_LEDGER = "party_ledger"


# =========================================================================
# Report Metadata (common to all reports)
# =========================================================================


@dataclass(frozen=True)
class ReportMetadata:
    """Metadata attached to every financial report."""

    report_type: ReportType
    organization_id: UUID
    entity_name: str
    generated_at: str  # ISO format timestamp from injected clock
    as_of_date: date | None = None
    period_start: date | None = None
    period_end: date | None = None
    branch_id: UUID | None = None


# =========================================================================
# Trial Balance
# =========================================================================


@dataclass(frozen=True)
class TrialBalanceLine:
    """A single account row in the trial balance."""

    account_id: UUID
    account_code: str
    account_name: str
    account_type: str
    debit: Decimal
    credit: Decimal
    net_balance: Decimal  # natural-balance-adjusted


@dataclass(frozen=True)
class TrialBalanceTotals:
    debit: Decimal
    credit: Decimal
    diff: Decimal


@dataclass(frozen=True)
class TrialBalanceReport:
    metadata: ReportMetadata
    rows: tuple[TrialBalanceLine, ...]
    totals: TrialBalanceTotals
    is_balanced: bool  # |diff| within tolerance


# =========================================================================
# Profit & Loss
# =========================================================================


@dataclass(frozen=True)
class StatementSection:
    """Accounts of one type with their natural balances and the section total."""

    label: str
    lines: tuple[TrialBalanceLine, ...]
    total: Decimal


@dataclass(frozen=True)
class ProfitAndLossReport:
    """income - expenses = net_profit."""

    metadata: ReportMetadata
    income: StatementSection
    expenses: StatementSection
    net_profit: Decimal


# =========================================================================
# Balance Sheet
# =========================================================================


@dataclass(frozen=True)
class BalanceSheetReport:
    """
    Assets = Liabilities + Equity, where equity includes retained earnings
    (all-time profit up to the as-of date).
    """

    metadata: ReportMetadata
    assets: StatementSection
    liabilities: StatementSection
    equity: StatementSection
    retained_earnings: Decimal
    total_equity: Decimal
    total_liabilities_and_equity: Decimal
    is_balanced: bool


# =========================================================================
# Party Ledger
# =========================================================================


@dataclass(frozen=True)
class PartyLedgerLine:
    entry_date: date
    reference_type: str
    reference_id: UUID
    description: str
    debit: Decimal
    credit: Decimal
    running_balance: Decimal


@dataclass(frozen=True)
class PartyLedgerReport:
    """
    Statement of one customer or supplier.

    Balances are Sum(debit - credit) over lines tagged with the party, so a
    customer who owes money shows a positive balance and a supplier the
    organization owes shows a negative one.
    """

    metadata: ReportMetadata
    party_id: UUID
    party_kind: str  # "customer" or "supplier"
    opening_balance: Decimal
    opening_balance_cached: bool
    lines: tuple[PartyLedgerLine, ...]
    closing_balance: Decimal
