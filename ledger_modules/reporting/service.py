"""
ReportingService -- read-only financial statements.

Responsibility:
    Compose trial balance, profit & loss, balance sheet and party ledger
    reports from journal lines.

Architecture position:
    Modules > Reporting.  Reads through ``LedgerSelector``; never writes.

Invariants enforced:
    - Statements derive from journal lines only, never from cached account
      balances or document totals.
    - A statement is returned whole or not at all: aggregation errors
      propagate to the caller.

Failure modes:
    - ValidationError: period start after period end.
    - NotFoundError: party ledger for an unknown customer or supplier.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import AccountType
from ledger_kernel.domain.money import ZERO
from ledger_kernel.exceptions import NotFoundError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.utils.opening_balance_cache import OpeningBalanceCache
from ledger_modules.parties.orm import CustomerModel, SupplierModel
from ledger_modules.reporting import statements
from ledger_modules.reporting.config import ReportingConfig
from ledger_modules.reporting.models import (
    BalanceSheetReport,
    PartyLedgerReport,
    ProfitAndLossReport,
    ReportMetadata,
    ReportType,
    TrialBalanceReport,
)

logger = get_logger("modules.reporting.service")


class ReportingService:
    """
    Statement composer for one session.

    Contract:
        Pure reads.  Callers may run it on a read-only session.

    Non-goals:
        - No multi-currency translation.
        - No comparative periods.
    """

    def __init__(
        self,
        session: Session,
        *,
        clock: Clock | None = None,
        config: ReportingConfig | None = None,
        opening_balances: OpeningBalanceCache | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or ReportingConfig.with_defaults()
        self._selector = LedgerSelector(session)
        self._opening_balances = opening_balances

    def _metadata(self, report_type: ReportType, organization_id: UUID, **kwargs) -> ReportMetadata:
        return ReportMetadata(
            report_type=report_type,
            organization_id=organization_id,
            entity_name=self._config.entity_name,
            generated_at=self._clock.now().isoformat(),
            **kwargs,
        )

    # =========================================================================
    # Trial balance
    # =========================================================================

    def get_trial_balance(
        self,
        organization_id: UUID,
        as_on_date: date | None = None,
        branch_id: UUID | None = None,
    ) -> TrialBalanceReport:
        as_on_date = as_on_date or self._clock.today()
        rows = self._selector.trial_balance(organization_id, as_on_date, branch_id)
        lines, totals, is_balanced = statements.trial_balance_rows(rows, self._config)

        if not is_balanced:
            logger.warning(
                "trial_balance_out_of_balance",
                extra={
                    "organization_id": str(organization_id),
                    "as_on_date": as_on_date.isoformat(),
                    "diff": str(totals.diff),
                },
            )
        logger.info(
            "trial_balance_generated",
            extra={"organization_id": str(organization_id), "accounts": len(lines)},
        )
        return TrialBalanceReport(
            metadata=self._metadata(
                ReportType.TRIAL_BALANCE, organization_id,
                as_of_date=as_on_date, branch_id=branch_id,
            ),
            rows=lines,
            totals=totals,
            is_balanced=is_balanced,
        )

    # =========================================================================
    # Profit & loss
    # =========================================================================

    def get_profit_and_loss(
        self,
        organization_id: UUID,
        start_date: date,
        end_date: date,
        branch_id: UUID | None = None,
    ) -> ProfitAndLossReport:
        if start_date > end_date:
            raise ValidationError(
                f"Period start {start_date} is after period end {end_date}",
                field="start_date",
            )
        rows = self._selector.account_totals(
            organization_id,
            start_date=start_date,
            end_date=end_date,
            branch_id=branch_id,
            account_types=(AccountType.INCOME, AccountType.EXPENSE),
        )
        income = statements.section("Income", rows, AccountType.INCOME, self._config)
        expenses = statements.section("Expenses", rows, AccountType.EXPENSE, self._config)

        logger.info(
            "profit_and_loss_generated",
            extra={
                "organization_id": str(organization_id),
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
            },
        )
        return ProfitAndLossReport(
            metadata=self._metadata(
                ReportType.PROFIT_AND_LOSS, organization_id,
                period_start=start_date, period_end=end_date, branch_id=branch_id,
            ),
            income=income,
            expenses=expenses,
            net_profit=income.total - expenses.total,
        )

    # =========================================================================
    # Balance sheet
    # =========================================================================

    def get_balance_sheet(
        self,
        organization_id: UUID,
        as_on_date: date | None = None,
        branch_id: UUID | None = None,
    ) -> BalanceSheetReport:
        as_on_date = as_on_date or self._clock.today()
        rows = self._selector.trial_balance(organization_id, as_on_date, branch_id)

        assets = statements.section("Assets", rows, AccountType.ASSET, self._config)
        liabilities = statements.section("Liabilities", rows, AccountType.LIABILITY, self._config)
        equity = statements.section("Equity", rows, AccountType.EQUITY, self._config)
        # All-time profit up to the as-of date, from the same rows.
        retained_earnings = statements.net_profit(rows)

        total_equity = equity.total + retained_earnings
        total_le = liabilities.total + total_equity
        is_balanced = abs(assets.total - total_le) <= self._config.balance_tolerance

        logger.info(
            "balance_sheet_generated",
            extra={
                "organization_id": str(organization_id),
                "as_on_date": as_on_date.isoformat(),
                "is_balanced": is_balanced,
            },
        )
        return BalanceSheetReport(
            metadata=self._metadata(
                ReportType.BALANCE_SHEET, organization_id,
                as_of_date=as_on_date, branch_id=branch_id,
            ),
            assets=assets,
            liabilities=liabilities,
            equity=equity,
            retained_earnings=retained_earnings,
            total_equity=total_equity,
            total_liabilities_and_equity=total_le,
            is_balanced=is_balanced,
        )

    # =========================================================================
    # Party ledger
    # =========================================================================

    def party_ledger(
        self,
        organization_id: UUID,
        *,
        customer_id: UUID | None = None,
        supplier_id: UUID | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> PartyLedgerReport:
        """Opening balance, lines in range with running balance, closing balance."""
        if (customer_id is None) == (supplier_id is None):
            raise ValidationError("Exactly one of customer_id or supplier_id is required")
        if start_date is not None and end_date is not None and start_date > end_date:
            raise ValidationError(
                f"Period start {start_date} is after period end {end_date}",
                field="start_date",
            )

        if customer_id is not None:
            party_kind, party_id, model = "customer", customer_id, CustomerModel
        else:
            party_kind, party_id, model = "supplier", supplier_id, SupplierModel
        party = self._session.get(model, party_id)
        if party is None or party.organization_id != organization_id:
            raise NotFoundError(party_kind.capitalize(), str(party_id))

        def calculate():
            if start_date is None:
                return ZERO
            return self._selector.party_balance(
                organization_id,
                customer_id=customer_id,
                supplier_id=supplier_id,
                before=start_date,
            )

        if self._opening_balances is not None:
            lookup = self._opening_balances.get_with_fallback(
                organization_id, calculate, party_id=party_id, start_date=start_date,
            )
            opening, cached = lookup.balance, lookup.cached
        else:
            opening, cached = calculate(), False

        views = self._selector.party_lines(
            organization_id,
            customer_id=customer_id,
            supplier_id=supplier_id,
            start_date=start_date,
            end_date=end_date,
        )
        lines, closing = statements.running_lines(opening, views)

        logger.info(
            "party_ledger_generated",
            extra={
                "organization_id": str(organization_id),
                "party_kind": party_kind,
                "party_id": str(party_id),
                "lines": len(lines),
                "opening_cached": cached,
            },
        )
        return PartyLedgerReport(
            metadata=self._metadata(
                ReportType.PARTY_LEDGER, organization_id,
                period_start=start_date, period_end=end_date,
            ),
            party_id=party_id,
            party_kind=party_kind,
            opening_balance=opening,
            opening_balance_cached=cached,
            lines=lines,
            closing_balance=closing,
        )
