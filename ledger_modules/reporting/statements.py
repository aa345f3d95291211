"""
Pure statement builders.

Turn ``AccountTotals`` rows from the ledger selector into report sections.
No database access and no clock: the service passes both in.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Sequence

from ledger_kernel.domain.dtos import AccountType, JournalLineView
from ledger_kernel.domain.money import ZERO, round_money
from ledger_kernel.selectors.ledger_selector import AccountTotals
from ledger_modules.reporting.config import ReportingConfig
from ledger_modules.reporting.models import (
    PartyLedgerLine,
    StatementSection,
    TrialBalanceLine,
    TrialBalanceTotals,
)


def natural_balance(totals: AccountTotals) -> Decimal:
    """Debit-normal accounts: dr - cr.  Credit-normal accounts: cr - dr."""
    if totals.account_type.is_debit_normal:
        return totals.debit_total - totals.credit_total
    return totals.credit_total - totals.debit_total


def _quantize(value: Decimal, config: ReportingConfig) -> Decimal:
    if config.display_precision == 2:
        return round_money(value)
    return value.quantize(Decimal(1).scaleb(-config.display_precision))


def to_line(totals: AccountTotals, config: ReportingConfig) -> TrialBalanceLine:
    return TrialBalanceLine(
        account_id=totals.account_id,
        account_code=totals.account_code,
        account_name=totals.account_name,
        account_type=totals.account_type.value,
        debit=_quantize(totals.debit_total, config),
        credit=_quantize(totals.credit_total, config),
        net_balance=_quantize(natural_balance(totals), config),
    )


def _visible(rows: Iterable[AccountTotals], config: ReportingConfig) -> list[AccountTotals]:
    if config.include_zero_balances:
        return list(rows)
    return [r for r in rows if r.debit_total != ZERO or r.credit_total != ZERO]


def trial_balance_rows(
    rows: Sequence[AccountTotals],
    config: ReportingConfig,
) -> tuple[tuple[TrialBalanceLine, ...], TrialBalanceTotals, bool]:
    lines = tuple(to_line(r, config) for r in _visible(rows, config))
    debit = sum((r.debit_total for r in rows), ZERO)
    credit = sum((r.credit_total for r in rows), ZERO)
    totals = TrialBalanceTotals(
        debit=_quantize(debit, config),
        credit=_quantize(credit, config),
        diff=_quantize(debit - credit, config),
    )
    return lines, totals, abs(debit - credit) <= config.balance_tolerance


def section(
    label: str,
    rows: Sequence[AccountTotals],
    account_type: AccountType,
    config: ReportingConfig,
) -> StatementSection:
    """All rows of ``account_type`` with their natural balances summed."""
    of_type = [r for r in rows if r.account_type == account_type]
    total = sum((natural_balance(r) for r in of_type), ZERO)
    return StatementSection(
        label=label,
        lines=tuple(to_line(r, config) for r in _visible(of_type, config)),
        total=_quantize(total, config),
    )


def net_profit(rows: Sequence[AccountTotals]) -> Decimal:
    """Income (cr - dr) minus expenses (dr - cr)."""
    income = sum(
        (natural_balance(r) for r in rows if r.account_type == AccountType.INCOME), ZERO
    )
    expenses = sum(
        (natural_balance(r) for r in rows if r.account_type == AccountType.EXPENSE), ZERO
    )
    return round_money(income - expenses)


def running_lines(
    opening_balance: Decimal,
    lines: Sequence[JournalLineView],
) -> tuple[tuple[PartyLedgerLine, ...], Decimal]:
    """Attach a running Sum(debit - credit) starting from ``opening_balance``."""
    balance = opening_balance
    out = []
    for line in lines:
        balance = balance + line.debit - line.credit
        out.append(
            PartyLedgerLine(
                entry_date=line.entry_date,
                reference_type=line.reference_type.value,
                reference_id=line.reference_id,
                description=line.description,
                debit=line.debit,
                credit=line.credit,
                running_balance=round_money(balance),
            )
        )
    return tuple(out), round_money(balance)
