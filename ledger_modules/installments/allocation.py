"""
Installment allocation -- pure schedule and payment-spreading arithmetic.

Responsibility:
    Build an installment schedule for a financed balance, and spread an
    incoming amount over installments either oldest-due-first or over an
    explicit list of installment numbers.

Architecture position:
    Modules > Installments.  Pure functions, zero I/O.  ``InstallmentService``
    persists what these return.

Invariants enforced:
    - Schedule principals sum exactly to the financed balance; the last
      installment absorbs the rounding remainder.
    - Allocation never applies more than an installment's outstanding
      amount.  Whatever is left after the eligible installments becomes
      advance, it is never dropped.
    - Paid installments are never selected.
"""

from __future__ import annotations

import calendar
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence

from ledger_kernel.domain.money import ZERO, round_money
from ledger_kernel.exceptions import ValidationError
from ledger_modules.installments.models import (
    AllocationResult,
    InstallmentAllocation,
    InstallmentState,
    InstallmentStatus,
    ScheduledInstallment,
)

_MONTHS_PER_YEAR = Decimal("12")
_HUNDRED = Decimal("100")


def add_months(start: date, months: int) -> date:
    """Same day ``months`` later, clamped to the end of shorter months."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def build_schedule(
    total_amount: Decimal,
    down_payment: Decimal,
    number_of_installments: int,
    annual_interest_rate: Decimal,
    start_date: date,
) -> tuple[ScheduledInstallment, ...]:
    """
    Flat-interest schedule for ``total_amount - down_payment``.

    Each installment carries ``balance / n`` principal and
    ``balance x rate / 100 / 12`` interest, due monthly from ``start_date``.

    Raises:
        ValidationError: non-positive count, negative rate, or a down
            payment that leaves nothing to finance.
    """
    if number_of_installments < 1:
        raise ValidationError(
            "Number of installments must be at least 1", field="number_of_installments"
        )
    if annual_interest_rate < ZERO:
        raise ValidationError("Interest rate cannot be negative", field="interest_rate")
    if down_payment < ZERO:
        raise ValidationError("Down payment cannot be negative", field="down_payment")
    balance = round_money(total_amount - down_payment)
    if balance <= ZERO:
        raise ValidationError(
            "Down payment must be less than the total amount", field="down_payment"
        )

    monthly_rate = annual_interest_rate / _HUNDRED / _MONTHS_PER_YEAR
    principal = round_money(balance / number_of_installments)
    interest = round_money(balance * monthly_rate)
    last_principal = balance - principal * (number_of_installments - 1)

    return tuple(
        ScheduledInstallment(
            number=number,
            due_date=add_months(start_date, number - 1),
            principal=last_principal if number == number_of_installments else principal,
            interest=interest,
        )
        for number in range(1, number_of_installments + 1)
    )


def _settle(state: InstallmentState, amount: Decimal) -> InstallmentAllocation:
    paid = state.paid_amount + amount
    status = InstallmentStatus.PAID if paid >= state.total else InstallmentStatus.PARTIAL
    return InstallmentAllocation(
        number=state.number, amount=amount, paid_amount=paid, status=status,
    )


def _select(
    installments: Sequence[InstallmentState],
    numbers: Iterable[int] | None,
) -> list[InstallmentState]:
    if numbers is None:
        ordered = sorted(installments, key=lambda s: (s.due_date, s.number))
    else:
        by_number = {s.number: s for s in installments}
        wanted = sorted(set(numbers))
        unknown = [n for n in wanted if n not in by_number]
        if unknown:
            raise ValidationError(
                f"Unknown installment numbers: {unknown}", field="installments"
            )
        ordered = [by_number[n] for n in wanted]
    return [s for s in ordered if s.status != InstallmentStatus.PAID]


def allocate(
    installments: Sequence[InstallmentState],
    amount: Decimal,
    numbers: Iterable[int] | None = None,
) -> AllocationResult:
    """
    Spread ``amount`` over unpaid installments.

    Args:
        installments: Current state of every installment in the plan.
        amount: Money to apply; must be positive.
        numbers: Explicit installment numbers (applied ascending), or None
            for oldest-due-first over all unpaid installments.

    Returns:
        The per-installment allocations and the leftover advance.
    """
    if amount <= ZERO:
        raise ValidationError("Allocation amount must be positive", field="amount")

    remaining = round_money(amount)
    allocations: list[InstallmentAllocation] = []
    for state in _select(installments, numbers):
        if remaining <= ZERO:
            break
        applied = min(remaining, state.outstanding)
        if applied <= ZERO:
            continue
        allocations.append(_settle(state, applied))
        remaining -= applied

    return AllocationResult(allocations=tuple(allocations), advance=remaining)


def pay_single(state: InstallmentState, amount: Decimal) -> AllocationResult:
    """Pay one installment; anything above its outstanding amount is advance."""
    if amount <= ZERO:
        raise ValidationError("Payment amount must be positive", field="amount")
    if state.status == InstallmentStatus.PAID:
        return AllocationResult(allocations=(), advance=round_money(amount))
    applied = min(round_money(amount), state.outstanding)
    return AllocationResult(
        allocations=(_settle(state, applied),),
        advance=round_money(amount) - applied,
    )
