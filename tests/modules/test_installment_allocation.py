"""
Pure installment arithmetic: schedules, month stepping and allocation.
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ledger_kernel.exceptions import ValidationError
from ledger_modules.installments.allocation import (
    add_months,
    allocate,
    build_schedule,
    pay_single,
)
from ledger_modules.installments.models import InstallmentState, InstallmentStatus


def _state(number, total="100.00", paid="0.00", status=InstallmentStatus.PENDING, due=None):
    return InstallmentState(
        number=number,
        due_date=due or add_months(date(2026, 1, 10), number - 1),
        total=Decimal(total),
        paid_amount=Decimal(paid),
        status=status,
    )


def _three_pending():
    return [_state(1), _state(2), _state(3)]


# =============================================================================
# Month arithmetic
# =============================================================================


class TestAddMonths:
    @pytest.mark.parametrize(
        "start, months, expected",
        [
            (date(2026, 1, 31), 1, date(2026, 2, 28)),
            (date(2028, 1, 31), 1, date(2028, 2, 29)),
            (date(2026, 3, 31), 1, date(2026, 4, 30)),
            (date(2026, 11, 15), 3, date(2027, 2, 15)),
            (date(2026, 5, 20), 0, date(2026, 5, 20)),
        ],
    )
    def test_clamps_to_month_end(self, start, months, expected):
        assert add_months(start, months) == expected


# =============================================================================
# Schedules
# =============================================================================


class TestBuildSchedule:
    def test_last_installment_absorbs_remainder(self):
        schedule = build_schedule(Decimal("100.00"), Decimal("0"), 3, Decimal("0"), date(2026, 1, 1))

        assert [row.principal for row in schedule] == [
            Decimal("33.33"), Decimal("33.33"), Decimal("33.34"),
        ]
        assert [row.due_date for row in schedule] == [
            date(2026, 1, 1), date(2026, 2, 1), date(2026, 3, 1),
        ]

    def test_flat_interest(self):
        schedule = build_schedule(Decimal("1300.00"), Decimal("100.00"), 12, Decimal("12"), date(2026, 1, 1))

        assert {row.interest for row in schedule} == {Decimal("12.00")}
        assert schedule[0].total == Decimal("112.00")

    @given(
        total=st.decimals(min_value=1, max_value=10**6, places=2),
        count=st.integers(min_value=1, max_value=36),
    )
    @settings(max_examples=50)
    def test_principal_sums_to_financed_balance(self, total, count):
        schedule = build_schedule(total, Decimal("0"), count, Decimal("0"), date(2026, 1, 31))

        assert len(schedule) == count
        assert sum(row.principal for row in schedule) == total

    @pytest.mark.parametrize(
        "down_payment, count, rate",
        [
            (Decimal("100.00"), 3, Decimal("0")),
            (Decimal("0"), 0, Decimal("0")),
            (Decimal("0"), 3, Decimal("-1")),
            (Decimal("-1"), 3, Decimal("0")),
        ],
    )
    def test_invalid_parameters_rejected(self, down_payment, count, rate):
        with pytest.raises(ValidationError):
            build_schedule(Decimal("100.00"), down_payment, count, rate, date(2026, 1, 1))


# =============================================================================
# Allocation
# =============================================================================


class TestAllocate:
    def test_oldest_due_first(self):
        result = allocate(_three_pending(), Decimal("250.00"))

        assert [(a.number, a.amount, a.status) for a in result.allocations] == [
            (1, Decimal("100.00"), InstallmentStatus.PAID),
            (2, Decimal("100.00"), InstallmentStatus.PAID),
            (3, Decimal("50.00"), InstallmentStatus.PARTIAL),
        ]
        assert result.advance == Decimal("0.00")

    def test_due_date_orders_before_number(self):
        states = [
            _state(1, due=date(2026, 3, 1)),
            _state(2, due=date(2026, 1, 1)),
        ]

        result = allocate(states, Decimal("100.00"))

        assert [a.number for a in result.allocations] == [2]

    def test_partial_installment_completed_first(self):
        states = [_state(1, paid="60.00", status=InstallmentStatus.PARTIAL), _state(2)]

        result = allocate(states, Decimal("50.00"))

        assert result.allocations[0].amount == Decimal("40.00")
        assert result.allocations[0].status == InstallmentStatus.PAID
        assert result.allocations[1].amount == Decimal("10.00")

    def test_fully_paid_plan_becomes_advance(self):
        states = [_state(n, paid="100.00", status=InstallmentStatus.PAID) for n in (1, 2, 3)]

        result = allocate(states, Decimal("50.00"))

        assert result.allocations == ()
        assert result.advance == Decimal("50.00")

    def test_excess_becomes_advance(self):
        result = allocate(_three_pending(), Decimal("350.00"))

        assert result.applied_total == Decimal("300.00")
        assert result.advance == Decimal("50.00")

    def test_explicit_numbers_ascending(self):
        result = allocate(_three_pending(), Decimal("150.00"), numbers=[3, 2])

        assert [(a.number, a.amount) for a in result.allocations] == [
            (2, Decimal("100.00")),
            (3, Decimal("50.00")),
        ]

    def test_explicit_numbers_skip_paid(self):
        states = [_state(1, paid="100.00", status=InstallmentStatus.PAID), _state(2)]

        result = allocate(states, Decimal("100.00"), numbers=[1, 2])

        assert [a.number for a in result.allocations] == [2]

    def test_unknown_number_rejected(self):
        with pytest.raises(ValidationError):
            allocate(_three_pending(), Decimal("10.00"), numbers=[4])

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1.00")])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(ValidationError):
            allocate(_three_pending(), amount)

    @given(
        totals=st.lists(st.decimals(min_value=1, max_value=10**4, places=2), min_size=1, max_size=12),
        amount=st.decimals(min_value=Decimal("0.01"), max_value=10**5, places=2),
    )
    @settings(max_examples=100)
    def test_amount_is_conserved(self, totals, amount):
        states = [_state(n, total=str(total)) for n, total in enumerate(totals, start=1)]

        result = allocate(states, amount)

        assert result.applied_total + result.advance == amount
        assert result.advance >= 0
        by_number = {s.number: s for s in states}
        for allocation in result.allocations:
            assert allocation.amount <= by_number[allocation.number].outstanding


class TestPaySingle:
    def test_excess_over_due_is_advance(self):
        result = pay_single(_state(1), Decimal("130.00"))

        assert result.allocations[0].status == InstallmentStatus.PAID
        assert result.advance == Decimal("30.00")

    def test_paid_installment_takes_nothing(self):
        result = pay_single(_state(1, paid="100.00", status=InstallmentStatus.PAID), Decimal("20.00"))

        assert result.allocations == ()
        assert result.advance == Decimal("20.00")
