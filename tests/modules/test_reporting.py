"""
ReportingService statements built from journal lines.

Scenario: a taxed sale of 1000 + 18% on 15 March, a 500 purchase the same
day and a 300 customer payment on 20 March.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import NotFoundError, ValidationError
from ledger_modules.inventory.models import AdjustmentType
from ledger_modules.posting.models import StockAdjustmentInput

MARCH_END = date(2026, 3, 31)
PAYMENT_DATE = date(2026, 3, 20)


@pytest.fixture
def reporting(services):
    return services.reporting


@pytest.fixture
def trading_month(orchestrator, ctx, create_invoice, create_purchase, customer):
    invoice = create_invoice(price="1000.00", tax_rate="18")
    create_purchase(price="50.00", quantity=10)
    orchestrator.record_customer_payment(
        ctx, amount=Decimal("300.00"), invoice_id=invoice.id, payment_date=PAYMENT_DATE,
    )
    return invoice


class TestTrialBalance:
    def test_balanced(self, reporting, organization, trading_month):
        report = reporting.get_trial_balance(organization.id, MARCH_END)

        assert report.is_balanced
        assert report.totals.debit == report.totals.credit == Decimal("1980.00")
        assert report.totals.diff == Decimal("0.00")

    def test_rows_carry_natural_balances(self, reporting, organization, trading_month):
        report = reporting.get_trial_balance(organization.id, MARCH_END)

        by_code = {row.account_code: row.net_balance for row in report.rows}
        assert by_code == {
            "1001": Decimal("300.00"),
            "1200": Decimal("880.00"),
            "1500": Decimal("500.00"),
            "2000": Decimal("500.00"),
            "2100": Decimal("180.00"),
            "4000": Decimal("1000.00"),
        }

    def test_as_on_date_excludes_later_lines(self, reporting, organization, trading_month, clock):
        report = reporting.get_trial_balance(organization.id, clock.today())

        assert report.totals.debit == Decimal("1680.00")
        assert "1001" not in {row.account_code for row in report.rows}

    def test_empty_organization(self, reporting, organization):
        report = reporting.get_trial_balance(organization.id)

        assert report.rows == ()
        assert report.is_balanced


class TestProfitAndLoss:
    def test_period_income(self, reporting, organization, trading_month):
        report = reporting.get_profit_and_loss(organization.id, date(2026, 3, 1), MARCH_END)

        assert report.income.total == Decimal("1000.00")
        assert report.expenses.total == Decimal("0.00")
        assert report.net_profit == Decimal("1000.00")

    def test_other_period_empty(self, reporting, organization, trading_month):
        report = reporting.get_profit_and_loss(organization.id, date(2026, 4, 1), date(2026, 4, 30))

        assert report.net_profit == Decimal("0")

    def test_shrinkage_is_an_expense(self, orchestrator, reporting, ctx, organization, product, branch_id):
        orchestrator.adjust_stock(ctx, StockAdjustmentInput(
            product_id=product.id,
            branch_id=branch_id,
            quantity=2,
            adjustment_type=AdjustmentType.SUBTRACT,
        ))

        report = reporting.get_profit_and_loss(organization.id, date(2026, 3, 1), MARCH_END)

        assert report.expenses.total == Decimal("100.00")
        assert report.net_profit == Decimal("-100.00")

    def test_start_after_end_rejected(self, reporting, organization):
        with pytest.raises(ValidationError):
            reporting.get_profit_and_loss(organization.id, date(2026, 4, 1), date(2026, 3, 1))


class TestBalanceSheet:
    def test_assets_equal_liabilities_and_equity(self, reporting, organization, trading_month):
        report = reporting.get_balance_sheet(organization.id, MARCH_END)

        assert report.assets.total == Decimal("1680.00")
        assert report.liabilities.total == Decimal("680.00")
        assert report.retained_earnings == Decimal("1000.00")
        assert report.total_liabilities_and_equity == Decimal("1680.00")
        assert report.is_balanced


class TestPartyLedger:
    def test_customer_running_balance(self, reporting, organization, customer, trading_month):
        report = reporting.party_ledger(organization.id, customer_id=customer.id)

        assert report.party_kind == "customer"
        assert report.opening_balance == Decimal("0")
        assert [line.running_balance for line in report.lines] == [
            Decimal("1180.00"),
            Decimal("880.00"),
        ]
        assert report.closing_balance == Decimal("880.00")

    def test_supplier_ledger(self, reporting, organization, supplier, trading_month):
        report = reporting.party_ledger(organization.id, supplier_id=supplier.id)

        assert report.closing_balance == Decimal("-500.00")

    def test_opening_balance_cached_until_ledger_changes(
        self, session, orchestrator, reporting, ctx, organization, customer, trading_month,
    ):
        session.commit()

        first = reporting.party_ledger(organization.id, customer_id=customer.id, start_date=date(2026, 3, 18))
        second = reporting.party_ledger(organization.id, customer_id=customer.id, start_date=date(2026, 3, 18))

        assert first.opening_balance == Decimal("1180.00")
        assert (first.opening_balance_cached, second.opening_balance_cached) == (False, True)
        assert [line.running_balance for line in second.lines] == [Decimal("880.00")]

        orchestrator.record_customer_payment(
            ctx, customer_id=customer.id, amount=Decimal("80.00"), payment_date=date(2026, 3, 16),
        )
        session.commit()

        third = reporting.party_ledger(organization.id, customer_id=customer.id, start_date=date(2026, 3, 18))
        assert third.opening_balance_cached is False
        assert third.opening_balance == Decimal("1100.00")

    def test_exactly_one_party_required(self, reporting, organization, customer, supplier):
        with pytest.raises(ValidationError):
            reporting.party_ledger(organization.id)
        with pytest.raises(ValidationError):
            reporting.party_ledger(organization.id, customer_id=customer.id, supplier_id=supplier.id)

    def test_unknown_party(self, reporting, organization):
        with pytest.raises(NotFoundError):
            reporting.party_ledger(organization.id, customer_id=uuid4())

    def test_party_of_other_organization(self, reporting, other_organization, customer):
        with pytest.raises(NotFoundError):
            reporting.party_ledger(other_organization.id, customer_id=customer.id)
