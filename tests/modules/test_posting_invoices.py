"""
Invoice postings through the Posting Orchestrator.

An issued invoice moves stock, the customer balance and the ledger
together; a draft moves none of them until it is issued.
"""

from dataclasses import replace
from decimal import Decimal

import pytest
from sqlalchemy import select

from ledger_kernel.domain.dtos import ReferenceType
from ledger_kernel.exceptions import (
    InsufficientStockError,
    PaymentExceedsTotalError,
    ValidationError,
)
from ledger_modules.payments.models import TransactionMode
from ledger_modules.payments.orm import PaymentModel
from ledger_modules.posting.models import InvoiceInput, InvoiceItemInput
from ledger_modules.sales.models import AuditAction, InvoiceStatus, PaymentStatus
from ledger_modules.sales.orm import InvoiceAuditModel
from ledger_services.ledger_context import build_ledger_services

# Seeded by the product fixture.
OPENING_STOCK = 100


def _stock(orchestrator, product, branch_id):
    return orchestrator.stock.quantity(product.organization_id, product.id, branch_id)


class TestIssuedInvoice:
    def test_taxed_invoice_lines(self, create_invoice, posted):
        invoice = create_invoice(price="1000.00", tax_rate="18")

        assert invoice.grand_total == Decimal("1180.00")
        assert posted(ReferenceType.INVOICE, invoice.id) == {
            "1200": Decimal("1180.00"),
            "4000": Decimal("-1000.00"),
            "2100": Decimal("-180.00"),
        }

    def test_untaxed_invoice_has_no_tax_line(self, orchestrator, create_invoice, organization):
        invoice = create_invoice(price="250.00", quantity=2)

        lines = orchestrator.posting_lines(organization.id, ReferenceType.INVOICE, invoice.id)
        assert sorted(line.account_code for line in lines) == ["1200", "4000"]

    def test_receivable_line_carries_customer(self, orchestrator, create_invoice, organization, customer):
        invoice = create_invoice()

        lines = orchestrator.posting_lines(organization.id, ReferenceType.INVOICE, invoice.id)
        receivable = [line for line in lines if line.account_code == "1200"]
        assert receivable[0].customer_id == customer.id

    def test_side_effects(self, orchestrator, create_invoice, customer, product, branch_id, account_balance):
        create_invoice(price="100.00", quantity=3)

        assert _stock(orchestrator, product, branch_id) == OPENING_STOCK - 3
        assert customer.outstanding_balance == Decimal("300.00")
        assert customer.total_purchases == Decimal("300.00")
        assert account_balance("1200") == Decimal("300.00")
        assert account_balance("4000") == Decimal("-300.00")

    def test_insufficient_stock(self, create_invoice):
        with pytest.raises(InsufficientStockError):
            create_invoice(price="10.00", quantity=OPENING_STOCK + 1)

    def test_create_audit_written(self, session, create_invoice):
        invoice = create_invoice()

        actions = session.execute(
            select(InvoiceAuditModel.action).where(InvoiceAuditModel.invoice_id == invoice.id)
        ).scalars().all()
        assert actions == [AuditAction.CREATE.value]

    def test_cost_of_goods_sold_posted_when_enabled(
        self, session, settings, clock, ctx, customer, product, branch_id, organization,
    ):
        services = build_ledger_services(
            session, replace(settings, post_cost_of_goods_sold=True), clock=clock,
        )
        invoice = services.orchestrator.create_invoice(ctx, InvoiceInput(
            invoice_number="INV-COGS",
            customer_id=customer.id,
            branch_id=branch_id,
            invoice_date=clock.today(),
            items=(InvoiceItemInput(product_id=product.id, quantity=2, price=Decimal("100.00")),),
        ))

        lines = services.orchestrator.posting_lines(organization.id, ReferenceType.INVOICE, invoice.id)
        by_code = {line.account_code: (line.debit, line.credit) for line in lines}
        assert by_code["5000"] == (Decimal("100.00"), Decimal("0.00"))
        assert by_code["1500"] == (Decimal("0.00"), Decimal("100.00"))
        assert by_code["1200"] == (Decimal("200.00"), Decimal("0.00"))


class TestAutoPayment:
    def test_paid_amount_creates_auto_payment(self, session, create_invoice, customer, posted):
        invoice = create_invoice(price="500.00", paid_amount=Decimal("200.00"))

        payment = session.execute(
            select(PaymentModel).where(PaymentModel.invoice_id == invoice.id)
        ).scalar_one()
        assert payment.transaction_mode == TransactionMode.AUTO.value
        assert payment.amount == Decimal("200.00")
        assert invoice.paid_amount == Decimal("200.00")
        assert invoice.balance == Decimal("300.00")
        assert invoice.payment_status == PaymentStatus.PARTIAL.value
        assert customer.outstanding_balance == Decimal("300.00")
        assert posted(ReferenceType.PAYMENT, payment.id) == {
            "1001": Decimal("200.00"),
            "1200": Decimal("-200.00"),
        }

    def test_fully_paid_invoice(self, create_invoice, customer):
        invoice = create_invoice(price="500.00", paid_amount=Decimal("500.00"))

        assert invoice.payment_status == PaymentStatus.PAID.value
        assert invoice.balance == Decimal("0.00")
        assert customer.outstanding_balance == Decimal("0.00")

    def test_paid_amount_above_total_rejected(self, create_invoice):
        with pytest.raises(PaymentExceedsTotalError):
            create_invoice(price="500.00", paid_amount=Decimal("500.01"))

    def test_bank_payment_method(self, session, create_invoice, posted):
        invoice = create_invoice(price="80.00", paid_amount=Decimal("80.00"), payment_method="bank")

        payment = session.execute(
            select(PaymentModel).where(PaymentModel.invoice_id == invoice.id)
        ).scalar_one()
        assert "1002" in posted(ReferenceType.PAYMENT, payment.id)


class TestDraftInvoice:
    def test_draft_posts_nothing(self, orchestrator, create_invoice, customer, product, branch_id, organization):
        invoice = create_invoice(price="400.00", draft=True)

        assert invoice.status == InvoiceStatus.DRAFT.value
        assert not orchestrator.journal.has_posting(organization.id, ReferenceType.INVOICE, invoice.id)
        assert _stock(orchestrator, product, branch_id) == OPENING_STOCK
        assert customer.outstanding_balance == Decimal("0")

    def test_issue_posts(self, orchestrator, ctx, create_invoice, customer, product, branch_id, posted):
        invoice = create_invoice(price="400.00", draft=True)

        orchestrator.issue_invoice(ctx, invoice.id)

        assert invoice.status == InvoiceStatus.ISSUED.value
        assert posted(ReferenceType.INVOICE, invoice.id)["1200"] == Decimal("400.00")
        assert _stock(orchestrator, product, branch_id) == OPENING_STOCK - 1
        assert customer.outstanding_balance == Decimal("400.00")

    def test_issue_twice_rejected(self, orchestrator, ctx, create_invoice):
        invoice = create_invoice()

        with pytest.raises(ValidationError):
            orchestrator.issue_invoice(ctx, invoice.id)

    def test_draft_cannot_carry_payment(self, create_invoice):
        with pytest.raises(ValidationError):
            create_invoice(price="400.00", draft=True, paid_amount=Decimal("10.00"))

    def test_payment_against_draft_rejected(self, orchestrator, ctx, create_invoice):
        invoice = create_invoice(draft=True)

        with pytest.raises(ValidationError):
            orchestrator.record_customer_payment(ctx, amount=Decimal("10.00"), invoice_id=invoice.id)
