"""
IntegrityService: organization balance, top mismatches, drill-down and
backfill verification.

Drift is simulated by writing around the posting pipeline: an extra
journal line added straight to the session, or a stored total changed
on a document.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from ledger_engines.integrity.types import MismatchType
from ledger_kernel.domain.dtos import ReferenceType
from ledger_kernel.exceptions import NotFoundError, OutOfBalance
from ledger_kernel.models.journal import JournalLine
from ledger_services.ledger_context import build_ledger_services


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, event, payload):
        self.sent.append((event, payload))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def services(session, settings, clock, notifier):
    return build_ledger_services(session, settings, clock=clock, notifier=notifier)


@pytest.fixture
def integrity(services):
    return services.integrity


@pytest.fixture
def stray_line(session, organization, actor_id, clock, create_invoice):
    """Add a one-sided debit of 10.00 next to a real invoice posting."""
    create_invoice(price="100.00")
    account_id = session.execute(
        select(JournalLine.account_id).where(JournalLine.organization_id == organization.id).limit(1)
    ).scalar_one()

    def _add():
        session.add(JournalLine(
            organization_id=organization.id,
            account_id=account_id,
            entry_date=clock.today(),
            debit=Decimal("10.00"),
            credit=Decimal("0"),
            description="manual entry",
            reference_type=ReferenceType.ADJUSTMENT.value,
            reference_id=uuid4(),
            created_by_id=actor_id,
        ))
        session.flush()

    return _add


# =============================================================================
# Organization balance
# =============================================================================


class TestOrganizationBalance:
    def test_postings_keep_organization_balanced(self, integrity, organization, create_invoice, create_purchase):
        create_invoice(price="1000.00", tax_rate="18")
        create_purchase()

        finding = integrity.assert_balanced(organization.id)

        assert finding.total_debit == finding.total_credit == Decimal("1680.00")

    def test_stray_line_detected(self, integrity, organization, stray_line):
        stray_line()

        with pytest.raises(OutOfBalance) as exc_info:
            integrity.assert_balanced(organization.id)

        assert exc_info.value.difference == Decimal("10.00")
        assert exc_info.value.code == "ORGANIZATION_OUT_OF_BALANCE"


class TestNightlyBalanceCheck:
    def test_balanced_organizations_send_nothing(self, session, integrity, notifier, create_invoice):
        create_invoice()

        findings = integrity.nightly_balance_check()
        session.commit()

        assert [f.is_balanced for f in findings] == [True]
        assert notifier.sent == []

    def test_alert_sent_after_commit(self, session, integrity, notifier, organization, stray_line, captured_logs):
        stray_line()

        findings = integrity.nightly_balance_check()

        assert not findings[0].is_balanced
        assert notifier.sent == []
        assert any(r["message"] == "organization_out_of_balance" for r in captured_logs())

        session.commit()

        assert len(notifier.sent) == 1
        event, payload = notifier.sent[0]
        assert event == "organization_out_of_balance"
        assert payload["organization_id"] == str(organization.id)
        assert payload["diff"] == "10.00"

    def test_rollback_discards_alert(self, session, integrity, notifier, stray_line):
        stray_line()
        integrity.nightly_balance_check()

        session.rollback()
        session.commit()

        assert notifier.sent == []

    def test_explicit_organization_list(self, integrity, other_organization, create_invoice):
        create_invoice()

        findings = integrity.nightly_balance_check([other_organization.id])

        assert [(f.organization_id, f.total_debit) for f in findings] == [(other_organization.id, Decimal("0"))]


# =============================================================================
# Top mismatches
# =============================================================================


class TestTopMismatches:
    def test_clean_ledger_has_none(self, integrity, organization, orchestrator, ctx, create_invoice, create_purchase):
        invoice = create_invoice(price="1000.00")
        create_purchase()
        orchestrator.record_customer_payment(ctx, amount=Decimal("250.00"), invoice_id=invoice.id)

        assert integrity.get_top_mismatches(organization.id) == ()

    def test_drifted_customer_balance(self, session, integrity, organization, customer, create_invoice):
        create_invoice(price="1000.00")
        customer.outstanding_balance = Decimal("1040.00")
        session.flush()

        mismatches = integrity.get_top_mismatches(organization.id)

        assert len(mismatches) == 1
        mismatch = mismatches[0]
        assert mismatch.entity_type == MismatchType.CUSTOMER
        assert mismatch.entity_id == customer.id
        assert mismatch.ledger_value == Decimal("1000.00")
        assert mismatch.diff == Decimal("40.00")
        assert mismatch.to_dict()["type"] == "customer"

    @pytest.mark.parametrize(
        "stored, flagged",
        [
            (Decimal("1001.00"), False),
            (Decimal("1001.01"), True),
        ],
    )
    def test_running_balance_tolerance(self, session, integrity, organization, customer, create_invoice, stored, flagged):
        create_invoice(price="1000.00")
        customer.outstanding_balance = stored
        session.flush()

        assert bool(integrity.get_top_mismatches(organization.id)) is flagged

    @pytest.mark.parametrize(
        "stored, flagged",
        [
            (Decimal("500.05"), False),
            (Decimal("500.06"), True),
        ],
    )
    def test_document_total_tolerance(self, session, integrity, organization, create_invoice, stored, flagged):
        invoice = create_invoice(price="500.00")
        invoice.grand_total = stored
        session.flush()

        found = [m.entity_type for m in integrity.get_top_mismatches(organization.id)]

        assert (MismatchType.INVOICE in found) is flagged

    def test_worst_first_and_limited(self, session, integrity, organization, customer, supplier, create_invoice, create_purchase):
        create_invoice(price="1000.00")
        create_purchase()
        customer.outstanding_balance = Decimal("1100.00")
        supplier.outstanding_balance = Decimal("520.00")
        session.flush()

        mismatches = integrity.get_top_mismatches(organization.id)

        assert [(m.entity_type, m.diff) for m in mismatches] == [
            (MismatchType.CUSTOMER, Decimal("100.00")),
            (MismatchType.SUPPLIER, Decimal("20.00")),
        ]
        assert len(integrity.get_top_mismatches(organization.id, limit=1)) == 1

    def test_supplier_ledger_sign(self, session, integrity, organization, supplier, create_purchase):
        create_purchase()
        supplier.outstanding_balance = Decimal("0")
        session.flush()

        (mismatch,) = integrity.get_top_mismatches(organization.id)

        assert mismatch.entity_type == MismatchType.SUPPLIER
        assert mismatch.ledger_value == Decimal("500.00")
        assert mismatch.diff == Decimal("-500.00")


# =============================================================================
# Drill-down
# =============================================================================


class TestDrillDown:
    def test_invoice(self, integrity, organization, create_invoice):
        invoice = create_invoice(price="1000.00", tax_rate="18")

        detail = integrity.drill_down(organization.id, "invoice", invoice.id)

        assert detail.document["invoice_number"] == invoice.invoice_number
        assert len(detail.lines) == 3
        assert detail.stored_value == detail.ledger_value == Decimal("1180.00")
        assert detail.diff == Decimal("0")
        assert detail.is_balanced

    def test_customer_with_drift(self, session, integrity, organization, customer, create_invoice):
        create_invoice(price="300.00")
        customer.outstanding_balance = Decimal("350.00")
        session.flush()

        detail = integrity.drill_down(organization.id, MismatchType.CUSTOMER, customer.id)

        assert detail.diff == Decimal("50.00")
        assert not detail.is_balanced
        assert [line.debit for line in detail.lines] == [Decimal("300.00")]

    def test_other_organization_not_visible(self, integrity, other_organization, create_invoice):
        invoice = create_invoice()

        with pytest.raises(NotFoundError):
            integrity.drill_down(other_organization.id, MismatchType.INVOICE, invoice.id)

    def test_unknown_document(self, integrity, organization):
        with pytest.raises(NotFoundError):
            integrity.drill_down(organization.id, MismatchType.PAYMENT, uuid4())


# =============================================================================
# Backfill verification
# =============================================================================


class TestVerifyBackfill:
    def test_clean_after_normal_posting(
        self, integrity, orchestrator, ctx, organization, create_invoice, create_purchase, captured_logs,
    ):
        invoice = create_invoice(price="800.00", paid_amount=Decimal("100.00"))
        create_purchase()
        orchestrator.record_customer_payment(ctx, amount=Decimal("200.00"), invoice_id=invoice.id)

        result = integrity.verify_backfill(organization.id)

        assert result.is_clean
        by_type = {c.reference_type: c for c in result.coverage}
        assert by_type["invoice"].posted == 1
        # The automatic payment is posted with its invoice and is outside the source set.
        assert by_type["payment"].documents == 1
        assert any(r["message"] == "backfill_verified" for r in captured_logs())

    def test_unposted_document_reported(self, integrity, orchestrator, organization, create_invoice, captured_logs):
        invoice = create_invoice(price="400.00")
        orchestrator.journal.delete_reference(organization.id, ReferenceType.INVOICE, invoice.id)

        result = integrity.verify_backfill(organization.id)

        assert not result.is_clean
        invoices = next(c for c in result.coverage if c.reference_type == "invoice")
        assert invoices.unposted_ids == (invoice.id,)
        assert any("1 unposted" in d for d in result.discrepancies)
        assert any(r["message"] == "backfill_discrepancies_found" for r in captured_logs())

    def test_unbalanced_reference_reported(self, integrity, organization, stray_line):
        stray_line()

        result = integrity.verify_backfill(organization.id)

        assert len(result.unbalanced) == 1
        assert result.unbalanced[0].diff == Decimal("10.00")
        assert not result.is_clean
