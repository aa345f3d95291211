"""
IntegrityService -- reconciliation scans over the ledger.

Responsibility:
    Compare what documents and counterparties claim (invoice grand totals,
    payment amounts, purchase totals, customer and supplier outstanding
    balances) against what the journal lines say, and check that every
    organization's ledger balances.

Architecture position:
    Services -- imperative shell.  Collects stored values and ledger
    re-derivations through ``LedgerSelector`` and the ORM, then delegates
    filtering and ranking to the pure ``IntegrityChecker``.

Invariants enforced:
    - Read-only: nothing is corrected automatically.
    - Out-of-balance alerts go out only after the surrounding transaction
      commits (post-commit hook), never from inside it.

Ledger derivations:
    invoice   net debit to Accounts Receivable under the invoice reference
    payment   Sum(debit) under the payment reference
    customer  Sum(debit - credit) over lines carrying the customer id
    supplier  Sum(credit - debit) over lines carrying the supplier id
    purchase  net credit to Accounts Payable under the purchase reference,
              minus debits under its purchase_return reference

Failure modes:
    - OutOfBalance from ``assert_balanced``.
    - NotFoundError from ``drill_down`` for an unknown entity.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_engines.integrity import (
    BackfillVerification,
    BalanceFinding,
    DrillDown,
    IntegrityChecker,
    Mismatch,
    MismatchCandidate,
    MismatchType,
    UnbalancedReference,
)
from ledger_kernel.db.hooks import on_commit
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import AccountRole, ReferenceType
from ledger_kernel.domain.money import ZERO
from ledger_kernel.exceptions import NotFoundError, OutOfBalance
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_modules.inventory.orm import StockAdjustmentModel
from ledger_modules.parties.orm import CustomerModel, SupplierModel
from ledger_modules.payments.models import PaymentRecordStatus, TransactionMode
from ledger_modules.payments.orm import PaymentModel
from ledger_modules.purchasing.models import PurchaseStatus
from ledger_modules.purchasing.orm import PurchaseModel
from ledger_modules.sales.models import InvoiceStatus
from ledger_modules.sales.orm import InvoiceModel
from ledger_services.notifications import LoggingNotifier, Notifier

logger = get_logger("services.integrity")

_DOCUMENT_MODELS = {
    MismatchType.INVOICE: InvoiceModel,
    MismatchType.PAYMENT: PaymentModel,
    MismatchType.PURCHASE: PurchaseModel,
    MismatchType.CUSTOMER: CustomerModel,
    MismatchType.SUPPLIER: SupplierModel,
}


class IntegrityService:
    """
    Drift detection between stored totals and journal lines.

    Contract:
        Every method reads only, except that ``nightly_balance_check``
        queues post-commit notifications on the session.

    Non-goals:
        - Does NOT repair drift.
        - Does NOT lock anything; scans see whatever is committed.
    """

    def __init__(
        self,
        session: Session,
        settings: LedgerSettings,
        *,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        checker: IntegrityChecker | None = None,
    ) -> None:
        self._session = session
        self._settings = settings
        self._clock = clock or SystemClock()
        self._notifier = notifier or LoggingNotifier()
        self._checker = checker or IntegrityChecker()
        self._selector = LedgerSelector(session)

    @property
    def tolerances(self):
        return self._settings.tolerances

    # -----------------------------------------------------------------
    # Organization balance
    # -----------------------------------------------------------------

    def check_organization_balance(self, organization_id: UUID) -> BalanceFinding:
        debit, credit = self._selector.organization_totals(organization_id)
        return self._checker.balance_finding(
            organization_id=organization_id,
            total_debit=debit,
            total_credit=credit,
            tolerance=self.tolerances.organization_balance,
        )

    def assert_balanced(self, organization_id: UUID) -> BalanceFinding:
        """Raise OutOfBalance instead of returning an unbalanced finding."""
        finding = self.check_organization_balance(organization_id)
        if not finding.is_balanced:
            raise OutOfBalance(str(organization_id), finding.total_debit, finding.total_credit)
        return finding

    def nightly_balance_check(
        self,
        organization_ids: Iterable[UUID] | None = None,
    ) -> list[BalanceFinding]:
        """
        Check every organization with journal lines (or the given ones).

        Out-of-balance findings are logged immediately and sent to the
        notifier once the caller commits.
        """
        if organization_ids is None:
            organization_ids = self._selector.organizations_with_lines()

        findings = []
        for organization_id in organization_ids:
            finding = self.check_organization_balance(organization_id)
            findings.append(finding)
            if finding.is_balanced:
                continue
            payload = {
                "organization_id": str(organization_id),
                "total_debit": str(finding.total_debit),
                "total_credit": str(finding.total_credit),
                "diff": str(finding.diff),
                "checked_at": self._clock.now().isoformat(),
            }
            logger.error("organization_out_of_balance", extra=payload)
            notifier = self._notifier
            on_commit(
                self._session,
                lambda p=payload: notifier.notify("organization_out_of_balance", p),
                name="notify_out_of_balance",
            )

        logger.info(
            "nightly_balance_check_completed",
            extra={
                "organizations": len(findings),
                "out_of_balance": sum(1 for f in findings if not f.is_balanced),
            },
        )
        return findings

    # -----------------------------------------------------------------
    # Top mismatches
    # -----------------------------------------------------------------

    def get_top_mismatches(
        self,
        organization_id: UUID,
        limit: int | None = None,
    ) -> tuple[Mismatch, ...]:
        """Entities whose stored total drifted from the ledger, worst first."""
        candidates: list[MismatchCandidate] = []
        for entity_type in MismatchType:
            candidates.extend(self._candidates(organization_id, entity_type))

        limit = self._settings.mismatch_limit if limit is None else limit
        mismatches = self._checker.rank_mismatches(candidates=candidates, limit=limit)
        logger.info(
            "top_mismatches_scanned",
            extra={
                "organization_id": str(organization_id),
                "candidates": len(candidates),
                "mismatches": len(mismatches),
            },
        )
        return mismatches

    def _tolerance(self, entity_type: MismatchType) -> Decimal:
        if entity_type in (MismatchType.CUSTOMER, MismatchType.SUPPLIER):
            return self.tolerances.running_balance
        return self.tolerances.document_total

    def _candidates(
        self, organization_id: UUID, entity_type: MismatchType,
    ) -> list[MismatchCandidate]:
        ledger = self._ledger_values(organization_id, entity_type)
        tolerance = self._tolerance(entity_type)
        return [
            MismatchCandidate(
                entity_type=entity_type,
                entity_id=entity_id,
                stored_value=stored,
                ledger_value=ledger.get(entity_id, ZERO),
                tolerance=tolerance,
            )
            for entity_id, stored in self._stored_values(organization_id, entity_type)
        ]

    def _stored_values(
        self, organization_id: UUID, entity_type: MismatchType,
    ) -> list[tuple[UUID, Decimal]]:
        """(id, stored value) for entities in scope: no cancelled or draft documents."""
        if entity_type == MismatchType.INVOICE:
            query = select(InvoiceModel.id, InvoiceModel.grand_total).where(
                InvoiceModel.organization_id == organization_id,
                InvoiceModel.status == InvoiceStatus.ISSUED.value,
            )
        elif entity_type == MismatchType.PAYMENT:
            query = select(PaymentModel.id, PaymentModel.amount).where(
                PaymentModel.organization_id == organization_id,
                PaymentModel.status == PaymentRecordStatus.COMPLETED.value,
            )
        elif entity_type == MismatchType.PURCHASE:
            query = select(PurchaseModel.id, PurchaseModel.grand_total).where(
                PurchaseModel.organization_id == organization_id,
                PurchaseModel.status != PurchaseStatus.CANCELLED.value,
            )
        elif entity_type == MismatchType.CUSTOMER:
            query = select(CustomerModel.id, CustomerModel.outstanding_balance).where(
                CustomerModel.organization_id == organization_id,
            )
        else:
            query = select(SupplierModel.id, SupplierModel.outstanding_balance).where(
                SupplierModel.organization_id == organization_id,
            )
        return [(row[0], row[1]) for row in self._session.execute(query).all()]

    def _ledger_values(
        self, organization_id: UUID, entity_type: MismatchType,
    ) -> dict[UUID, Decimal]:
        if entity_type == MismatchType.INVOICE:
            receivable = self._account_id(organization_id, AccountRole.ACCOUNTS_RECEIVABLE)
            if receivable is None:
                return {}
            totals = self._selector.totals_by_reference(
                organization_id, ReferenceType.INVOICE, account_id=receivable,
            )
            return {ref_id: t.debit_total - t.credit_total for ref_id, t in totals.items()}

        if entity_type == MismatchType.PAYMENT:
            totals = self._selector.totals_by_reference(organization_id, ReferenceType.PAYMENT)
            return {ref_id: t.debit_total for ref_id, t in totals.items()}

        if entity_type == MismatchType.PURCHASE:
            payable = self._account_id(organization_id, AccountRole.ACCOUNTS_PAYABLE)
            if payable is None:
                return {}
            posted = self._selector.totals_by_reference(
                organization_id, ReferenceType.PURCHASE, account_id=payable,
            )
            returned = self._selector.totals_by_reference(
                organization_id, ReferenceType.PURCHASE_RETURN,
            )
            values = {ref_id: t.credit_total - t.debit_total for ref_id, t in posted.items()}
            for ref_id, t in returned.items():
                values[ref_id] = values.get(ref_id, ZERO) - t.debit_total
            return values

        if entity_type == MismatchType.CUSTOMER:
            return self._selector.party_balances(organization_id)

        return {
            party_id: -balance
            for party_id, balance in self._selector.party_balances(
                organization_id, supplier=True
            ).items()
        }

    def _account_id(self, organization_id: UUID, role: AccountRole) -> UUID | None:
        entry = self._settings.chart.get(role)
        if entry is None:
            return None
        return self._session.execute(
            select(Account.id).where(
                Account.organization_id == organization_id,
                Account.code == entry.code,
            )
        ).scalar_one_or_none()

    # -----------------------------------------------------------------
    # Drill-down
    # -----------------------------------------------------------------

    def drill_down(
        self,
        organization_id: UUID,
        entity_type: MismatchType | str,
        entity_id: UUID,
    ) -> DrillDown:
        """Source document, its journal lines and the diff computation."""
        entity_type = MismatchType(entity_type)
        document = self._session.get(_DOCUMENT_MODELS[entity_type], entity_id)
        if document is None or document.organization_id != organization_id:
            raise NotFoundError(entity_type.value, str(entity_id))

        if entity_type == MismatchType.INVOICE:
            stored = document.grand_total
            lines = self._selector.lines_for_reference(
                organization_id, (ReferenceType.INVOICE,), entity_id,
            )
        elif entity_type == MismatchType.PAYMENT:
            stored = document.amount
            lines = self._selector.lines_for_reference(
                organization_id, (ReferenceType.PAYMENT,), entity_id,
            )
        elif entity_type == MismatchType.PURCHASE:
            stored = document.grand_total
            lines = self._selector.lines_for_reference(
                organization_id,
                (ReferenceType.PURCHASE, ReferenceType.PURCHASE_RETURN),
                entity_id,
            )
        elif entity_type == MismatchType.CUSTOMER:
            stored = document.outstanding_balance
            lines = self._selector.party_lines(organization_id, customer_id=entity_id)
        else:
            stored = document.outstanding_balance
            lines = self._selector.party_lines(organization_id, supplier_id=entity_id)

        ledger = self._ledger_values(organization_id, entity_type).get(entity_id, ZERO)
        diff = stored - ledger
        if entity_type in (MismatchType.CUSTOMER, MismatchType.SUPPLIER):
            # Party lines are one side of many postings; compare to the stored balance.
            is_balanced = abs(diff) <= self._tolerance(entity_type)
        else:
            net = sum((line.debit - line.credit for line in lines), ZERO)
            is_balanced = abs(net) <= self.tolerances.reference_balance

        logger.info(
            "integrity_drill_down",
            extra={
                "organization_id": str(organization_id),
                "entity_type": entity_type.value,
                "entity_id": str(entity_id),
                "diff": str(diff),
            },
        )
        return DrillDown(
            entity_type=entity_type,
            entity_id=entity_id,
            document=document.snapshot(),
            lines=tuple(lines),
            stored_value=stored,
            ledger_value=ledger,
            diff=diff,
            is_balanced=is_balanced,
        )

    # -----------------------------------------------------------------
    # Backfill verification
    # -----------------------------------------------------------------

    def verify_backfill(self, organization_id: UUID) -> BackfillVerification:
        """
        Re-derive totals per reference type over the documents the backfill
        covers and report discrepancies.  Never corrects anything.
        """
        tolerance = self.tolerances.backfill_verification
        coverage = []

        invoices = dict(self._stored_values(organization_id, MismatchType.INVOICE))
        coverage.append(self._checker.coverage(
            reference_type=ReferenceType.INVOICE.value,
            source_totals=invoices,
            posted_totals=self._ledger_values(organization_id, MismatchType.INVOICE),
            tolerance=tolerance,
        ))

        purchases = self._purchase_originals(organization_id)
        payable = self._account_id(organization_id, AccountRole.ACCOUNTS_PAYABLE)
        posted_purchases = {}
        if payable is not None:
            posted_purchases = {
                ref_id: t.credit_total - t.debit_total
                for ref_id, t in self._selector.totals_by_reference(
                    organization_id, ReferenceType.PURCHASE, account_id=payable,
                ).items()
            }
        coverage.append(self._checker.coverage(
            reference_type=ReferenceType.PURCHASE.value,
            source_totals=purchases,
            posted_totals=posted_purchases,
            tolerance=tolerance,
        ))

        payments = dict(self._session.execute(
            select(PaymentModel.id, PaymentModel.amount).where(
                PaymentModel.organization_id == organization_id,
                PaymentModel.status == PaymentRecordStatus.COMPLETED.value,
                PaymentModel.transaction_mode != TransactionMode.AUTO.value,
            )
        ).all())
        coverage.append(self._checker.coverage(
            reference_type=ReferenceType.PAYMENT.value,
            source_totals=payments,
            posted_totals=self._ledger_values(organization_id, MismatchType.PAYMENT),
            tolerance=tolerance,
        ))

        adjustments = dict(self._session.execute(
            select(StockAdjustmentModel.id, StockAdjustmentModel.cost_value).where(
                StockAdjustmentModel.organization_id == organization_id,
                StockAdjustmentModel.cost_value > 0,
            )
        ).all())
        coverage.append(self._checker.coverage(
            reference_type=ReferenceType.ADJUSTMENT.value,
            source_totals=adjustments,
            posted_totals={
                ref_id: t.debit_total
                for ref_id, t in self._selector.totals_by_reference(
                    organization_id, ReferenceType.ADJUSTMENT,
                ).items()
            },
            tolerance=tolerance,
        ))

        unbalanced = tuple(
            UnbalancedReference(
                reference_type=t.reference_type.value,
                reference_id=t.reference_id,
                debit_total=t.debit_total,
                credit_total=t.credit_total,
            )
            for t in self._selector.unbalanced_references(
                organization_id, self.tolerances.reference_balance,
            )
        )
        result = BackfillVerification(
            organization_id=organization_id,
            coverage=tuple(coverage),
            unbalanced=unbalanced,
        )
        if result.is_clean:
            logger.info("backfill_verified", extra={"organization_id": str(organization_id)})
        else:
            logger.warning(
                "backfill_discrepancies_found",
                extra={
                    "organization_id": str(organization_id),
                    "discrepancies": list(result.discrepancies),
                },
            )
        return result

    def _purchase_originals(self, organization_id: UUID) -> dict[UUID, Decimal]:
        """Received purchases at their posted value: current grand plus returns."""
        returned = self._selector.totals_by_reference(
            organization_id, ReferenceType.PURCHASE_RETURN,
        )
        originals = {}
        for purchase_id, grand_total in self._stored_values(organization_id, MismatchType.PURCHASE):
            back = returned.get(purchase_id)
            originals[purchase_id] = grand_total + (back.debit_total if back else ZERO)
        return originals
