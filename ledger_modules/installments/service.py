"""
InstallmentService -- deferred-payment plans and payment reconciliation.

Responsibility:
    Create installment plans for invoices, apply customer payments to them,
    pay single installments, flag overdue installments, register external
    payments awaiting reconciliation and reconcile them against a plan.

Architecture position:
    Modules > Installments.  Arithmetic comes from ``allocation.py``; this
    service loads and stores ORM rows.  Called by the Posting Orchestrator
    (payment inflows), by the ``installments.mark_overdue`` batch task, and
    directly by callers.  Never commits.

Invariants enforced:
    - One plan per invoice.
    - Money is never dropped: amounts above what the selected installments
      owe accumulate in ``advance_balance``.
    - A plan is ``completed`` exactly when every installment is ``paid``.

Failure modes:
    - NotFoundError: missing invoice, plan or reconciliation.
    - ValidationError: bad schedule parameters, duplicate plan, cancelled or
      draft invoice, unknown installment numbers, a defaulted plan.

Audit relevance:
    ``reconcile_payment`` records the matched installments, amounts, actor
    and time on the reconciliation row.  It has no duplicate-submission
    guard: reconciling an already matched row allocates again and only logs
    ``reconciliation_already_matched``.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import RequestContext
from ledger_kernel.domain.money import ZERO, round_money, to_decimal
from ledger_kernel.exceptions import NotFoundError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.base import BaseService
from ledger_modules.installments.allocation import allocate, build_schedule, pay_single
from ledger_modules.installments.models import (
    AllocationResult,
    InstallmentStatus,
    InstallmentSummary,
    PlanStatus,
    ReconciliationResult,
    ReconciliationStatus,
)
from ledger_modules.installments.orm import (
    InstallmentModel,
    InstallmentPlanModel,
    PendingReconciliationModel,
)
from ledger_modules.sales.orm import InvoiceModel

logger = get_logger("modules.installments.service")


class InstallmentService(BaseService[InstallmentPlanModel]):
    """
    Installment plans and reconciliation of payments against them.

    Contract:
        Every mutating method flushes and returns what it changed; the
        caller owns the transaction.

    Non-goals:
        - Does NOT post journal lines.  The money itself is posted by the
          payment that carried it.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # =========================================================================
    # Plans
    # =========================================================================

    def create_plan(
        self,
        ctx: RequestContext,
        invoice_id: UUID,
        *,
        number_of_installments: int,
        down_payment: Decimal = ZERO,
        interest_rate: Decimal = ZERO,
        start_date: date | None = None,
    ) -> InstallmentPlanModel:
        """
        Finance the invoice's grand total less ``down_payment``.

        Raises:
            NotFoundError: invoice missing in the organization.
            ValidationError: invoice is draft or cancelled, a plan already
                exists, or the schedule parameters are invalid.
        """
        invoice = self.session.get(InvoiceModel, invoice_id)
        if invoice is None or invoice.organization_id != ctx.organization_id:
            raise NotFoundError("Invoice", str(invoice_id))
        if invoice.is_cancelled or invoice.is_draft:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} is {invoice.status}; "
                "installment plans need an issued invoice",
                field="invoice_id",
            )
        if self.plan_for_invoice(ctx.organization_id, invoice_id) is not None:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} already has an installment plan",
                field="invoice_id",
            )

        start = start_date or self._clock.today()
        schedule = build_schedule(
            invoice.grand_total,
            to_decimal(down_payment),
            number_of_installments,
            to_decimal(interest_rate),
            start,
        )
        plan = InstallmentPlanModel(
            organization_id=ctx.organization_id,
            invoice_id=invoice.id,
            customer_id=invoice.customer_id,
            total_amount=invoice.grand_total,
            down_payment=round_money(down_payment),
            interest_rate=to_decimal(interest_rate),
            number_of_installments=number_of_installments,
            start_date=start,
            end_date=schedule[-1].due_date,
            advance_balance=ZERO,
            status=PlanStatus.ACTIVE.value,
            created_by_id=ctx.actor_id,
        )
        plan.installments = [
            InstallmentModel(
                number=row.number,
                due_date=row.due_date,
                principal=row.principal,
                interest=row.interest,
                total=row.total,
                paid_amount=ZERO,
                status=InstallmentStatus.PENDING.value,
                created_by_id=ctx.actor_id,
            )
            for row in schedule
        ]
        self.session.add(plan)
        self.session.flush()

        logger.info(
            "installment_plan_created",
            extra={
                "plan_id": str(plan.id),
                "invoice_id": str(invoice.id),
                "installments": number_of_installments,
                "financed": str(invoice.grand_total - plan.down_payment),
            },
        )
        return plan

    def plan_for_invoice(
        self, organization_id: UUID, invoice_id: UUID,
    ) -> InstallmentPlanModel | None:
        return self.session.execute(
            select(InstallmentPlanModel).where(
                InstallmentPlanModel.organization_id == organization_id,
                InstallmentPlanModel.invoice_id == invoice_id,
            )
        ).scalar_one_or_none()

    def get_plan(self, organization_id: UUID, plan_id: UUID) -> InstallmentPlanModel:
        plan = self.session.get(InstallmentPlanModel, plan_id)
        if plan is None or plan.organization_id != organization_id:
            raise NotFoundError("InstallmentPlan", str(plan_id))
        return plan

    def default_plan(self, organization_id: UUID, invoice_id: UUID) -> InstallmentPlanModel | None:
        """Close the active plan of a cancelled invoice.  No plan, or a closed one, is a no-op."""
        plan = self.plan_for_invoice(organization_id, invoice_id)
        if plan is None or not plan.is_active:
            return None
        plan.status = PlanStatus.DEFAULTED.value
        self.session.flush()
        logger.info(
            "installment_plan_defaulted",
            extra={"plan_id": str(plan.id), "invoice_id": str(invoice_id)},
        )
        return plan

    @staticmethod
    def _ensure_open(plan: InstallmentPlanModel) -> None:
        if plan.status == PlanStatus.DEFAULTED.value:
            raise ValidationError(
                f"Installment plan {plan.id} is defaulted", field="plan_id"
            )

    # =========================================================================
    # Payments
    # =========================================================================

    def apply_payment(
        self,
        organization_id: UUID,
        invoice_id: UUID,
        amount: Decimal,
        paid_on: date | None = None,
    ) -> AllocationResult | None:
        """
        Apply a customer payment oldest-due-first to the invoice's active plan.

        Returns None when the invoice has no active plan.
        """
        plan = self.plan_for_invoice(organization_id, invoice_id)
        if plan is None or not plan.is_active:
            return None
        result = allocate([row.to_state() for row in plan.installments], to_decimal(amount))
        self._store(plan, result, paid_on or self._clock.today())
        logger.info(
            "installment_payment_applied",
            extra={
                "plan_id": str(plan.id),
                "applied": str(result.applied_total),
                "advance": str(result.advance),
            },
        )
        return result

    def pay_installment(
        self,
        organization_id: UUID,
        plan_id: UUID,
        number: int,
        amount: Decimal,
        paid_on: date | None = None,
    ) -> AllocationResult:
        """Pay one installment; the excess over its due goes to advance."""
        plan = self.get_plan(organization_id, plan_id)
        self._ensure_open(plan)
        row = plan.installment(number)
        if row is None:
            raise NotFoundError("Installment", f"{plan_id}#{number}")
        result = pay_single(row.to_state(), to_decimal(amount))
        self._store(plan, result, paid_on or self._clock.today())
        return result

    def mark_overdue(self, as_of: date, organization_id: UUID | None = None) -> int:
        """Flag pending/partial installments due before ``as_of`` as overdue.

        Returns:
            Number of installments flagged.
        """
        query = (
            select(InstallmentModel)
            .join(InstallmentPlanModel, InstallmentModel.plan_id == InstallmentPlanModel.id)
            .where(
                InstallmentPlanModel.status == PlanStatus.ACTIVE.value,
                InstallmentModel.due_date < as_of,
                InstallmentModel.status.in_(
                    [InstallmentStatus.PENDING.value, InstallmentStatus.PARTIAL.value]
                ),
            )
        )
        if organization_id is not None:
            query = query.where(InstallmentPlanModel.organization_id == organization_id)
        rows = list(self.session.execute(query).scalars())
        for row in rows:
            row.status = InstallmentStatus.OVERDUE.value
        self.session.flush()
        logger.info(
            "installments_marked_overdue",
            extra={"as_of": as_of.isoformat(), "count": len(rows)},
        )
        return len(rows)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def record_pending(
        self,
        ctx: RequestContext,
        amount: Decimal,
        *,
        invoice_id: UUID | None = None,
        external_reference: str | None = None,
    ) -> PendingReconciliationModel:
        """Register an external payment that still has to be matched."""
        value = round_money(amount)
        if value <= ZERO:
            raise ValidationError("Reconciliation amount must be positive", field="amount")
        row = PendingReconciliationModel(
            organization_id=ctx.organization_id,
            invoice_id=invoice_id,
            amount=value,
            external_reference=external_reference,
            status=ReconciliationStatus.PENDING.value,
            created_by_id=ctx.actor_id,
        )
        self.session.add(row)
        self.session.flush()
        logger.info(
            "reconciliation_recorded",
            extra={"reconciliation_id": str(row.id), "amount": str(value)},
        )
        return row

    def reconcile_payment(
        self,
        ctx: RequestContext,
        reconciliation_id: UUID,
        installment_numbers: list[int] | None = None,
        notes: str | None = None,
    ) -> ReconciliationResult:
        """
        Allocate a pending external payment to its invoice's plan.

        Args:
            installment_numbers: Apply to these installments in ascending
                order.  None means oldest-due-first over unpaid installments.

        Raises:
            NotFoundError: reconciliation or plan missing.
        """
        reconciliation = self.session.get(PendingReconciliationModel, reconciliation_id)
        if reconciliation is None or reconciliation.organization_id != ctx.organization_id:
            raise NotFoundError("PendingReconciliation", str(reconciliation_id))
        if reconciliation.status == ReconciliationStatus.MATCHED.value:
            # Reconciliations carry no idempotency key; a repeat allocates again.
            logger.warning(
                "reconciliation_already_matched",
                extra={"reconciliation_id": str(reconciliation_id)},
            )
        if reconciliation.invoice_id is None:
            raise NotFoundError("InstallmentPlan", f"reconciliation:{reconciliation_id}")
        plan = self.plan_for_invoice(ctx.organization_id, reconciliation.invoice_id)
        if plan is None:
            raise NotFoundError("InstallmentPlan", f"invoice:{reconciliation.invoice_id}")
        self._ensure_open(plan)

        result = allocate(
            [row.to_state() for row in plan.installments],
            reconciliation.amount,
            installment_numbers,
        )
        self._store(plan, result, self._clock.today())

        reconciliation.status = ReconciliationStatus.MATCHED.value
        reconciliation.matched_plan_id = plan.id
        reconciliation.matched_installments = [a.to_dict() for a in result.allocations]
        reconciliation.reconciled_by_id = ctx.actor_id
        reconciliation.reconciled_at = self._clock.now()
        if notes is not None:
            reconciliation.notes = notes
        reconciliation.updated_by_id = ctx.actor_id
        self.session.flush()

        logger.info(
            "payment_reconciled",
            extra={
                "reconciliation_id": str(reconciliation_id),
                "plan_id": str(plan.id),
                "installments": [a.number for a in result.allocations],
                "advance": str(result.advance),
            },
        )
        return ReconciliationResult(
            reconciliation_id=reconciliation.id,
            plan_id=plan.id,
            applied_installments=result.allocations,
            remaining_advance=plan.advance_balance,
            plan_status=PlanStatus(plan.status),
        )

    def summary(self, organization_id: UUID) -> InstallmentSummary:
        reconciliations = self.session.execute(
            select(PendingReconciliationModel.status, PendingReconciliationModel.amount).where(
                PendingReconciliationModel.organization_id == organization_id
            )
        ).all()
        rec_counts: Counter[str] = Counter()
        rec_amounts: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for status, amount in reconciliations:
            rec_counts[status] += 1
            rec_amounts[status] += round_money(Decimal(str(amount)))

        installments = self.session.execute(
            select(InstallmentModel.status, InstallmentModel.total, InstallmentModel.paid_amount)
            .join(InstallmentPlanModel, InstallmentModel.plan_id == InstallmentPlanModel.id)
            .where(InstallmentPlanModel.organization_id == organization_id)
        ).all()
        inst_counts: Counter[str] = Counter()
        inst_outstanding: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for status, total, paid in installments:
            inst_counts[status] += 1
            inst_outstanding[status] += round_money(
                Decimal(str(total)) - Decimal(str(paid))
            )

        return InstallmentSummary(
            organization_id=organization_id,
            reconciliations_by_status=dict(rec_counts),
            reconciliation_amounts_by_status=dict(rec_amounts),
            installments_by_status=dict(inst_counts),
            installment_outstanding_by_status=dict(inst_outstanding),
        )

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _store(self, plan: InstallmentPlanModel, result: AllocationResult, paid_on: date) -> None:
        for allocation in result.allocations:
            row = plan.installment(allocation.number)
            row.paid_amount = allocation.paid_amount
            row.status = allocation.status.value
            row.paid_date = paid_on
        plan.advance_balance = round_money(plan.advance_balance + result.advance)
        if all(row.status == InstallmentStatus.PAID.value for row in plan.installments):
            if plan.status != PlanStatus.COMPLETED.value:
                logger.info("installment_plan_completed", extra={"plan_id": str(plan.id)})
            plan.status = PlanStatus.COMPLETED.value
        self.session.flush()
