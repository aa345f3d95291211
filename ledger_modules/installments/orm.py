"""
Installment ORM Models (``ledger_modules.installments.orm``).

Responsibility
--------------
Persistence for installment plans, their installments and pending
reconciliations of external payments.

Architecture position
---------------------
**Modules layer** -- persistence.

Invariants enforced
-------------------
* One plan per invoice (``uq_installment_plans_invoice``).
* Installment numbers are unique within a plan.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString
from ledger_kernel.domain.money import ZERO
from ledger_modules.installments.models import (
    InstallmentState,
    InstallmentStatus,
    PlanStatus,
    ReconciliationStatus,
)


# ---------------------------------------------------------------------------
# 1. InstallmentPlanModel
# ---------------------------------------------------------------------------


class InstallmentPlanModel(OrganizationScoped, TrackedBase):
    """A schedule of installments financing the balance of one invoice."""

    __tablename__ = "installment_plans"

    __table_args__ = (
        UniqueConstraint("invoice_id", name="uq_installment_plans_invoice"),
        Index("idx_installment_plans_customer", "customer_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=False
    )
    customer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    down_payment: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    interest_rate: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    number_of_installments: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    advance_balance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PlanStatus.ACTIVE.value
    )

    installments: Mapped[list["InstallmentModel"]] = relationship(
        "InstallmentModel",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="InstallmentModel.number",
    )

    @property
    def is_active(self) -> bool:
        return self.status == PlanStatus.ACTIVE.value

    def installment(self, number: int) -> "InstallmentModel | None":
        for row in self.installments:
            if row.number == number:
                return row
        return None

    def snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "invoice_id": str(self.invoice_id),
            "total_amount": str(self.total_amount),
            "down_payment": str(self.down_payment),
            "advance_balance": str(self.advance_balance),
            "status": self.status,
            "installments": [row.snapshot() for row in self.installments],
        }


# ---------------------------------------------------------------------------
# 2. InstallmentModel
# ---------------------------------------------------------------------------


class InstallmentModel(TrackedBase):
    """One scheduled payment within a plan."""

    __tablename__ = "installments"

    __table_args__ = (
        UniqueConstraint("plan_id", "number", name="uq_installments_plan_number"),
        Index("idx_installments_due", "due_date", "status"),
    )

    plan_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("installment_plans.id", ondelete="CASCADE"), nullable=False
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    principal: Mapped[Decimal] = mapped_column(nullable=False)
    interest: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    paid_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InstallmentStatus.PENDING.value
    )

    plan: Mapped[InstallmentPlanModel] = relationship(
        InstallmentPlanModel, back_populates="installments"
    )

    def to_state(self) -> InstallmentState:
        return InstallmentState(
            number=self.number,
            due_date=self.due_date,
            total=self.total,
            paid_amount=self.paid_amount,
            status=InstallmentStatus(self.status),
        )

    def snapshot(self) -> dict:
        return {
            "number": self.number,
            "due_date": self.due_date.isoformat(),
            "total": str(self.total),
            "paid_amount": str(self.paid_amount),
            "status": self.status,
        }


# ---------------------------------------------------------------------------
# 3. PendingReconciliationModel
# ---------------------------------------------------------------------------


class PendingReconciliationModel(OrganizationScoped, TrackedBase):
    """An external payment waiting to be matched to a plan."""

    __tablename__ = "pending_reconciliations"

    __table_args__ = (
        Index("idx_pending_reconciliations_org_status", "organization_id", "status"),
    )

    invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    external_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReconciliationStatus.PENDING.value
    )
    matched_plan_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    matched_installments: Mapped[list | None] = mapped_column(JSON, nullable=True)
    reconciled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reconciled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
