"""
Payments ORM Models (``ledger_modules.payments.orm``).

Responsibility
--------------
Persistence for payments.  A payment is either an inflow from a customer
(optionally against an invoice) or an outflow to a supplier (optionally
against a purchase).

Architecture position
---------------------
**Modules layer** -- persistence.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString
from ledger_modules.payments.models import PaymentRecordStatus, TransactionMode


class PaymentModel(OrganizationScoped, TrackedBase):
    """A money movement with a customer or supplier."""

    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_payments_positive"),
        Index("idx_payments_invoice", "invoice_id"),
        Index("idx_payments_purchase", "purchase_id"),
        Index("idx_payments_org_status", "organization_id", "status"),
    )

    branch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    customer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    supplier_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    purchase_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentRecordStatus.COMPLETED.value
    )
    transaction_mode: Mapped[str] = mapped_column(
        String(10), nullable=False, default=TransactionMode.MANUAL.value
    )
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    reference_note: Mapped[str] = mapped_column(Text, nullable=False, default="")

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentRecordStatus.COMPLETED.value

    def snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "customer_id": str(self.customer_id) if self.customer_id else None,
            "supplier_id": str(self.supplier_id) if self.supplier_id else None,
            "invoice_id": str(self.invoice_id) if self.invoice_id else None,
            "purchase_id": str(self.purchase_id) if self.purchase_id else None,
            "direction": self.direction,
            "amount": str(self.amount),
            "method": self.method,
            "status": self.status,
            "transaction_mode": self.transaction_mode,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
        }

    def __repr__(self) -> str:
        return f"<PaymentModel {self.direction} {self.amount} ({self.status})>"
