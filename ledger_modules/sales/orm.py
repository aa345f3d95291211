"""
Sales ORM Models (``ledger_modules.sales.orm``).

Responsibility
--------------
Persistence for invoices, invoice items and the invoice audit trail.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``.

Invariants enforced
-------------------
* ``invoice_number`` is unique per organization.
* ``InvoiceAuditModel`` rows are append-only (``ledger_kernel.db.immutability``).
* Stored totals are written by the posting rules only; see
  ``ledger_modules.posting.rules.invoice_totals``.

Audit relevance
---------------
* Every create, edit, status change and cancel writes an audit row holding
  before/after JSON snapshots and the acting user.
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
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString
from ledger_kernel.domain.money import ZERO
from ledger_modules.sales.models import InvoiceStatus, PaymentStatus


# ---------------------------------------------------------------------------
# 1. InvoiceModel
# ---------------------------------------------------------------------------


class InvoiceModel(OrganizationScoped, TrackedBase):
    """
    A customer invoice.

    Guarantees:
        - grand_total = sub_total - item discounts - discount + shipping + tax.
        - balance = grand_total - paid_amount, paid_amount <= grand_total.
        - Once ``status`` is cancelled the invoice is never edited again.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("organization_id", "invoice_number", name="uq_invoices_org_number"),
        Index("idx_invoices_customer", "customer_id"),
        Index("idx_invoices_org_status", "organization_id", "status"),
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("customers.id"), nullable=False
    )
    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    sub_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    item_discount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    discount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    shipping_charges: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    grand_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.UNPAID.value
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.ISSUED.value
    )
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    items: Mapped[list["InvoiceItemModel"]] = relationship(
        "InvoiceItemModel",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItemModel.line_no",
    )

    @property
    def is_cancelled(self) -> bool:
        return self.status == InvoiceStatus.CANCELLED.value

    @property
    def is_draft(self) -> bool:
        return self.status == InvoiceStatus.DRAFT.value

    def snapshot(self) -> dict:
        """JSON-safe copy of the fields the audit trail records."""
        return {
            "id": str(self.id),
            "invoice_number": self.invoice_number,
            "customer_id": str(self.customer_id),
            "branch_id": str(self.branch_id),
            "invoice_date": self.invoice_date.isoformat() if self.invoice_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "items": [item.snapshot() for item in self.items],
            "sub_total": str(self.sub_total),
            "item_discount": str(self.item_discount),
            "tax_amount": str(self.tax_amount),
            "discount": str(self.discount),
            "shipping_charges": str(self.shipping_charges),
            "grand_total": str(self.grand_total),
            "paid_amount": str(self.paid_amount),
            "balance": str(self.balance),
            "payment_status": self.payment_status,
            "status": self.status,
            "notes": self.notes,
        }

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number}: {self.grand_total} ({self.status})>"


# ---------------------------------------------------------------------------
# 2. InvoiceItemModel
# ---------------------------------------------------------------------------


class InvoiceItemModel(TrackedBase):
    """One product line on an invoice."""

    __tablename__ = "invoice_items"

    __table_args__ = (
        Index("idx_invoice_items_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    discount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    line_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    invoice: Mapped[InvoiceModel] = relationship(InvoiceModel, back_populates="items")

    def snapshot(self) -> dict:
        return {
            "product_id": str(self.product_id),
            "quantity": self.quantity,
            "price": str(self.price),
            "tax_rate": str(self.tax_rate),
            "discount": str(self.discount),
            "line_total": str(self.line_total),
        }


# ---------------------------------------------------------------------------
# 3. InvoiceAuditModel
# ---------------------------------------------------------------------------


class InvoiceAuditModel(OrganizationScoped, TrackedBase):
    """Append-only record of one change to an invoice."""

    __tablename__ = "invoice_audits"

    __table_args__ = (
        Index("idx_invoice_audits_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<InvoiceAuditModel {self.invoice_id} {self.action}>"
