"""
Purchasing ORM Models (``ledger_modules.purchasing.orm``).

Responsibility
--------------
Persistence for supplier purchases and purchase items.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``.

Invariants enforced
-------------------
* ``purchase_number`` is unique per organization.
* grand_total = sub_total + tax_amount (no discounts or shipping).
* ``returned_quantity`` on an item never exceeds ``quantity``.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString
from ledger_kernel.domain.money import ZERO
from ledger_modules.purchasing.models import PurchaseStatus
from ledger_modules.sales.models import PaymentStatus


class PurchaseModel(OrganizationScoped, TrackedBase):
    """A purchase of stock from a supplier."""

    __tablename__ = "purchases"

    __table_args__ = (
        UniqueConstraint("organization_id", "purchase_number", name="uq_purchases_org_number"),
        Index("idx_purchases_supplier", "supplier_id"),
        Index("idx_purchases_org_status", "organization_id", "status"),
    )

    purchase_number: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("suppliers.id"), nullable=False
    )
    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)
    sub_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    grand_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.UNPAID.value
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PurchaseStatus.RECEIVED.value
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    items: Mapped[list["PurchaseItemModel"]] = relationship(
        "PurchaseItemModel",
        back_populates="purchase",
        cascade="all, delete-orphan",
        order_by="PurchaseItemModel.line_no",
    )

    @property
    def is_cancelled(self) -> bool:
        return self.status == PurchaseStatus.CANCELLED.value

    def snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "purchase_number": self.purchase_number,
            "supplier_id": str(self.supplier_id),
            "branch_id": str(self.branch_id),
            "purchase_date": self.purchase_date.isoformat() if self.purchase_date else None,
            "items": [item.snapshot() for item in self.items],
            "sub_total": str(self.sub_total),
            "tax_amount": str(self.tax_amount),
            "grand_total": str(self.grand_total),
            "paid_amount": str(self.paid_amount),
            "balance": str(self.balance),
            "payment_status": self.payment_status,
            "status": self.status,
            "cancellation_reason": self.cancellation_reason,
        }

    def __repr__(self) -> str:
        return f"<PurchaseModel {self.purchase_number}: {self.grand_total} ({self.status})>"


class PurchaseItemModel(TrackedBase):
    """One product line on a purchase."""

    __tablename__ = "purchase_items"

    __table_args__ = (
        Index("idx_purchase_items_purchase", "purchase_id"),
    )

    purchase_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    returned_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price: Mapped[Decimal] = mapped_column(nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    line_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    purchase: Mapped[PurchaseModel] = relationship(PurchaseModel, back_populates="items")

    @property
    def remaining_quantity(self) -> int:
        return self.quantity - (self.returned_quantity or 0)

    def snapshot(self) -> dict:
        return {
            "product_id": str(self.product_id),
            "quantity": self.quantity,
            "returned_quantity": self.returned_quantity,
            "price": str(self.price),
            "tax_rate": str(self.tax_rate),
            "line_total": str(self.line_total),
        }
