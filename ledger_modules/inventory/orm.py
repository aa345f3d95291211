"""
Inventory ORM Models (``ledger_modules.inventory.orm``).

Responsibility
--------------
Persistence for products, branch stock levels and stock adjustments.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``.

Invariants enforced
-------------------
* One ``BranchInventoryModel`` row per (product, branch)
  (``uq_branch_inventory_product_branch``).
* Quantities never go negative (CHECK constraint, and checked earlier by
  ``StockLedger`` so callers get ``InsufficientStockError``).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString
from ledger_kernel.domain.money import ZERO


# ---------------------------------------------------------------------------
# 1. ProductModel
# ---------------------------------------------------------------------------


class ProductModel(OrganizationScoped, TrackedBase):
    """
    A stocked product.

    ``purchase_price`` is the latest price paid; it values stock
    adjustments and (optionally) cost of goods sold.
    """

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("organization_id", "sku", name="uq_products_org_sku"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    purchase_price: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    selling_price: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    def __repr__(self) -> str:
        return f"<ProductModel {self.sku}: {self.name}>"


# ---------------------------------------------------------------------------
# 2. BranchInventoryModel
# ---------------------------------------------------------------------------


class BranchInventoryModel(OrganizationScoped, TrackedBase):
    """Quantity of one product held at one branch."""

    __tablename__ = "branch_inventory"

    __table_args__ = (
        UniqueConstraint("product_id", "branch_id", name="uq_branch_inventory_product_branch"),
        CheckConstraint("quantity >= 0", name="chk_branch_inventory_non_negative"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<BranchInventoryModel {self.product_id}@{self.branch_id}: {self.quantity}>"


# ---------------------------------------------------------------------------
# 3. StockAdjustmentModel
# ---------------------------------------------------------------------------


class StockAdjustmentModel(OrganizationScoped, TrackedBase):
    """
    A manual stock correction.

    ``cost_value`` = quantity x product purchase price at the time of the
    adjustment.  An adjustment with zero cost value has no posting.
    """

    __tablename__ = "stock_adjustments"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_stock_adjustment_positive"),
        Index("idx_stock_adjustments_product", "product_id"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    adjustment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    cost_value: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    def snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "product_id": str(self.product_id),
            "branch_id": str(self.branch_id),
            "quantity": self.quantity,
            "adjustment_type": self.adjustment_type,
            "reason": self.reason,
            "cost_value": str(self.cost_value),
        }
