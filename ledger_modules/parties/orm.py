"""
Parties ORM Models (``ledger_modules.parties.orm``).

Responsibility
--------------
Persistence for customers and suppliers.  ``outstanding_balance`` is a
denormalized cache of what the ledger says the party owes (customer) or is
owed (supplier).  It is known to drift, which is why the integrity engine
compares it against the journal.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``.
MUST NOT be imported by ``ledger_kernel``.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import OrganizationScoped, TrackedBase
from ledger_kernel.domain.money import ZERO, round_money


# ---------------------------------------------------------------------------
# 1. CustomerModel
# ---------------------------------------------------------------------------


class CustomerModel(OrganizationScoped, TrackedBase):
    """
    A customer who buys on account.

    Guarantees:
        - outstanding_balance and total_purchases start at zero.
        - Both are only changed through ``adjust_outstanding`` /
          ``adjust_total_purchases`` so every change is rounded to cents.
    """

    __tablename__ = "customers"

    __table_args__ = (
        Index("idx_customers_org_name", "organization_id", "name"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    outstanding_balance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_purchases: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def adjust_outstanding(self, delta: Decimal) -> None:
        self.outstanding_balance = round_money((self.outstanding_balance or ZERO) + delta)

    def adjust_total_purchases(self, delta: Decimal) -> None:
        self.total_purchases = round_money((self.total_purchases or ZERO) + delta)

    def snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "outstanding_balance": str(self.outstanding_balance),
            "total_purchases": str(self.total_purchases),
        }

    def __repr__(self) -> str:
        return f"<CustomerModel {self.name}: outstanding={self.outstanding_balance}>"


# ---------------------------------------------------------------------------
# 2. SupplierModel
# ---------------------------------------------------------------------------


class SupplierModel(OrganizationScoped, TrackedBase):
    """A supplier the organization buys from.  Balance is what we owe them."""

    __tablename__ = "suppliers"

    __table_args__ = (
        Index("idx_suppliers_org_name", "organization_id", "name"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    outstanding_balance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def adjust_outstanding(self, delta: Decimal) -> None:
        self.outstanding_balance = round_money((self.outstanding_balance or ZERO) + delta)

    def snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "outstanding_balance": str(self.outstanding_balance),
        }

    def __repr__(self) -> str:
        return f"<SupplierModel {self.name}: outstanding={self.outstanding_balance}>"
