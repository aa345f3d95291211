"""
Posting Inputs (``ledger_modules.posting.models``).

Responsibility
--------------
Frozen value objects describing what a caller asks the Posting
Orchestrator and the Rebooking Manager to do, plus computed document
totals.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* Monetary fields are coerced through ``to_decimal`` (floats rejected).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from ledger_kernel.domain.money import ZERO, to_decimal
from ledger_modules.inventory.models import AdjustmentType


def _coerce(obj, *names: str) -> None:
    for name in names:
        object.__setattr__(obj, name, to_decimal(getattr(obj, name)))


# =========================================================================
# Sales
# =========================================================================


@dataclass(frozen=True)
class InvoiceItemInput:
    product_id: UUID
    quantity: int
    price: Decimal
    tax_rate: Decimal = ZERO
    discount: Decimal = ZERO

    def __post_init__(self) -> None:
        _coerce(self, "price", "tax_rate", "discount")


@dataclass(frozen=True)
class InvoiceInput:
    """A new invoice.  ``draft`` invoices post nothing until issued."""

    invoice_number: str
    customer_id: UUID
    branch_id: UUID
    invoice_date: date
    items: tuple[InvoiceItemInput, ...]
    discount: Decimal = ZERO
    shipping_charges: Decimal = ZERO
    paid_amount: Decimal = ZERO
    payment_method: str = "cash"
    due_date: date | None = None
    notes: str = ""
    draft: bool = False

    def __post_init__(self) -> None:
        _coerce(self, "discount", "shipping_charges", "paid_amount")
        object.__setattr__(self, "items", tuple(self.items))


@dataclass(frozen=True)
class InvoiceUpdate:
    """
    Changes to an invoice.  ``None`` means unchanged.

    ``items``, ``discount`` and ``shipping_charges`` are financial fields;
    changing any of them rebooks the invoice.
    """

    items: tuple[InvoiceItemInput, ...] | None = None
    discount: Decimal | None = None
    shipping_charges: Decimal | None = None
    invoice_number: str | None = None
    due_date: date | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        if self.items is not None:
            object.__setattr__(self, "items", tuple(self.items))
        for name in ("discount", "shipping_charges"):
            if getattr(self, name) is not None:
                _coerce(self, name)

    @property
    def is_financial(self) -> bool:
        return (
            self.items is not None
            or self.discount is not None
            or self.shipping_charges is not None
        )


# =========================================================================
# Purchasing
# =========================================================================


@dataclass(frozen=True)
class PurchaseItemInput:
    product_id: UUID
    quantity: int
    price: Decimal
    tax_rate: Decimal = ZERO

    def __post_init__(self) -> None:
        _coerce(self, "price", "tax_rate")


@dataclass(frozen=True)
class PurchaseInput:
    purchase_number: str
    supplier_id: UUID
    branch_id: UUID
    purchase_date: date
    items: tuple[PurchaseItemInput, ...]
    paid_amount: Decimal = ZERO
    payment_method: str = "cash"
    notes: str = ""

    def __post_init__(self) -> None:
        _coerce(self, "paid_amount")
        object.__setattr__(self, "items", tuple(self.items))


@dataclass(frozen=True)
class PurchaseUpdate:
    """Changes to a purchase.  Only ``items`` is financial."""

    items: tuple[PurchaseItemInput, ...] | None = None
    purchase_number: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        if self.items is not None:
            object.__setattr__(self, "items", tuple(self.items))

    @property
    def is_financial(self) -> bool:
        return self.items is not None


@dataclass(frozen=True)
class PurchaseReturnLine:
    """Return ``quantity`` units of ``product_id`` to the supplier."""

    product_id: UUID
    quantity: int


# =========================================================================
# Inventory
# =========================================================================


@dataclass(frozen=True)
class StockAdjustmentInput:
    product_id: UUID
    branch_id: UUID
    quantity: int
    adjustment_type: AdjustmentType
    reason: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "adjustment_type", AdjustmentType(self.adjustment_type))


# =========================================================================
# Totals
# =========================================================================


@dataclass(frozen=True)
class ItemTotals:
    """Computed figures for one document line."""

    line_total: Decimal
    tax: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    """Stored totals of an invoice or purchase, rounded to cents."""

    sub_total: Decimal
    item_discount: Decimal
    tax_amount: Decimal
    discount: Decimal
    shipping_charges: Decimal
    grand_total: Decimal
    items: tuple[ItemTotals, ...] = field(default_factory=tuple)

    @property
    def net_of_tax(self) -> Decimal:
        return self.grand_total - self.tax_amount
