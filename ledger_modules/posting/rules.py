"""
Posting rules -- pure document totals and event-to-lines mapping.

Responsibility:
    Compute invoice and purchase totals, and build the journal lines each
    business event produces.  No I/O: account ids come in already resolved.

Architecture position:
    Modules > Posting.  Used by the Posting Orchestrator, the Rebooking
    Manager and the Backfill service, so every path posts identical lines
    for identical documents.

Posting map:

    Event                    Debit                       Credit
    -----------------------  --------------------------  --------------------------
    Invoice                  AR (customer) = grand       Sales = grand - tax
                                                         Tax Payable = tax (if > 0)
      + cost of goods sold   COGS = cost                 Inventory = cost
    Purchase                 Inventory = grand           AP (supplier) = grand
    Purchase return          AP (supplier) = amount      Inventory = amount
    Payment inflow           Cash/Bank/UPI/Card          AR (customer)
    Payment outflow          AP (supplier)               Cash/Bank/UPI/Card
    Adjustment (add)         Inventory                   Inventory Gain
    Adjustment (subtract)    Inventory Shrinkage         Inventory

Invariants enforced:
    - Every built line set balances; zero-amount lines are dropped so the
      Journal Line Store never sees an empty side.
    - Totals are rounded to cents once, at document level.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Sequence
from uuid import UUID

from ledger_kernel.domain.dtos import AccountRole, LineSpec
from ledger_kernel.domain.money import ZERO, round_money
from ledger_kernel.exceptions import ValidationError
from ledger_modules.inventory.models import AdjustmentType
from ledger_modules.posting.models import (
    DocumentTotals,
    InvoiceItemInput,
    ItemTotals,
    PurchaseItemInput,
)
from ledger_modules.sales.models import PaymentStatus

_HUNDRED = Decimal("100")

INVOICE_ROLES = (AccountRole.ACCOUNTS_RECEIVABLE, AccountRole.SALES, AccountRole.TAX_PAYABLE)
COGS_ROLES = (AccountRole.COGS, AccountRole.INVENTORY)
PURCHASE_ROLES = (AccountRole.INVENTORY, AccountRole.ACCOUNTS_PAYABLE)
ADJUSTMENT_ROLES = {
    AdjustmentType.ADD: (AccountRole.INVENTORY, AccountRole.INVENTORY_GAIN),
    AdjustmentType.SUBTRACT: (AccountRole.INVENTORY_SHRINKAGE, AccountRole.INVENTORY),
}


# =========================================================================
# Totals
# =========================================================================


def _check_item(quantity: int, price: Decimal, tax_rate: Decimal) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError(f"Item quantity must be a positive integer, got {quantity!r}", field="quantity")
    if price < ZERO:
        raise ValidationError("Item price cannot be negative", field="price")
    if tax_rate < ZERO:
        raise ValidationError("Item tax rate cannot be negative", field="tax_rate")


def invoice_totals(
    items: Sequence[InvoiceItemInput],
    discount: Decimal = ZERO,
    shipping_charges: Decimal = ZERO,
) -> DocumentTotals:
    """
    grand = sub_total - item discounts - discount + shipping + tax, where
    tax = Sum(tax_rate / 100 x (price x quantity - item discount)).

    Raises:
        ValidationError: no items, invalid item values, negative document
            discount or shipping, or a non-positive grand total.
    """
    if not items:
        raise ValidationError("An invoice needs at least one item", field="items")
    if discount < ZERO:
        raise ValidationError("Discount cannot be negative", field="discount")
    if shipping_charges < ZERO:
        raise ValidationError("Shipping charges cannot be negative", field="shipping_charges")

    sub_total = ZERO
    item_discount = ZERO
    tax = ZERO
    per_item = []
    for item in items:
        _check_item(item.quantity, item.price, item.tax_rate)
        line_total = item.price * item.quantity
        if item.discount < ZERO or item.discount > line_total:
            raise ValidationError(
                "Item discount must be between zero and the line total", field="discount"
            )
        item_tax = item.tax_rate / _HUNDRED * (line_total - item.discount)
        sub_total += line_total
        item_discount += item.discount
        tax += item_tax
        per_item.append(ItemTotals(line_total=round_money(line_total), tax=round_money(item_tax)))

    tax_amount = round_money(tax)
    grand_total = round_money(sub_total - item_discount - discount + shipping_charges + tax)
    if grand_total <= ZERO or grand_total < tax_amount:
        raise ValidationError("Invoice total must be positive", field="discount")
    return DocumentTotals(
        sub_total=round_money(sub_total),
        item_discount=round_money(item_discount),
        tax_amount=tax_amount,
        discount=round_money(discount),
        shipping_charges=round_money(shipping_charges),
        grand_total=grand_total,
        items=tuple(per_item),
    )


def purchase_totals(items: Sequence[PurchaseItemInput]) -> DocumentTotals:
    """Same rules as invoices without discounts or shipping."""
    if not items:
        raise ValidationError("A purchase needs at least one item", field="items")
    sub_total = ZERO
    tax = ZERO
    per_item = []
    for item in items:
        _check_item(item.quantity, item.price, item.tax_rate)
        line_total = item.price * item.quantity
        item_tax = item.tax_rate / _HUNDRED * line_total
        sub_total += line_total
        tax += item_tax
        per_item.append(ItemTotals(line_total=round_money(line_total), tax=round_money(item_tax)))

    grand_total = round_money(sub_total + tax)
    if grand_total <= ZERO:
        raise ValidationError("Purchase total must be positive", field="items")
    return DocumentTotals(
        sub_total=round_money(sub_total),
        item_discount=ZERO,
        tax_amount=round_money(tax),
        discount=ZERO,
        shipping_charges=ZERO,
        grand_total=grand_total,
        items=tuple(per_item),
    )


def purchase_return_amount(price: Decimal, quantity: int, tax_rate: Decimal) -> Decimal:
    """Price x quantity grossed up by the item's tax rate."""
    return round_money(price * quantity * (1 + tax_rate / _HUNDRED))


def payment_status_after(paid_amount: Decimal, balance: Decimal) -> str:
    return PaymentStatus.derive(paid_amount, balance).value


# =========================================================================
# Lines
# =========================================================================


def _nonzero(lines: list[LineSpec]) -> tuple[LineSpec, ...]:
    return tuple(line for line in lines if line.debit != ZERO or line.credit != ZERO)


def invoice_lines(
    accounts: Mapping[AccountRole, UUID],
    customer_id: UUID,
    totals: DocumentTotals,
    description: str = "",
    cost_of_goods_sold: Decimal = ZERO,
) -> tuple[LineSpec, ...]:
    lines = [
        LineSpec.dr(
            accounts[AccountRole.ACCOUNTS_RECEIVABLE],
            totals.grand_total,
            description,
            customer_id=customer_id,
        ),
        LineSpec.cr(accounts[AccountRole.SALES], totals.net_of_tax, description),
    ]
    if totals.tax_amount > ZERO:
        lines.append(LineSpec.cr(accounts[AccountRole.TAX_PAYABLE], totals.tax_amount, description))
    cost = round_money(cost_of_goods_sold)
    if cost > ZERO:
        lines.append(LineSpec.dr(accounts[AccountRole.COGS], cost, f"{description} cost of goods sold"))
        lines.append(LineSpec.cr(accounts[AccountRole.INVENTORY], cost, f"{description} cost of goods sold"))
    return _nonzero(lines)


def purchase_lines(
    accounts: Mapping[AccountRole, UUID],
    supplier_id: UUID,
    grand_total: Decimal,
    description: str = "",
) -> tuple[LineSpec, ...]:
    return _nonzero([
        LineSpec.dr(accounts[AccountRole.INVENTORY], grand_total, description),
        LineSpec.cr(
            accounts[AccountRole.ACCOUNTS_PAYABLE], grand_total, description,
            supplier_id=supplier_id,
        ),
    ])


def purchase_return_lines(
    accounts: Mapping[AccountRole, UUID],
    supplier_id: UUID,
    amount: Decimal,
    description: str = "",
) -> tuple[LineSpec, ...]:
    return _nonzero([
        LineSpec.dr(
            accounts[AccountRole.ACCOUNTS_PAYABLE], amount, description,
            supplier_id=supplier_id,
        ),
        LineSpec.cr(accounts[AccountRole.INVENTORY], amount, description),
    ])


def payment_inflow_lines(
    cash_account_id: UUID,
    receivable_account_id: UUID,
    customer_id: UUID,
    amount: Decimal,
    description: str = "",
) -> tuple[LineSpec, ...]:
    return _nonzero([
        LineSpec.dr(cash_account_id, amount, description),
        LineSpec.cr(receivable_account_id, amount, description, customer_id=customer_id),
    ])


def payment_outflow_lines(
    payable_account_id: UUID,
    cash_account_id: UUID,
    supplier_id: UUID,
    amount: Decimal,
    description: str = "",
) -> tuple[LineSpec, ...]:
    return _nonzero([
        LineSpec.dr(payable_account_id, amount, description, supplier_id=supplier_id),
        LineSpec.cr(cash_account_id, amount, description),
    ])


def adjustment_lines(
    accounts: Mapping[AccountRole, UUID],
    adjustment_type: AdjustmentType,
    cost_value: Decimal,
    description: str = "",
) -> tuple[LineSpec, ...]:
    """Empty when the cost value is zero: a quantity-only adjustment posts nothing."""
    if round_money(cost_value) <= ZERO:
        return ()
    debit_role, credit_role = ADJUSTMENT_ROLES[AdjustmentType(adjustment_type)]
    return (
        LineSpec.dr(accounts[debit_role], cost_value, description),
        LineSpec.cr(accounts[credit_role], cost_value, description),
    )
