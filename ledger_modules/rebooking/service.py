"""
RebookingManager -- edits, cancellations and returns of posted documents.

Responsibility:
    Undo and redo the effects of an already-posted invoice or purchase when
    a financial field changes, write reversing postings on cancellation,
    handle partial purchase returns, and refuse hard deletes.

Architecture position:
    Modules > Rebooking.  Sits on top of the Posting Orchestrator and reuses
    its builders, stock movements and audit writer, so a re-posted document
    produces exactly what a fresh one would.

Invariants enforced:
    - Every check runs before the first mutation (stock reversibility,
      over-payment, cancelled state).  Anything raised later still aborts
      the caller's transaction as a whole.
    - A financial edit deletes the old posting and writes a new one; a
      cancellation never deletes: it writes the mirrored reversing posting.
    - Cancelled documents are terminal (DocumentCancelledError).
    - Posted documents are never hard-deleted (HardDeleteForbiddenError).

Failure modes:
    - StockConsumedError: purchased stock already sold or moved.
    - EditBlockedByPaymentError: financial edit or cancel of a purchase
      with payments.
    - PaymentExceedsTotalError: an invoice edit would drop the total below
      what was already paid.

Audit relevance:
    Invoice edits write UPDATE_DRAFT / UPDATE_FINANCIAL / UPDATE_INFO audit
    rows and cancellation writes CANCEL, each with before/after snapshots.
"""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from ledger_kernel.domain.context import RequestContext
from ledger_kernel.domain.dtos import ReferenceType
from ledger_kernel.domain.money import ZERO, round_money
from ledger_kernel.exceptions import (
    DocumentCancelledError,
    EditBlockedByPaymentError,
    HardDeleteForbiddenError,
    PaymentExceedsTotalError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_modules.posting import rules
from ledger_modules.posting.models import (
    InvoiceItemInput,
    InvoiceUpdate,
    PurchaseReturnLine,
    PurchaseUpdate,
)
from ledger_modules.posting.service import PostingOrchestrator
from ledger_modules.purchasing.models import PurchaseStatus
from ledger_modules.purchasing.orm import PurchaseItemModel, PurchaseModel
from ledger_modules.sales.models import AuditAction, InvoiceStatus
from ledger_modules.sales.orm import InvoiceModel

logger = get_logger("modules.rebooking")

_DELETABLE_TYPES = ("invoice", "purchase", "payment", "adjustment")


def _append_note(notes: str | None, text: str) -> str:
    return f"{notes}\n{text}" if notes else text


class RebookingManager:
    """
    Reversal and re-posting of business documents.

    Contract:
        Runs in the caller's transaction through the orchestrator's session.
        Returns the updated document.
    """

    def __init__(self, orchestrator: PostingOrchestrator):
        self._orchestrator = orchestrator
        self._session = orchestrator.session
        self._clock = orchestrator.clock

    # =========================================================================
    # Invoices
    # =========================================================================

    def update_invoice(
        self, ctx: RequestContext, invoice_id: UUID, changes: InvoiceUpdate,
    ) -> InvoiceModel:
        """
        Apply changes to an invoice.

        Drafts are updated in place.  For issued invoices a change to items,
        discount or shipping restores the old stock, takes the new stock,
        moves the customer balance by the difference and re-posts; other
        fields are updated without touching the ledger.

        Raises:
            DocumentCancelledError: invoice is cancelled.
            PaymentExceedsTotalError: new total below the amount already paid.
            InsufficientStockError: new items exceed branch stock.
        """
        orch = self._orchestrator
        invoice = orch.get_invoice(ctx.organization_id, invoice_id)
        if invoice.is_cancelled:
            raise DocumentCancelledError("Invoice", str(invoice.id))
        before = invoice.snapshot()

        new_totals = None
        if changes.is_financial:
            items = changes.items if changes.items is not None else self._invoice_item_inputs(invoice)
            new_totals = rules.invoice_totals(
                items,
                changes.discount if changes.discount is not None else invoice.discount,
                changes.shipping_charges
                if changes.shipping_charges is not None
                else invoice.shipping_charges,
            )
            if new_totals.grand_total < invoice.paid_amount:
                raise PaymentExceedsTotalError(
                    str(invoice.id), invoice.paid_amount, new_totals.grand_total,
                )

        if invoice.is_draft:
            if new_totals is not None:
                orch.apply_invoice_items(invoice, items, new_totals, ctx.actor_id)
                invoice.balance = new_totals.grand_total
            self._apply_invoice_info(invoice, changes, ctx)
            orch.write_invoice_audit(ctx, invoice, AuditAction.UPDATE_DRAFT, before=before)
            return invoice

        if new_totals is None:
            self._apply_invoice_info(invoice, changes, ctx)
            orch.write_invoice_audit(ctx, invoice, AuditAction.UPDATE_INFO, before=before)
            logger.info("invoice_info_updated", extra={"invoice_id": str(invoice.id)})
            return invoice

        customer = orch.get_customer(ctx.organization_id, invoice.customer_id)
        old_total = invoice.grand_total

        orch.restore_invoice_stock(invoice, ctx.actor_id)
        customer.adjust_outstanding(-old_total)
        customer.adjust_total_purchases(-old_total)
        orch.journal.delete_reference(ctx.organization_id, ReferenceType.INVOICE, invoice.id)

        orch.apply_invoice_items(invoice, items, new_totals, ctx.actor_id)
        self._session.flush()
        invoice.balance = round_money(invoice.grand_total - invoice.paid_amount)
        invoice.payment_status = rules.payment_status_after(invoice.paid_amount, invoice.balance)
        self._apply_invoice_info(invoice, changes, ctx)

        orch.take_invoice_stock(invoice)
        customer.adjust_outstanding(invoice.grand_total)
        customer.adjust_total_purchases(invoice.grand_total)
        orch.post(orch.build_invoice_posting(invoice, ctx.actor_id))
        orch.write_invoice_audit(ctx, invoice, AuditAction.UPDATE_FINANCIAL, before=before)

        logger.info(
            "invoice_rebooked",
            extra={
                "invoice_id": str(invoice.id),
                "old_total": str(old_total),
                "new_total": str(invoice.grand_total),
            },
        )
        return invoice

    def cancel_invoice(
        self,
        ctx: RequestContext,
        invoice_id: UUID,
        reason: str,
        *,
        restock: bool = True,
    ) -> InvoiceModel:
        """
        Cancel an invoice with a reversing posting under its own reference.

        Drafts are cancelled by status change only.  An active installment
        plan on the invoice is marked defaulted.
        """
        orch = self._orchestrator
        invoice = orch.get_invoice(ctx.organization_id, invoice_id)
        if invoice.is_cancelled:
            raise DocumentCancelledError("Invoice", str(invoice.id))
        before = invoice.snapshot()

        if not invoice.is_draft:
            customer = orch.get_customer(ctx.organization_id, invoice.customer_id)
            if restock:
                orch.restore_invoice_stock(invoice, ctx.actor_id)
            customer.adjust_outstanding(-invoice.grand_total)
            customer.adjust_total_purchases(-invoice.grand_total)
            orch.journal.post_reversal(
                ctx.organization_id,
                ReferenceType.INVOICE,
                invoice.id,
                entry_date=self._clock.today(),
                actor_id=ctx.actor_id,
                description=f"Cancellation of invoice {invoice.invoice_number}",
            )
            orch.installments.default_plan(ctx.organization_id, invoice.id)

        invoice.status = InvoiceStatus.CANCELLED.value
        if reason:
            invoice.notes = _append_note(invoice.notes, f"Cancelled: {reason}")
        invoice.updated_by_id = ctx.actor_id
        orch.write_invoice_audit(ctx, invoice, AuditAction.CANCEL, before=before)

        logger.info(
            "invoice_cancelled",
            extra={
                "invoice_id": str(invoice.id),
                "grand_total": str(invoice.grand_total),
                "restock": restock,
                "was_draft": before["status"] == InvoiceStatus.DRAFT.value,
            },
        )
        return invoice

    def _invoice_item_inputs(self, invoice: InvoiceModel) -> tuple[InvoiceItemInput, ...]:
        return tuple(
            InvoiceItemInput(
                product_id=item.product_id,
                quantity=item.quantity,
                price=item.price,
                tax_rate=item.tax_rate,
                discount=item.discount,
            )
            for item in invoice.items
        )

    def _apply_invoice_info(self, invoice: InvoiceModel, changes: InvoiceUpdate, ctx: RequestContext) -> None:
        if changes.invoice_number is not None:
            invoice.invoice_number = changes.invoice_number
        if changes.due_date is not None:
            invoice.due_date = changes.due_date
        if changes.notes is not None:
            invoice.notes = changes.notes
        invoice.updated_by_id = ctx.actor_id
        self._session.flush()

    # =========================================================================
    # Purchases
    # =========================================================================

    def update_purchase(
        self, ctx: RequestContext, purchase_id: UUID, changes: PurchaseUpdate,
    ) -> PurchaseModel:
        """
        Apply changes to a purchase.  A new item list reverses the old stock
        and supplier balance, deletes the old posting and re-posts.

        Raises:
            DocumentCancelledError: purchase is cancelled.
            EditBlockedByPaymentError: financial change on a purchase with payments.
            StockConsumedError: old stock no longer on hand.
        """
        orch = self._orchestrator
        purchase = orch.get_purchase(ctx.organization_id, purchase_id)
        if purchase.is_cancelled:
            raise DocumentCancelledError("Purchase", str(purchase.id))

        if changes.is_financial:
            if purchase.paid_amount > ZERO:
                raise EditBlockedByPaymentError("Purchase", str(purchase.id), purchase.paid_amount)
            if any(item.returned_quantity for item in purchase.items):
                raise ValidationError(
                    "Purchases with returned items cannot change their items", field="items"
                )
            new_totals = rules.purchase_totals(changes.items)
            self._ensure_purchase_reversible(purchase)

            supplier = orch.get_supplier(ctx.organization_id, purchase.supplier_id)
            old_total = purchase.grand_total
            self._release_purchase_stock(purchase)
            supplier.adjust_outstanding(-old_total)
            orch.journal.delete_reference(ctx.organization_id, ReferenceType.PURCHASE, purchase.id)

            orch.apply_purchase_items(purchase, changes.items, new_totals, ctx.actor_id)
            self._session.flush()
            purchase.balance = round_money(purchase.grand_total - purchase.paid_amount)
            purchase.payment_status = rules.payment_status_after(purchase.paid_amount, purchase.balance)

            orch.receive_purchase_stock(purchase, ctx.actor_id)
            supplier.adjust_outstanding(purchase.grand_total)
            orch.post(orch.build_purchase_posting(purchase, ctx.actor_id))
            logger.info(
                "purchase_rebooked",
                extra={
                    "purchase_id": str(purchase.id),
                    "old_total": str(old_total),
                    "new_total": str(purchase.grand_total),
                },
            )

        if changes.purchase_number is not None:
            purchase.purchase_number = changes.purchase_number
        if changes.notes is not None:
            purchase.notes = changes.notes
        purchase.updated_by_id = ctx.actor_id
        self._session.flush()
        return purchase

    def cancel_purchase(self, ctx: RequestContext, purchase_id: UUID, reason: str) -> PurchaseModel:
        """
        Cancel a purchase: stock out, supplier balance down, reversing
        posting written as ``purchase_return``.

        Raises:
            ValidationError: no reason given.
            EditBlockedByPaymentError: purchase has payments.
            StockConsumedError: purchased stock no longer on hand.
        """
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required", field="reason")
        orch = self._orchestrator
        purchase = orch.get_purchase(ctx.organization_id, purchase_id)
        if purchase.is_cancelled:
            raise DocumentCancelledError("Purchase", str(purchase.id))
        if purchase.paid_amount > ZERO:
            raise EditBlockedByPaymentError("Purchase", str(purchase.id), purchase.paid_amount)
        self._ensure_purchase_reversible(purchase)

        supplier = orch.get_supplier(ctx.organization_id, purchase.supplier_id)
        self._release_purchase_stock(purchase)
        supplier.adjust_outstanding(-purchase.grand_total)

        today = self._clock.today()
        if any(item.returned_quantity for item in purchase.items):
            # Earlier returns already reversed part of the posting.
            orch.post(orch.build_purchase_return_posting(purchase, purchase.grand_total, ctx.actor_id, today))
        else:
            orch.journal.post_reversal(
                ctx.organization_id,
                ReferenceType.PURCHASE,
                purchase.id,
                entry_date=today,
                actor_id=ctx.actor_id,
                reversal_type=ReferenceType.PURCHASE_RETURN,
                description=f"Cancellation of purchase {purchase.purchase_number}",
            )

        purchase.status = PurchaseStatus.CANCELLED.value
        purchase.cancellation_reason = reason
        purchase.updated_by_id = ctx.actor_id
        self._session.flush()

        logger.info(
            "purchase_cancelled",
            extra={"purchase_id": str(purchase.id), "grand_total": str(purchase.grand_total)},
        )
        return purchase

    def return_purchase_items(
        self,
        ctx: RequestContext,
        purchase_id: UUID,
        returns: Sequence[PurchaseReturnLine],
    ) -> PurchaseModel:
        """
        Return part of a purchase to the supplier.

        Each returned unit is valued at price grossed up by its tax rate.
        Posts Dr AP / Cr Inventory as ``purchase_return``.  A purchase with
        nothing left becomes cancelled.

        Raises:
            ValidationError: empty return, unknown product, or more than the
                remaining purchased quantity.
            StockConsumedError: branch no longer holds the returned units.
        """
        if not returns:
            raise ValidationError("Nothing to return", field="returns")
        orch = self._orchestrator
        purchase = orch.get_purchase(ctx.organization_id, purchase_id)
        if purchase.is_cancelled:
            raise DocumentCancelledError("Purchase", str(purchase.id))

        remaining = self._remaining_by_product(purchase)
        requested: dict[UUID, int] = {}
        for line in returns:
            if line.product_id not in remaining:
                raise ValidationError(
                    f"Product {line.product_id} is not on purchase {purchase.purchase_number}",
                    field="product_id",
                )
            if not isinstance(line.quantity, int) or line.quantity <= 0:
                raise ValidationError("Return quantity must be a positive integer", field="quantity")
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
        for product_id, quantity in requested.items():
            if quantity > remaining[product_id]:
                raise ValidationError(
                    f"Return quantity {quantity} of product {product_id} exceeds remaining {remaining[product_id]}",
                    field="quantity",
                )
            orch.stock.ensure_reversible(ctx.organization_id, product_id, purchase.branch_id, quantity)
        planned = self._plan_return(purchase, requested)

        supplier = orch.get_supplier(ctx.organization_id, purchase.supplier_id)
        total = ZERO
        for item, quantity in planned:
            orch.stock.decrement(ctx.organization_id, item.product_id, purchase.branch_id, quantity)
            item.returned_quantity = (item.returned_quantity or 0) + quantity
            line_value = round_money(item.price * quantity)
            amount = rules.purchase_return_amount(item.price, quantity, item.tax_rate)
            purchase.sub_total = round_money(purchase.sub_total - line_value)
            purchase.tax_amount = round_money(purchase.tax_amount - (amount - line_value))
            total += amount

        purchase.grand_total = round_money(purchase.grand_total - total)
        purchase.balance = round_money(purchase.grand_total - purchase.paid_amount)
        purchase.payment_status = rules.payment_status_after(purchase.paid_amount, purchase.balance)
        supplier.adjust_outstanding(-total)
        orch.post(orch.build_purchase_return_posting(purchase, total, ctx.actor_id, self._clock.today()))

        if all(item.remaining_quantity == 0 for item in purchase.items):
            purchase.status = PurchaseStatus.CANCELLED.value
            purchase.cancellation_reason = "All items returned"
        purchase.updated_by_id = ctx.actor_id
        self._session.flush()

        logger.info(
            "purchase_items_returned",
            extra={
                "purchase_id": str(purchase.id),
                "amount": str(total),
                "status": purchase.status,
            },
        )
        return purchase

    @staticmethod
    def _remaining_by_product(purchase: PurchaseModel) -> dict[UUID, int]:
        """Units still held per product; a product may sit on several lines."""
        remaining: dict[UUID, int] = {}
        for item in purchase.items:
            remaining[item.product_id] = remaining.get(item.product_id, 0) + item.remaining_quantity
        return remaining

    @staticmethod
    def _plan_return(
        purchase: PurchaseModel, requested: dict[UUID, int],
    ) -> list[tuple[PurchaseItemModel, int]]:
        # Lines of one product are drawn down in line order.
        planned = []
        for product_id, quantity in requested.items():
            for item in purchase.items:
                if quantity == 0:
                    break
                if item.product_id != product_id or item.remaining_quantity == 0:
                    continue
                take = min(quantity, item.remaining_quantity)
                planned.append((item, take))
                quantity -= take
        return planned

    def _ensure_purchase_reversible(self, purchase: PurchaseModel) -> None:
        for product_id, quantity in self._remaining_by_product(purchase).items():
            if quantity > 0:
                self._orchestrator.stock.ensure_reversible(
                    purchase.organization_id, product_id, purchase.branch_id, quantity,
                )

    def _release_purchase_stock(self, purchase: PurchaseModel) -> None:
        for product_id, quantity in self._remaining_by_product(purchase).items():
            if quantity > 0:
                self._orchestrator.stock.decrement(
                    purchase.organization_id, product_id, purchase.branch_id, quantity,
                )

    # =========================================================================
    # Deletion
    # =========================================================================

    def delete_document(self, ctx: RequestContext, document_type: str, document_id: UUID) -> None:
        """
        Hard delete.  Only never-posted draft invoices qualify.

        Raises:
            DocumentCancelledError: document is cancelled.
            HardDeleteForbiddenError: document is posted.
        """
        if document_type not in _DELETABLE_TYPES:
            raise ValidationError(f"Unknown document type: {document_type}", field="document_type")
        orch = self._orchestrator
        loader = {
            "invoice": orch.get_invoice,
            "purchase": orch.get_purchase,
            "payment": orch.get_payment,
            "adjustment": orch.get_adjustment,
        }[document_type]
        document = loader(ctx.organization_id, document_id)

        if getattr(document, "is_cancelled", False):
            raise DocumentCancelledError(document_type.capitalize(), str(document_id))
        if not (isinstance(document, InvoiceModel) and document.is_draft):
            logger.warning(
                "hard_delete_blocked",
                extra={"document_type": document_type, "document_id": str(document_id)},
            )
            raise HardDeleteForbiddenError(document_type.capitalize(), str(document_id))

        self._session.delete(document)
        self._session.flush()
        logger.info(
            "draft_invoice_deleted",
            extra={"invoice_id": str(document_id), "actor_id": str(ctx.actor_id)},
        )
