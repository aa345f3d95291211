"""
PostingOrchestrator -- business events to balanced postings.

Responsibility:
    For each business event (invoice, purchase, payment, stock adjustment,
    stock transfer) compute the journal lines and, in the same transaction,
    apply the operational side effects: branch stock, customer/supplier
    running balances, invoice/purchase payment state, installment plans and
    the invoice audit trail.

Architecture position:
    Modules > Posting.  Composes AccountDirectory, JournalLineStore,
    StockLedger and InstallmentService over one Session.  Consumed by
    callers directly, by the Rebooking Manager (re-posting) and by the
    Backfill service (``build_*_posting`` only, no side effects).

Invariants enforced:
    - Every posting balances (rules + Journal Line Store).
    - A posting is never skipped: a missing chart entry raises
      CriticalAccountMissing and the whole operation aborts.
    - Validation (totals, stock, over-payment) happens before the posting
      is written.  Any error propagates and the caller's transaction rolls
      back everything the operation touched.

Failure modes:
    - ValidationError / PaymentExceedsTotalError: bad input or over-payment.
    - DocumentCancelledError: payment against a cancelled document.
    - InsufficientStockError: stock cannot cover an invoice or adjustment.
    - NotFoundError: referenced customer, supplier, product or document
      missing in the organization.
    - CriticalAccountMissing: chart misconfigured.

Audit relevance:
    Postings carry ``created_by_id``; invoices additionally write
    InvoiceAudit rows.  ``invoice_created``, ``purchase_created``,
    ``payment_recorded`` and ``stock_adjusted`` log events carry ids and
    amounts.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import RequestContext
from ledger_kernel.domain.dtos import AccountRole, PostingRequest, ReferenceType
from ledger_kernel.domain.money import ZERO, round_money, to_decimal
from ledger_kernel.exceptions import (
    DocumentCancelledError,
    NotFoundError,
    PaymentExceedsTotalError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.account_directory import AccountCache, AccountDirectory
from ledger_kernel.services.journal_store import JournalLineStore
from ledger_modules.installments.service import InstallmentService
from ledger_modules.inventory.models import AdjustmentType
from ledger_modules.inventory.orm import StockAdjustmentModel
from ledger_modules.inventory.service import StockLedger
from ledger_modules.parties.orm import CustomerModel, SupplierModel
from ledger_modules.payments.models import (
    PaymentDirection,
    PaymentMethod,
    PaymentRecordStatus,
    TransactionMode,
)
from ledger_modules.payments.orm import PaymentModel
from ledger_modules.posting import rules
from ledger_modules.posting.models import (
    DocumentTotals,
    InvoiceInput,
    InvoiceItemInput,
    PurchaseInput,
    PurchaseItemInput,
    StockAdjustmentInput,
)
from ledger_modules.purchasing.models import PurchaseStatus
from ledger_modules.purchasing.orm import PurchaseItemModel, PurchaseModel
from ledger_modules.sales.models import AuditAction, InvoiceStatus, PaymentStatus
from ledger_modules.sales.orm import InvoiceAuditModel, InvoiceItemModel, InvoiceModel

logger = get_logger("modules.posting.orchestrator")


class PostingOrchestrator:
    """
    Maps business events to postings plus their operational side effects.

    Contract:
        Every public method runs inside the caller's transaction, flushes,
        and returns the persisted document.  Nothing is committed here.

    Non-goals:
        - Does NOT undo postings; see ``RebookingManager``.
        - Does NOT perform access control; the RequestContext is trusted.
    """

    def __init__(
        self,
        session: Session,
        settings: LedgerSettings,
        *,
        clock: Clock | None = None,
        on_ledger_changed: Callable[[UUID], None] | None = None,
        account_cache: AccountCache | None = None,
    ):
        self._session = session
        self._settings = settings
        self._clock = clock or SystemClock()
        self.accounts = AccountDirectory(
            session,
            settings.chart,
            auto_create=settings.auto_create_accounts,
            cache=account_cache,
        )
        self.journal = JournalLineStore(session, on_ledger_changed=on_ledger_changed)
        self.stock = StockLedger(session)
        self.installments = InstallmentService(session, clock=self._clock)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    # =========================================================================
    # Lookups
    # =========================================================================

    def _owned(self, model, organization_id: UUID, entity_id: UUID, label: str):
        row = self._session.get(model, entity_id)
        if row is None or row.organization_id != organization_id:
            raise NotFoundError(label, str(entity_id))
        return row

    def get_customer(self, organization_id: UUID, customer_id: UUID) -> CustomerModel:
        return self._owned(CustomerModel, organization_id, customer_id, "Customer")

    def get_supplier(self, organization_id: UUID, supplier_id: UUID) -> SupplierModel:
        return self._owned(SupplierModel, organization_id, supplier_id, "Supplier")

    def get_invoice(self, organization_id: UUID, invoice_id: UUID) -> InvoiceModel:
        return self._owned(InvoiceModel, organization_id, invoice_id, "Invoice")

    def get_purchase(self, organization_id: UUID, purchase_id: UUID) -> PurchaseModel:
        return self._owned(PurchaseModel, organization_id, purchase_id, "Purchase")

    def get_payment(self, organization_id: UUID, payment_id: UUID) -> PaymentModel:
        return self._owned(PaymentModel, organization_id, payment_id, "Payment")

    def get_adjustment(self, organization_id: UUID, adjustment_id: UUID) -> StockAdjustmentModel:
        return self._owned(StockAdjustmentModel, organization_id, adjustment_id, "StockAdjustment")

    def _role_ids(
        self, organization_id: UUID, roles: tuple[AccountRole, ...], actor_id: UUID,
    ) -> dict[AccountRole, UUID]:
        resolved = self.accounts.resolve_many(organization_id, roles, actor_id)
        return {role: account.id for role, account in resolved.items()}

    def _method_role(self, method: str) -> AccountRole:
        try:
            PaymentMethod(method)
            return self._settings.role_for_payment_method(method)
        except ValueError:
            raise ValidationError(f"Unknown payment method: {method}", field="method") from None

    # =========================================================================
    # Posting builders (no side effects)
    # =========================================================================

    def build_invoice_posting(self, invoice: InvoiceModel, actor_id: UUID) -> PostingRequest:
        """The posting an issued invoice carries, from its stored totals."""
        roles = rules.INVOICE_ROLES
        cost = ZERO
        if self._settings.post_cost_of_goods_sold:
            roles = roles + rules.COGS_ROLES
            cost = self._cost_of_goods_sold(invoice)
        accounts = self._role_ids(invoice.organization_id, roles, actor_id)
        totals = DocumentTotals(
            sub_total=invoice.sub_total,
            item_discount=invoice.item_discount,
            tax_amount=invoice.tax_amount,
            discount=invoice.discount,
            shipping_charges=invoice.shipping_charges,
            grand_total=invoice.grand_total,
        )
        return PostingRequest(
            organization_id=invoice.organization_id,
            reference_type=ReferenceType.INVOICE,
            reference_id=invoice.id,
            entry_date=invoice.invoice_date,
            actor_id=actor_id,
            lines=rules.invoice_lines(
                accounts,
                invoice.customer_id,
                totals,
                description=f"Invoice {invoice.invoice_number}",
                cost_of_goods_sold=cost,
            ),
            branch_id=invoice.branch_id,
        )

    def build_purchase_posting(self, purchase: PurchaseModel, actor_id: UUID) -> PostingRequest:
        accounts = self._role_ids(purchase.organization_id, rules.PURCHASE_ROLES, actor_id)
        return PostingRequest(
            organization_id=purchase.organization_id,
            reference_type=ReferenceType.PURCHASE,
            reference_id=purchase.id,
            entry_date=purchase.purchase_date,
            actor_id=actor_id,
            lines=rules.purchase_lines(
                accounts,
                purchase.supplier_id,
                purchase.grand_total,
                description=f"Purchase {purchase.purchase_number}",
            ),
            branch_id=purchase.branch_id,
        )

    def build_payment_posting(self, payment: PaymentModel, actor_id: UUID) -> PostingRequest:
        org = payment.organization_id
        cash_role = self._method_role(payment.method)
        if payment.direction == PaymentDirection.INFLOW.value:
            accounts = self._role_ids(org, (cash_role, AccountRole.ACCOUNTS_RECEIVABLE), actor_id)
            lines = rules.payment_inflow_lines(
                accounts[cash_role],
                accounts[AccountRole.ACCOUNTS_RECEIVABLE],
                payment.customer_id,
                payment.amount,
                description=f"Payment received ({payment.method})",
            )
        else:
            accounts = self._role_ids(org, (AccountRole.ACCOUNTS_PAYABLE, cash_role), actor_id)
            lines = rules.payment_outflow_lines(
                accounts[AccountRole.ACCOUNTS_PAYABLE],
                accounts[cash_role],
                payment.supplier_id,
                payment.amount,
                description=f"Payment made ({payment.method})",
            )
        return PostingRequest(
            organization_id=org,
            reference_type=ReferenceType.PAYMENT,
            reference_id=payment.id,
            entry_date=payment.payment_date,
            actor_id=actor_id,
            lines=lines,
            branch_id=payment.branch_id,
        )

    def build_adjustment_posting(
        self, adjustment: StockAdjustmentModel, actor_id: UUID, entry_date: date | None = None,
    ) -> PostingRequest | None:
        """None for a zero-cost adjustment."""
        if round_money(adjustment.cost_value) <= ZERO:
            return None
        adjustment_type = AdjustmentType(adjustment.adjustment_type)
        accounts = self._role_ids(
            adjustment.organization_id, rules.ADJUSTMENT_ROLES[adjustment_type], actor_id,
        )
        return PostingRequest(
            organization_id=adjustment.organization_id,
            reference_type=ReferenceType.ADJUSTMENT,
            reference_id=adjustment.id,
            entry_date=entry_date or self._clock.today(),
            actor_id=actor_id,
            lines=rules.adjustment_lines(
                accounts,
                adjustment_type,
                adjustment.cost_value,
                description=f"Stock adjustment ({adjustment_type.value}) {adjustment.reason}".strip(),
            ),
            branch_id=adjustment.branch_id,
        )

    def build_purchase_return_posting(
        self, purchase: PurchaseModel, amount: Decimal, actor_id: UUID, entry_date: date,
    ) -> PostingRequest:
        accounts = self._role_ids(purchase.organization_id, rules.PURCHASE_ROLES, actor_id)
        return PostingRequest(
            organization_id=purchase.organization_id,
            reference_type=ReferenceType.PURCHASE_RETURN,
            reference_id=purchase.id,
            entry_date=entry_date,
            actor_id=actor_id,
            lines=rules.purchase_return_lines(
                accounts,
                purchase.supplier_id,
                amount,
                description=f"Return on purchase {purchase.purchase_number}",
            ),
            branch_id=purchase.branch_id,
        )

    def post(self, request: PostingRequest) -> tuple:
        return self.journal.post_lines(request)

    # =========================================================================
    # Invoices
    # =========================================================================

    def create_invoice(self, ctx: RequestContext, data: InvoiceInput) -> InvoiceModel:
        """
        Create an invoice.  Issued invoices post immediately; drafts post
        nothing and touch neither stock nor the customer until issued.

        Raises:
            PaymentExceedsTotalError: ``paid_amount`` above the grand total.
            InsufficientStockError: a branch cannot cover an item.
        """
        customer = self.get_customer(ctx.organization_id, data.customer_id)
        totals = rules.invoice_totals(data.items, data.discount, data.shipping_charges)
        if data.paid_amount < ZERO:
            raise ValidationError("Paid amount cannot be negative", field="paid_amount")
        if data.paid_amount > totals.grand_total:
            raise PaymentExceedsTotalError(
                data.invoice_number, data.paid_amount, totals.grand_total,
            )
        if data.draft and data.paid_amount > ZERO:
            raise ValidationError("Draft invoices cannot carry payments", field="paid_amount")
        for item in data.items:
            self.stock.get_product(ctx.organization_id, item.product_id)

        invoice = InvoiceModel(
            organization_id=ctx.organization_id,
            invoice_number=data.invoice_number,
            customer_id=customer.id,
            branch_id=data.branch_id,
            invoice_date=data.invoice_date,
            due_date=data.due_date,
            notes=data.notes,
            status=(InvoiceStatus.DRAFT if data.draft else InvoiceStatus.ISSUED).value,
            created_by_id=ctx.actor_id,
        )
        self.apply_invoice_items(invoice, data.items, totals, ctx.actor_id)
        invoice.paid_amount = ZERO
        invoice.balance = totals.grand_total
        invoice.payment_status = PaymentStatus.UNPAID.value
        self._session.add(invoice)
        self._session.flush()

        if not data.draft:
            self._apply_invoice_effects(ctx, invoice, customer)

        self.write_invoice_audit(ctx, invoice, AuditAction.CREATE, before=None)

        if data.paid_amount > ZERO:
            self.record_customer_payment(
                ctx,
                customer_id=customer.id,
                amount=data.paid_amount,
                method=data.payment_method,
                payment_date=data.invoice_date,
                invoice_id=invoice.id,
                transaction_mode=TransactionMode.AUTO,
            )

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "grand_total": str(invoice.grand_total),
                "status": invoice.status,
            },
        )
        return invoice

    def issue_invoice(self, ctx: RequestContext, invoice_id: UUID) -> InvoiceModel:
        """Turn a draft into an issued invoice and post it."""
        invoice = self.get_invoice(ctx.organization_id, invoice_id)
        if invoice.is_cancelled:
            raise DocumentCancelledError("Invoice", str(invoice.id))
        if not invoice.is_draft:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} is already {invoice.status}", field="status"
            )
        before = invoice.snapshot()
        customer = self.get_customer(ctx.organization_id, invoice.customer_id)
        invoice.status = InvoiceStatus.ISSUED.value
        invoice.updated_by_id = ctx.actor_id
        self._apply_invoice_effects(ctx, invoice, customer)
        self.write_invoice_audit(ctx, invoice, AuditAction.STATUS_CHANGE, before=before)
        logger.info("invoice_issued", extra={"invoice_id": str(invoice.id)})
        return invoice

    def apply_invoice_items(
        self,
        invoice: InvoiceModel,
        items: tuple[InvoiceItemInput, ...],
        totals: DocumentTotals,
        actor_id: UUID,
    ) -> None:
        """Replace the invoice's items and stored totals (no side effects)."""
        invoice.items = [
            InvoiceItemModel(
                line_no=index,
                product_id=item.product_id,
                quantity=item.quantity,
                price=item.price,
                tax_rate=item.tax_rate,
                discount=round_money(item.discount),
                line_total=item_totals.line_total,
                created_by_id=actor_id,
            )
            for index, (item, item_totals) in enumerate(zip(items, totals.items))
        ]
        invoice.sub_total = totals.sub_total
        invoice.item_discount = totals.item_discount
        invoice.tax_amount = totals.tax_amount
        invoice.discount = totals.discount
        invoice.shipping_charges = totals.shipping_charges
        invoice.grand_total = totals.grand_total

    def take_invoice_stock(self, invoice: InvoiceModel) -> None:
        for item in invoice.items:
            self.stock.decrement(invoice.organization_id, item.product_id, invoice.branch_id, item.quantity)

    def restore_invoice_stock(self, invoice: InvoiceModel, actor_id: UUID) -> None:
        for item in invoice.items:
            self.stock.increment(
                invoice.organization_id, item.product_id, invoice.branch_id, item.quantity, actor_id,
            )

    def _apply_invoice_effects(
        self, ctx: RequestContext, invoice: InvoiceModel, customer: CustomerModel,
    ) -> None:
        self.take_invoice_stock(invoice)
        customer.adjust_outstanding(invoice.grand_total)
        customer.adjust_total_purchases(invoice.grand_total)
        self.post(self.build_invoice_posting(invoice, ctx.actor_id))
        self._session.flush()

    def _cost_of_goods_sold(self, invoice: InvoiceModel) -> Decimal:
        cost = ZERO
        for item in invoice.items:
            product = self.stock.get_product(invoice.organization_id, item.product_id)
            cost += (product.purchase_price or ZERO) * item.quantity
        return round_money(cost)

    def write_invoice_audit(
        self,
        ctx: RequestContext,
        invoice: InvoiceModel,
        action: AuditAction,
        before: dict | None,
    ) -> InvoiceAuditModel:
        self._session.flush()
        audit = InvoiceAuditModel(
            organization_id=invoice.organization_id,
            invoice_id=invoice.id,
            action=action.value,
            actor_id=ctx.actor_id,
            before=before,
            after=invoice.snapshot(),
            recorded_at=self._clock.now(),
            created_by_id=ctx.actor_id,
        )
        self._session.add(audit)
        self._session.flush()
        return audit

    # =========================================================================
    # Purchases
    # =========================================================================

    def create_purchase(self, ctx: RequestContext, data: PurchaseInput) -> PurchaseModel:
        """
        Receive a purchase: stock in, supplier balance up, Dr Inventory / Cr AP.

        Raises:
            PaymentExceedsTotalError: ``paid_amount`` above the grand total.
        """
        supplier = self.get_supplier(ctx.organization_id, data.supplier_id)
        totals = rules.purchase_totals(data.items)
        if data.paid_amount < ZERO:
            raise ValidationError("Paid amount cannot be negative", field="paid_amount")
        if data.paid_amount > totals.grand_total:
            raise PaymentExceedsTotalError(
                data.purchase_number, data.paid_amount, totals.grand_total,
            )

        purchase = PurchaseModel(
            organization_id=ctx.organization_id,
            purchase_number=data.purchase_number,
            supplier_id=supplier.id,
            branch_id=data.branch_id,
            purchase_date=data.purchase_date,
            notes=data.notes,
            status=PurchaseStatus.RECEIVED.value,
            created_by_id=ctx.actor_id,
        )
        self.apply_purchase_items(purchase, data.items, totals, ctx.actor_id)
        purchase.paid_amount = ZERO
        purchase.balance = totals.grand_total
        purchase.payment_status = PaymentStatus.UNPAID.value
        self._session.add(purchase)
        self._session.flush()

        self.receive_purchase_stock(purchase, ctx.actor_id)
        supplier.adjust_outstanding(purchase.grand_total)
        self.post(self.build_purchase_posting(purchase, ctx.actor_id))

        if data.paid_amount > ZERO:
            self.record_supplier_payment(
                ctx,
                supplier_id=supplier.id,
                amount=data.paid_amount,
                method=data.payment_method,
                payment_date=data.purchase_date,
                purchase_id=purchase.id,
                transaction_mode=TransactionMode.AUTO,
            )

        logger.info(
            "purchase_created",
            extra={
                "purchase_id": str(purchase.id),
                "purchase_number": purchase.purchase_number,
                "grand_total": str(purchase.grand_total),
            },
        )
        return purchase

    def apply_purchase_items(
        self,
        purchase: PurchaseModel,
        items: tuple[PurchaseItemInput, ...],
        totals: DocumentTotals,
        actor_id: UUID,
    ) -> None:
        for item in items:
            self.stock.get_product(purchase.organization_id, item.product_id)
        purchase.items = [
            PurchaseItemModel(
                line_no=index,
                product_id=item.product_id,
                quantity=item.quantity,
                returned_quantity=0,
                price=item.price,
                tax_rate=item.tax_rate,
                line_total=item_totals.line_total,
                created_by_id=actor_id,
            )
            for index, (item, item_totals) in enumerate(zip(items, totals.items))
        ]
        purchase.sub_total = totals.sub_total
        purchase.tax_amount = totals.tax_amount
        purchase.grand_total = totals.grand_total

    def receive_purchase_stock(self, purchase: PurchaseModel, actor_id: UUID) -> None:
        """Stock in every item and record its price as the product's purchase price."""
        for item in purchase.items:
            self.stock.increment(
                purchase.organization_id, item.product_id, purchase.branch_id, item.quantity, actor_id,
            )
            product = self.stock.get_product(purchase.organization_id, item.product_id)
            product.purchase_price = item.price
            product.updated_by_id = actor_id
        self._session.flush()

    # =========================================================================
    # Payments
    # =========================================================================

    def record_customer_payment(
        self,
        ctx: RequestContext,
        *,
        customer_id: UUID | None = None,
        amount: Decimal,
        method: str = "cash",
        payment_date: date | None = None,
        invoice_id: UUID | None = None,
        transaction_mode: TransactionMode = TransactionMode.MANUAL,
        note: str = "",
    ) -> PaymentModel:
        """
        Payment inflow: Dr Cash/Bank / Cr AR(customer).

        When linked to an invoice, the invoice's paid amount, balance and
        payment status follow, and an active installment plan on the invoice
        receives the amount oldest-due-first.

        Raises:
            PaymentExceedsTotalError: amount above the invoice balance.
            DocumentCancelledError: invoice is cancelled.
        """
        value = self._payment_amount(amount)
        invoice = None
        if invoice_id is not None:
            invoice = self.get_invoice(ctx.organization_id, invoice_id)
            if invoice.is_cancelled:
                raise DocumentCancelledError("Invoice", str(invoice.id))
            if invoice.is_draft:
                raise ValidationError("Draft invoices cannot receive payments", field="invoice_id")
            if customer_id is not None and customer_id != invoice.customer_id:
                raise ValidationError("Payment customer does not match the invoice", field="customer_id")
            customer_id = invoice.customer_id
            if invoice.paid_amount + value > invoice.grand_total:
                raise PaymentExceedsTotalError(str(invoice.id), value, invoice.balance)
        if customer_id is None:
            raise ValidationError("A customer payment needs a customer", field="customer_id")
        customer = self.get_customer(ctx.organization_id, customer_id)

        payment = self._new_payment(
            ctx,
            direction=PaymentDirection.INFLOW,
            amount=value,
            method=method,
            payment_date=payment_date,
            transaction_mode=transaction_mode,
            note=note,
            customer_id=customer.id,
            invoice_id=invoice.id if invoice is not None else None,
            branch_id=invoice.branch_id if invoice is not None else ctx.branch_id,
        )
        customer.adjust_outstanding(-value)
        if invoice is not None:
            self._settle(invoice, value, ctx.actor_id)
            self.installments.apply_payment(
                ctx.organization_id, invoice.id, value, payment.payment_date,
            )
        self.post(self.build_payment_posting(payment, ctx.actor_id))

        logger.info(
            "payment_recorded",
            extra={
                "payment_id": str(payment.id),
                "direction": payment.direction,
                "amount": str(value),
                "invoice_id": str(invoice.id) if invoice is not None else None,
            },
        )
        return payment

    def record_supplier_payment(
        self,
        ctx: RequestContext,
        *,
        supplier_id: UUID | None = None,
        amount: Decimal,
        method: str = "cash",
        payment_date: date | None = None,
        purchase_id: UUID | None = None,
        transaction_mode: TransactionMode = TransactionMode.MANUAL,
        note: str = "",
    ) -> PaymentModel:
        """Payment outflow: Dr AP(supplier) / Cr Cash/Bank."""
        value = self._payment_amount(amount)
        purchase = None
        if purchase_id is not None:
            purchase = self.get_purchase(ctx.organization_id, purchase_id)
            if purchase.is_cancelled:
                raise DocumentCancelledError("Purchase", str(purchase.id))
            if supplier_id is not None and supplier_id != purchase.supplier_id:
                raise ValidationError("Payment supplier does not match the purchase", field="supplier_id")
            supplier_id = purchase.supplier_id
            if purchase.paid_amount + value > purchase.grand_total:
                raise PaymentExceedsTotalError(str(purchase.id), value, purchase.balance)
        if supplier_id is None:
            raise ValidationError("A supplier payment needs a supplier", field="supplier_id")
        supplier = self.get_supplier(ctx.organization_id, supplier_id)

        payment = self._new_payment(
            ctx,
            direction=PaymentDirection.OUTFLOW,
            amount=value,
            method=method,
            payment_date=payment_date,
            transaction_mode=transaction_mode,
            note=note,
            supplier_id=supplier.id,
            purchase_id=purchase.id if purchase is not None else None,
            branch_id=purchase.branch_id if purchase is not None else ctx.branch_id,
        )
        supplier.adjust_outstanding(-value)
        if purchase is not None:
            self._settle(purchase, value, ctx.actor_id)
        self.post(self.build_payment_posting(payment, ctx.actor_id))

        logger.info(
            "payment_recorded",
            extra={
                "payment_id": str(payment.id),
                "direction": payment.direction,
                "amount": str(value),
                "purchase_id": str(purchase.id) if purchase is not None else None,
            },
        )
        return payment

    def _payment_amount(self, amount: Decimal) -> Decimal:
        value = round_money(to_decimal(amount))
        if value <= ZERO:
            raise ValidationError("Payment amount must be positive", field="amount")
        return value

    def _new_payment(
        self,
        ctx: RequestContext,
        *,
        direction: PaymentDirection,
        amount: Decimal,
        method: str,
        payment_date: date | None,
        transaction_mode: TransactionMode,
        note: str,
        **links,
    ) -> PaymentModel:
        self._method_role(method)
        payment = PaymentModel(
            organization_id=ctx.organization_id,
            direction=direction.value,
            amount=amount,
            method=method,
            status=PaymentRecordStatus.COMPLETED.value,
            transaction_mode=TransactionMode(transaction_mode).value,
            payment_date=payment_date or self._clock.today(),
            reference_note=note,
            created_by_id=ctx.actor_id,
            **links,
        )
        self._session.add(payment)
        self._session.flush()
        return payment

    def _settle(self, document, amount: Decimal, actor_id: UUID) -> None:
        document.paid_amount = round_money(document.paid_amount + amount)
        document.balance = round_money(document.grand_total - document.paid_amount)
        document.payment_status = rules.payment_status_after(document.paid_amount, document.balance)
        document.updated_by_id = actor_id
        self._session.flush()

    # =========================================================================
    # Stock
    # =========================================================================

    def adjust_stock(self, ctx: RequestContext, data: StockAdjustmentInput) -> StockAdjustmentModel:
        """
        Manual stock correction valued at the product's purchase price.

        Posts only when the cost value is positive.

        Raises:
            ValidationError: quantity not positive (before any mutation).
            InsufficientStockError: subtracting more than the branch holds.
        """
        if not isinstance(data.quantity, int) or isinstance(data.quantity, bool) or data.quantity <= 0:
            raise ValidationError(
                f"Adjustment quantity must be a positive integer, got {data.quantity!r}",
                field="quantity",
            )
        product = self.stock.get_product(ctx.organization_id, data.product_id)
        if data.adjustment_type == AdjustmentType.SUBTRACT:
            self.stock.decrement(ctx.organization_id, product.id, data.branch_id, data.quantity)
        else:
            self.stock.increment(ctx.organization_id, product.id, data.branch_id, data.quantity, ctx.actor_id)

        adjustment = StockAdjustmentModel(
            organization_id=ctx.organization_id,
            product_id=product.id,
            branch_id=data.branch_id,
            quantity=data.quantity,
            adjustment_type=data.adjustment_type.value,
            reason=data.reason,
            cost_value=round_money((product.purchase_price or ZERO) * data.quantity),
            created_by_id=ctx.actor_id,
        )
        self._session.add(adjustment)
        self._session.flush()

        request = self.build_adjustment_posting(adjustment, ctx.actor_id)
        if request is not None:
            self.post(request)

        logger.info(
            "stock_adjusted",
            extra={
                "adjustment_id": str(adjustment.id),
                "product_id": str(product.id),
                "adjustment_type": adjustment.adjustment_type,
                "quantity": adjustment.quantity,
                "cost_value": str(adjustment.cost_value),
                "posted": request is not None,
            },
        )
        return adjustment

    def transfer_stock(
        self,
        ctx: RequestContext,
        *,
        product_id: UUID,
        source_branch_id: UUID,
        destination_branch_id: UUID,
        quantity: int,
    ):
        """Move stock between branches.  Organization inventory value is unchanged, so nothing posts."""
        return self.stock.transfer(
            ctx.organization_id,
            product_id,
            source_branch_id,
            destination_branch_id,
            quantity,
            ctx.actor_id,
        )

    # =========================================================================
    # Convenience
    # =========================================================================

    def posting_lines(self, organization_id: UUID, reference_type: ReferenceType, reference_id: UUID):
        return self.journal.lines_for_reference(organization_id, reference_type, reference_id)
