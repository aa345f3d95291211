"""
BackfillService -- journal lines for documents that predate the ledger.

Responsibility:
    Find business documents that should carry a posting but have none, and
    write the posting the Posting Orchestrator would have written.

Architecture position:
    Services -- reuses the orchestrator's ``build_*_posting`` methods and
    its Journal Line Store.  Never calls the orchestrator's event methods,
    so stock, party balances and payment state are left alone.

Invariants enforced:
    - Idempotent: a document whose reference already has lines is skipped,
      so re-running never duplicates lines.
    - Account lookups within one run go through one run-scoped
      ``AccountCache``; nothing is shared across runs.

Scope:
    - issued invoices (drafts and cancelled excluded)
    - received purchases
    - completed payments whose transaction mode is not ``auto``
      (auto payments were posted with their document)
    - stock adjustments with a cost value above zero

Failure modes:
    - ``backfill`` isolates each document in a SAVEPOINT; a failure is
      logged, counted, and the run continues.
    - ``backfill_document`` propagates errors to its caller (the batch
      executor records them per item).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import PostingRequest, ReferenceType
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.account_directory import AccountCache
from ledger_kernel.utils.opening_balance_cache import OpeningBalanceCache
from ledger_modules.inventory.orm import StockAdjustmentModel
from ledger_modules.payments.models import PaymentRecordStatus, TransactionMode
from ledger_modules.payments.orm import PaymentModel
from ledger_modules.posting.service import PostingOrchestrator
from ledger_modules.purchasing.models import PurchaseStatus
from ledger_modules.purchasing.orm import PurchaseModel
from ledger_modules.sales.models import InvoiceStatus
from ledger_modules.sales.orm import InvoiceModel

logger = get_logger("services.backfill")

BACKFILL_REFERENCE_TYPES = (
    ReferenceType.INVOICE,
    ReferenceType.PURCHASE,
    ReferenceType.PAYMENT,
    ReferenceType.ADJUSTMENT,
)


class BackfillOutcome(str, Enum):
    POSTED = "posted"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class BackfillItem:
    reference_type: ReferenceType
    document_id: UUID


@dataclass
class BackfillSummary:
    """Mutable tally for one run."""

    organization_id: UUID
    posted: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.posted + self.skipped + self.failed

    def to_dict(self) -> dict:
        return {
            "organization_id": str(self.organization_id),
            "posted": self.posted,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class BackfillService:
    """
    Posts missing journal lines for pre-existing documents.

    Contract:
        Writes only journal lines (and, through the Account Directory,
        missing chart accounts).  Flushes; the caller commits.
        Pass the process-wide ``opening_balances`` cache so that party
        statements stop serving openings computed before the backfill.
    """

    def __init__(
        self,
        session: Session,
        settings: LedgerSettings,
        *,
        clock: Clock | None = None,
        account_cache: AccountCache | None = None,
        opening_balances: OpeningBalanceCache | None = None,
    ) -> None:
        self._session = session
        self.account_cache = account_cache if account_cache is not None else AccountCache()
        self._orchestrator = PostingOrchestrator(
            session,
            settings,
            clock=clock,
            account_cache=self.account_cache,
            on_ledger_changed=(
                opening_balances.invalidate_organization if opening_balances is not None else None
            ),
        )

    # -----------------------------------------------------------------
    # Candidates
    # -----------------------------------------------------------------

    def candidates(
        self,
        organization_id: UUID,
        reference_types: tuple[ReferenceType, ...] = BACKFILL_REFERENCE_TYPES,
    ) -> list[BackfillItem]:
        """Documents in scope, oldest first.  Already-posted ones are included."""
        items: list[BackfillItem] = []
        for reference_type in reference_types:
            reference_type = ReferenceType(reference_type)
            ids = self._session.execute(self._candidate_query(organization_id, reference_type)).scalars()
            items.extend(BackfillItem(reference_type, document_id) for document_id in ids)
        return items

    @staticmethod
    def _candidate_query(organization_id: UUID, reference_type: ReferenceType):
        if reference_type == ReferenceType.INVOICE:
            return (
                select(InvoiceModel.id)
                .where(
                    InvoiceModel.organization_id == organization_id,
                    InvoiceModel.status == InvoiceStatus.ISSUED.value,
                )
                .order_by(InvoiceModel.invoice_date, InvoiceModel.created_at)
            )
        if reference_type == ReferenceType.PURCHASE:
            return (
                select(PurchaseModel.id)
                .where(
                    PurchaseModel.organization_id == organization_id,
                    PurchaseModel.status == PurchaseStatus.RECEIVED.value,
                )
                .order_by(PurchaseModel.purchase_date, PurchaseModel.created_at)
            )
        if reference_type == ReferenceType.PAYMENT:
            return (
                select(PaymentModel.id)
                .where(
                    PaymentModel.organization_id == organization_id,
                    PaymentModel.status == PaymentRecordStatus.COMPLETED.value,
                    PaymentModel.transaction_mode != TransactionMode.AUTO.value,
                )
                .order_by(PaymentModel.payment_date, PaymentModel.created_at)
            )
        if reference_type == ReferenceType.ADJUSTMENT:
            return (
                select(StockAdjustmentModel.id)
                .where(
                    StockAdjustmentModel.organization_id == organization_id,
                    StockAdjustmentModel.cost_value > 0,
                )
                .order_by(StockAdjustmentModel.created_at)
            )
        raise ValueError(f"Reference type {reference_type.value} is not backfilled")

    # -----------------------------------------------------------------
    # Posting
    # -----------------------------------------------------------------

    def backfill_document(
        self,
        organization_id: UUID,
        reference_type: ReferenceType,
        document_id: UUID,
        actor_id: UUID,
    ) -> BackfillOutcome:
        reference_type = ReferenceType(reference_type)
        journal = self._orchestrator.journal
        if journal.has_posting(organization_id, reference_type, document_id):
            logger.debug(
                "backfill_skipped_already_posted",
                extra={"reference_type": reference_type.value, "document_id": str(document_id)},
            )
            return BackfillOutcome.SKIPPED

        request = self._build(organization_id, reference_type, document_id, actor_id)
        if request is None:
            return BackfillOutcome.SKIPPED
        self._orchestrator.post(request)
        logger.info(
            "backfill_posted",
            extra={
                "organization_id": str(organization_id),
                "reference_type": reference_type.value,
                "document_id": str(document_id),
                "lines": len(request.lines),
            },
        )
        return BackfillOutcome.POSTED

    def _build(
        self,
        organization_id: UUID,
        reference_type: ReferenceType,
        document_id: UUID,
        actor_id: UUID,
    ) -> PostingRequest | None:
        orch = self._orchestrator
        if reference_type == ReferenceType.INVOICE:
            return orch.build_invoice_posting(orch.get_invoice(organization_id, document_id), actor_id)
        if reference_type == ReferenceType.PURCHASE:
            return orch.build_purchase_posting(orch.get_purchase(organization_id, document_id), actor_id)
        if reference_type == ReferenceType.PAYMENT:
            return orch.build_payment_posting(orch.get_payment(organization_id, document_id), actor_id)
        if reference_type == ReferenceType.ADJUSTMENT:
            adjustment = orch.get_adjustment(organization_id, document_id)
            return orch.build_adjustment_posting(
                adjustment, actor_id, entry_date=adjustment.created_at.date(),
            )
        raise ValueError(f"Reference type {reference_type.value} is not backfilled")

    def backfill(
        self,
        organization_id: UUID,
        actor_id: UUID,
        reference_types: tuple[ReferenceType, ...] = BACKFILL_REFERENCE_TYPES,
    ) -> BackfillSummary:
        """Post every missing document, one SAVEPOINT per document."""
        summary = BackfillSummary(organization_id=organization_id)
        for item in self.candidates(organization_id, reference_types):
            savepoint = self._session.begin_nested()
            try:
                outcome = self.backfill_document(
                    organization_id, item.reference_type, item.document_id, actor_id,
                )
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                # Cached ids may point at accounts created inside the rolled-back savepoint.
                self.account_cache.clear()
                summary.failed += 1
                summary.errors.append(f"{item.reference_type.value} {item.document_id}: {exc}")
                logger.error(
                    "backfill_document_failed",
                    extra={
                        "reference_type": item.reference_type.value,
                        "document_id": str(item.document_id),
                        "error": str(exc),
                    },
                    exc_info=True,
                )
                continue
            if outcome == BackfillOutcome.POSTED:
                summary.posted += 1
            else:
                summary.skipped += 1

        logger.info("backfill_completed", extra=summary.to_dict())
        return summary
