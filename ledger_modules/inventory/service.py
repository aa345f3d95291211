"""
StockLedger -- branch stock movements.

Responsibility:
    Every quantity change to ``BranchInventoryModel`` goes through here:
    decrement for sales, increment for purchases, reversibility checks
    before a purchase is rebooked or cancelled, and branch-to-branch
    transfers.

Architecture position:
    Modules > Inventory.  Called by the Posting Orchestrator and the
    Rebooking Manager inside their transaction.  Never commits.

Invariants enforced:
    - Quantities are positive integers; zero or negative is a ValidationError.
    - A branch quantity never goes below zero.  A decrement that would is an
      InsufficientStockError; a reversal that would is a StockConsumedError.
    - Rows are read ``FOR UPDATE`` where the backend supports it.

Failure modes:
    - NotFoundError: unknown product in the organization.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.exceptions import (
    InsufficientStockError,
    NotFoundError,
    StockConsumedError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.base import BaseService
from ledger_modules.inventory.models import StockMovement
from ledger_modules.inventory.orm import BranchInventoryModel, ProductModel

logger = get_logger("modules.inventory.stock")


def _check_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}", field="quantity")


class StockLedger(BaseService[BranchInventoryModel]):
    """
    Quantity movements per (product, branch).

    Contract:
        Every method validates before mutating; a raised error leaves the
        row untouched.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_product(self, organization_id: UUID, product_id: UUID) -> ProductModel:
        product = self.session.get(ProductModel, product_id)
        if product is None or product.organization_id != organization_id:
            raise NotFoundError("Product", str(product_id))
        return product

    def quantity(self, organization_id: UUID, product_id: UUID, branch_id: UUID) -> int:
        row = self._row(organization_id, product_id, branch_id)
        return row.quantity if row is not None else 0

    # =========================================================================
    # Movements
    # =========================================================================

    def decrement(
        self,
        organization_id: UUID,
        product_id: UUID,
        branch_id: UUID,
        quantity: int,
    ) -> StockMovement:
        """Take ``quantity`` out of the branch.

        Raises:
            InsufficientStockError: branch holds less than ``quantity``.
        """
        _check_quantity(quantity)
        self.get_product(organization_id, product_id)
        row = self._row(organization_id, product_id, branch_id, for_update=True)
        available = row.quantity if row is not None else 0
        if available < quantity:
            logger.warning(
                "insufficient_stock",
                extra={
                    "product_id": str(product_id),
                    "branch_id": str(branch_id),
                    "available": available,
                    "requested": quantity,
                },
            )
            raise InsufficientStockError(str(product_id), str(branch_id), available, quantity)
        return self._move(row, -quantity)

    def increment(
        self,
        organization_id: UUID,
        product_id: UUID,
        branch_id: UUID,
        quantity: int,
        actor_id: UUID,
    ) -> StockMovement:
        """Add ``quantity`` to the branch, creating its row when missing."""
        _check_quantity(quantity)
        self.get_product(organization_id, product_id)
        row = self._row(organization_id, product_id, branch_id, for_update=True)
        if row is None:
            row = BranchInventoryModel(
                organization_id=organization_id,
                product_id=product_id,
                branch_id=branch_id,
                quantity=0,
                created_by_id=actor_id,
            )
            self.session.add(row)
            self.session.flush()
            logger.info(
                "branch_inventory_created",
                extra={"product_id": str(product_id), "branch_id": str(branch_id)},
            )
        return self._move(row, quantity)

    def ensure_reversible(
        self,
        organization_id: UUID,
        product_id: UUID,
        branch_id: UUID,
        quantity: int,
    ) -> None:
        """Check that stock added earlier is still on hand.

        Raises:
            StockConsumedError: branch holds less than ``quantity``.
        """
        available = self.quantity(organization_id, product_id, branch_id)
        if available < quantity:
            logger.warning(
                "stock_consumed",
                extra={
                    "product_id": str(product_id),
                    "branch_id": str(branch_id),
                    "available": available,
                    "required": quantity,
                },
            )
            raise StockConsumedError(str(product_id), str(branch_id), available, quantity)

    def transfer(
        self,
        organization_id: UUID,
        product_id: UUID,
        source_branch_id: UUID,
        destination_branch_id: UUID,
        quantity: int,
        actor_id: UUID,
    ) -> tuple[StockMovement, StockMovement]:
        """Move stock between two branches of one organization."""
        if source_branch_id == destination_branch_id:
            raise ValidationError(
                "Transfer source and destination must differ", field="destination_branch_id"
            )
        out = self.decrement(organization_id, product_id, source_branch_id, quantity)
        into = self.increment(organization_id, product_id, destination_branch_id, quantity, actor_id)
        logger.info(
            "stock_transferred",
            extra={
                "product_id": str(product_id),
                "source_branch_id": str(source_branch_id),
                "destination_branch_id": str(destination_branch_id),
                "quantity": quantity,
            },
        )
        return out, into

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _row(
        self,
        organization_id: UUID,
        product_id: UUID,
        branch_id: UUID,
        for_update: bool = False,
    ) -> BranchInventoryModel | None:
        query = select(BranchInventoryModel).where(
            BranchInventoryModel.organization_id == organization_id,
            BranchInventoryModel.product_id == product_id,
            BranchInventoryModel.branch_id == branch_id,
        )
        if for_update:
            query = query.with_for_update()
        return self.session.execute(query).scalar_one_or_none()

    def _move(self, row: BranchInventoryModel, delta: int) -> StockMovement:
        before = row.quantity
        row.quantity = before + delta
        self.session.flush()
        logger.debug(
            "stock_moved",
            extra={
                "product_id": str(row.product_id),
                "branch_id": str(row.branch_id),
                "delta": delta,
                "quantity": row.quantity,
            },
        )
        return StockMovement(
            product_id=row.product_id,
            branch_id=row.branch_id,
            quantity_before=before,
            quantity_after=row.quantity,
        )
