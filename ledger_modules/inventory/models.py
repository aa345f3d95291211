"""
Inventory Domain Models (``ledger_modules.inventory.models``).

Pure value objects with zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class AdjustmentType(str, Enum):
    """Direction of a manual stock adjustment."""

    ADD = "add"
    SUBTRACT = "subtract"


@dataclass(frozen=True)
class StockMovement:
    """Result of one quantity change at one branch."""

    product_id: UUID
    branch_id: UUID
    quantity_before: int
    quantity_after: int

    @property
    def delta(self) -> int:
        return self.quantity_after - self.quantity_before
