"""
Inventory Module.

Products, per-branch stock quantities and stock adjustments.  Quantities
only change through ``StockLedger`` so every movement is checked and logged.
"""

from ledger_modules.inventory.models import AdjustmentType, StockMovement

__all__ = ["AdjustmentType", "StockMovement"]
