"""
Rebooking Module.

Financial edits, cancellations and partial returns of posted documents.
"""

from ledger_modules.rebooking.service import RebookingManager

__all__ = ["RebookingManager"]
