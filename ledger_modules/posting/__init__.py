"""
Posting Module.

Turns business events into balanced postings.  ``rules`` holds the pure
event-to-lines mapping and document totals; ``PostingOrchestrator`` runs
the rules and the co-located operational mutations (stock, party balances,
invoice/purchase payment state) in the caller's transaction.
"""

from ledger_modules.posting.models import (
    DocumentTotals,
    InvoiceInput,
    InvoiceItemInput,
    InvoiceUpdate,
    PurchaseInput,
    PurchaseItemInput,
    PurchaseReturnLine,
    PurchaseUpdate,
    StockAdjustmentInput,
)

__all__ = [
    "DocumentTotals",
    "InvoiceInput",
    "InvoiceItemInput",
    "InvoiceUpdate",
    "PurchaseInput",
    "PurchaseItemInput",
    "PurchaseReturnLine",
    "PurchaseUpdate",
    "StockAdjustmentInput",
]
