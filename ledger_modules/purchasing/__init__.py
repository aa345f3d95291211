"""
Purchasing Module.

Supplier purchases and their items.  A purchase is ``received`` when
created (stock arrives with it) and ``cancelled`` when fully reversed.
"""

from ledger_modules.purchasing.models import PurchaseStatus

__all__ = ["PurchaseStatus"]
