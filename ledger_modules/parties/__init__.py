"""
Parties Module.

Customers and suppliers.  Only the monetary fields the ledger keeps in sync
(outstanding balance, total purchases) are owned here; the rest of the
master data is maintained elsewhere.
"""

from ledger_modules.parties.orm import CustomerModel, SupplierModel

__all__ = ["CustomerModel", "SupplierModel"]
