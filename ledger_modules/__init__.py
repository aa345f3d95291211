"""
Ledger Modules.

Operational documents and the business logic that turns them into
postings.  Each module contains some of:
- Domain models (frozen dataclasses and enums, zero I/O)
- ORM persistence (orm.py)
- A service that mutates documents inside the caller's transaction

Modules:
- parties: customers and suppliers with denormalized running balances
- inventory: products, per-branch stock, stock adjustments
- sales: invoices, invoice items, invoice audit trail
- purchasing: purchases and purchase items
- payments: customer inflows and supplier outflows
- posting: pure posting rules + the Posting Orchestrator
- rebooking: edits, cancellations and returns of posted documents
- installments: deferred-payment plans and payment reconciliation
- reporting: trial balance, profit & loss, balance sheet, party ledger
"""
