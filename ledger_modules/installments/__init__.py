"""
Installments Module.

Deferred-payment plans attached to invoices, and reconciliation of
external payments against those plans.  Allocation arithmetic is pure
(``allocation.py``); ``InstallmentService`` persists its results.
"""

from ledger_modules.installments.models import (
    AllocationResult,
    InstallmentStatus,
    PlanStatus,
    ReconciliationResult,
    ReconciliationStatus,
)

__all__ = [
    "AllocationResult",
    "InstallmentStatus",
    "PlanStatus",
    "ReconciliationResult",
    "ReconciliationStatus",
]
