"""
Sales Domain Models (``ledger_modules.sales.models``).

Responsibility
--------------
Enums for invoice lifecycle, payment status and audit actions.

Architecture position
---------------------
**Modules layer** -- pure definitions with ZERO I/O.  ``PaymentStatus`` is
shared with purchasing.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from ledger_kernel.domain.money import ZERO


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states.  ``cancelled`` is terminal."""

    DRAFT = "draft"
    ISSUED = "issued"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"

    @classmethod
    def derive(cls, paid_amount: Decimal, balance: Decimal) -> PaymentStatus:
        """``paid`` if nothing is left, ``partial`` if something was paid."""
        if balance <= ZERO:
            return cls.PAID
        if paid_amount > ZERO:
            return cls.PARTIAL
        return cls.UNPAID


class AuditAction(str, Enum):
    """What an InvoiceAudit row records."""

    CREATE = "CREATE"
    UPDATE_DRAFT = "UPDATE_DRAFT"
    UPDATE_FINANCIAL = "UPDATE_FINANCIAL"
    UPDATE_INFO = "UPDATE_INFO"
    STATUS_CHANGE = "STATUS_CHANGE"
    CANCEL = "CANCEL"
