"""
Payments Module.

Customer inflows and supplier outflows.  A payment's posting uses the
payment's own id as the reference.
"""

from ledger_modules.payments.models import (
    PaymentDirection,
    PaymentMethod,
    PaymentRecordStatus,
    TransactionMode,
)

__all__ = ["PaymentDirection", "PaymentMethod", "PaymentRecordStatus", "TransactionMode"]
