"""Payments Domain Models (``ledger_modules.payments.models``)."""

from __future__ import annotations

from enum import Enum


class PaymentDirection(str, Enum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK = "bank"
    CHEQUE = "cheque"
    UPI = "upi"
    CARD = "card"


class PaymentRecordStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class TransactionMode(str, Enum):
    """``auto`` payments are posted by the flow that created them."""

    MANUAL = "manual"
    AUTO = "auto"
