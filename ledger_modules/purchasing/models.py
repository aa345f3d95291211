"""Purchasing Domain Models (``ledger_modules.purchasing.models``)."""

from __future__ import annotations

from enum import Enum


class PurchaseStatus(str, Enum):
    """Purchase lifecycle states.  ``cancelled`` is terminal."""

    RECEIVED = "received"
    CANCELLED = "cancelled"
