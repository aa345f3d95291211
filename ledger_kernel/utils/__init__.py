"""Utility modules for the ledger kernel."""

from ledger_kernel.utils.idempotency import job_idempotency_key
from ledger_kernel.utils.opening_balance_cache import OpeningBalanceCache

__all__ = ["OpeningBalanceCache", "job_idempotency_key"]
