"""Kernel ORM models."""

from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalLine
from ledger_kernel.models.organization import Organization

__all__ = ["Account", "JournalLine", "Organization"]
