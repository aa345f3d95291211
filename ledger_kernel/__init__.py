"""
Ledger Kernel

Double-entry core shared by every tenant:
- Organization-scoped chart of accounts with idempotent get-or-create
- Append-only journal lines, single-sided and rounded to cents
- Balanced postings written all-or-nothing
- Post-commit hooks for side effects that must not outlive a rollback
"""

__version__ = "0.1.0"
