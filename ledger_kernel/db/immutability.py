"""
ORM-level append-only enforcement.

Journal lines and invoice audit rows are history.  Corrections are new
reversing lines, never an UPDATE, so any attempt to flush a changed
JournalLine or InvoiceAudit row is rejected before the SQL is sent.
Accounts may change name or cached balance, but never code, type or
organization: the reports group history by those fields.

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Reference-scoped deletion of a posting (financial edit rebooking) goes
through a bulk DELETE issued by the Journal Line Store and is not affected
by these listeners.
"""

from __future__ import annotations

from sqlalchemy import event, inspect

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_ACCOUNT_STRUCTURAL_FIELDS = ("code", "account_type", "organization_id")


def _reject(entity_type: str, entity_id: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": entity_type, "entity_id": entity_id, "operation": "UPDATE"},
    )
    raise ImmutabilityViolationError(entity_type=entity_type, entity_id=entity_id, reason=reason)


def _check_journal_line_update(mapper, connection, target):
    _reject("JournalLine", str(target.id), "journal lines are append-only")


def _check_invoice_audit_update(mapper, connection, target):
    _reject("InvoiceAudit", str(target.id), "audit rows are append-only")


def _check_account_structural_update(mapper, connection, target):
    state = inspect(target)
    for field in _ACCOUNT_STRUCTURAL_FIELDS:
        if state.attrs[field].history.has_changes():
            _reject("Account", str(target.id), f"{field} cannot change once created")


def _listeners():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.journal import JournalLine
    from ledger_modules.sales.orm import InvoiceAuditModel

    return (
        (JournalLine, "before_update", _check_journal_line_update),
        (InvoiceAuditModel, "before_update", _check_invoice_audit_update),
        (Account, "before_update", _check_account_structural_update),
    )


def register_immutability_listeners() -> None:
    """Register all append-only listeners (idempotent)."""
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners. FOR TESTING ONLY."""
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
