"""
ledger_services -- stateful services composed over the kernel, engines
and modules.

Dependency direction:
    ledger_services/ -> ledger_engines/, ledger_modules/, ledger_kernel/
    nothing below this package imports from it.
"""

from ledger_services.backfill_service import BackfillService, BackfillSummary
from ledger_services.integrity_service import IntegrityService
from ledger_services.ledger_context import LedgerServices, build_ledger_services
from ledger_services.notifications import LoggingNotifier, Notifier

__all__ = [
    "BackfillService",
    "BackfillSummary",
    "IntegrityService",
    "LedgerServices",
    "LoggingNotifier",
    "Notifier",
    "build_ledger_services",
]
