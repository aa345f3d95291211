"""
Per-session wiring of the ledger services.

All collaborators for one Session are built here so that every posting
path shares one opening-balance cache and invalidates it the same way:
after commit, for the organization whose ledger changed.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from ledger_config import get_settings
from ledger_config.schema import LedgerSettings
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.utils.opening_balance_cache import OpeningBalanceCache
from ledger_modules.posting.service import PostingOrchestrator
from ledger_modules.rebooking.service import RebookingManager
from ledger_modules.reporting.config import ReportingConfig
from ledger_modules.reporting.service import ReportingService
from ledger_services.integrity_service import IntegrityService
from ledger_services.notifications import Notifier


@dataclass(frozen=True)
class LedgerServices:
    settings: LedgerSettings
    opening_balances: OpeningBalanceCache
    orchestrator: PostingOrchestrator
    rebooking: RebookingManager
    reporting: ReportingService
    integrity: IntegrityService

    @property
    def installments(self):
        return self.orchestrator.installments


def build_opening_balance_cache(settings: LedgerSettings, clock: Clock | None = None) -> OpeningBalanceCache:
    return OpeningBalanceCache(
        clock or SystemClock(),
        ttl_seconds=settings.opening_balance_cache_ttl_seconds,
    )


def build_ledger_services(
    session: Session,
    settings: LedgerSettings | None = None,
    *,
    clock: Clock | None = None,
    opening_balances: OpeningBalanceCache | None = None,
    notifier: Notifier | None = None,
    reporting_config: ReportingConfig | None = None,
) -> LedgerServices:
    """
    Build the orchestrator, rebooking manager, reporting and integrity
    services over ``session``.

    Pass a long-lived ``opening_balances`` cache to share it across
    sessions; otherwise a fresh one is created.
    """
    settings = settings or get_settings()
    clock = clock or SystemClock()
    if opening_balances is None:
        opening_balances = build_opening_balance_cache(settings, clock)

    orchestrator = PostingOrchestrator(
        session,
        settings,
        clock=clock,
        on_ledger_changed=opening_balances.invalidate_organization,
    )
    return LedgerServices(
        settings=settings,
        opening_balances=opening_balances,
        orchestrator=orchestrator,
        rebooking=RebookingManager(orchestrator),
        reporting=ReportingService(
            session,
            clock=clock,
            config=reporting_config,
            opening_balances=opening_balances,
        ),
        integrity=IntegrityService(session, settings, clock=clock, notifier=notifier),
    )
