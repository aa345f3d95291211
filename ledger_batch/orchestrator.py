"""
BatchOrchestrator -- DI container and runner for ledger batch jobs.

Contract:
    Wires the TaskRegistry with the ledger task implementations, creates
    BatchExecutors, and runs a job end to end: job lock, idempotent
    submit, execute, commit, unlock.

Architecture: ledger_batch (top-level).  The canonical entry point for
    scripts and schedulers.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - One run per (task, period, organization): the idempotency key is
      ``task_type:period_key[:organization_id]``.
    - One process per job name at a time (JobLockService).
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ledger_batch.domain.types import BatchRunResult
from ledger_batch.services.executor import BatchExecutor
from ledger_batch.services.job_lock import JobLockService
from ledger_batch.tasks.base import TaskRegistry
from ledger_batch.tasks.installment_tasks import MarkOverdueInstallmentsTask
from ledger_batch.tasks.ledger_tasks import (
    BackfillTask,
    NightlyBalanceCheckTask,
    VerifyBackfillTask,
)
from ledger_config.schema import LedgerSettings
from ledger_kernel.db.engine import get_session_factory
from ledger_kernel.db.transaction import run_in_transaction
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import SYSTEM_ACTOR_ID
from ledger_kernel.exceptions import BatchIdempotencyError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.utils.idempotency import job_idempotency_key
from ledger_kernel.utils.opening_balance_cache import OpeningBalanceCache
from ledger_services.ledger_context import build_opening_balance_cache
from ledger_services.notifications import Notifier

logger = get_logger("batch.orchestrator")


def default_task_registry(
    settings: LedgerSettings,
    notifier: Notifier | None = None,
    opening_balances: OpeningBalanceCache | None = None,
) -> TaskRegistry:
    """A TaskRegistry pre-loaded with every ledger task."""
    registry = TaskRegistry()
    registry.register(BackfillTask(settings, opening_balances))
    registry.register(VerifyBackfillTask(settings))
    registry.register(NightlyBalanceCheckTask(settings, notifier))
    registry.register(MarkOverdueInstallmentsTask())
    return registry


class BatchOrchestrator:
    """DI container for the batch system.

    Non-goals:
        - Does NOT schedule; cron (or any scheduler) calls ``run_job``.
    """

    def __init__(
        self,
        settings: LedgerSettings,
        *,
        task_registry: TaskRegistry | None = None,
        clock: Clock | None = None,
        session_factory: sessionmaker[Session] | None = None,
        notifier: Notifier | None = None,
        opening_balances: OpeningBalanceCache | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        holder: str = "ledger-batch",
    ) -> None:
        self._settings = settings
        self._clock = clock or SystemClock()
        if opening_balances is None:
            opening_balances = build_opening_balance_cache(settings, self._clock)
        self._opening_balances = opening_balances
        self._task_registry = task_registry or default_task_registry(
            settings, notifier, self._opening_balances,
        )
        self._session_factory = session_factory
        self._actor_id = actor_id
        self._holder = holder
        self._locks = JobLockService(
            session_factory,
            clock=self._clock,
            ttl_seconds=settings.job_lock_ttl_seconds,
        )

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def opening_balances(self) -> OpeningBalanceCache:
        return self._opening_balances

    @property
    def locks(self) -> JobLockService:
        return self._locks

    def create_executor(self, session: Session) -> BatchExecutor:
        return BatchExecutor(session=session, task_registry=self._task_registry, clock=self._clock)

    def run_job(
        self,
        task_type: str,
        *,
        period_key: str | None = None,
        parameters: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> BatchRunResult | None:
        """
        Run ``task_type`` once for ``period_key`` (default: today's date).

        Returns None when a job with the same idempotency key already ran.

        Raises:
            JobLockedError: another process is running this task.
            TaskNotRegisteredError: unknown task type.
        """
        parameters = dict(parameters or {})
        period_key = period_key or self._clock.today().isoformat()
        key = job_idempotency_key(task_type, period_key, parameters.get("organization_id"))

        handle = self._locks.acquire(task_type, self._holder)
        try:
            def work(session: Session) -> BatchRunResult | None:
                executor = self.create_executor(session)
                try:
                    job = executor.submit_job(
                        job_name=f"{task_type} {period_key}",
                        task_type=task_type,
                        idempotency_key=key,
                        actor_id=self._actor_id,
                        parameters=parameters,
                        correlation_id=correlation_id,
                    )
                except BatchIdempotencyError as exc:
                    logger.info(
                        "batch_job_already_ran",
                        extra={"idempotency_key": key, "job_id": exc.existing_job_id},
                    )
                    return None
                return executor.execute_job(job.job_id, self._actor_id)

            return run_in_transaction(
                work,
                operation=f"batch:{task_type}",
                max_attempts=self._settings.transaction_max_attempts,
                session_factory=self._session_factory or get_session_factory(),
            )
        finally:
            self._locks.release(handle)
