"""
BatchExecutor -- SAVEPOINT-per-item batch execution engine.

Contract:
    Orchestrates batch job lifecycle: submit (with idempotency), execute
    (SAVEPOINT per item), query.

Architecture: ledger_batch/services.  Imports from ledger_batch.domain,
    ledger_batch.models, ledger_batch.tasks and the kernel.

Invariants enforced:
    - SAVEPOINT isolation per item: one failure doesn't abort the batch.
    - Idempotency via UNIQUE idempotency_key.
    - All timestamps from the injected Clock.
    - Concurrency guard: SELECT ... FOR UPDATE on the job row.
    - Run-scoped resources are discarded after every rolled-back item.
"""

from __future__ import annotations

import time
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJob,
    BatchJobStatus,
    BatchRunResult,
)
from ledger_batch.models.batch import BatchItemModel, BatchJobModel
from ledger_batch.tasks.base import RunScope, TaskRegistry
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    BatchAlreadyRunningError,
    BatchIdempotencyError,
    BatchJobNotFoundError,
    TaskNotRegisteredError,
)
from ledger_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.executor")


class BatchExecutor:
    """Batch execution engine with SAVEPOINT-per-item isolation.

    Contract:
        - ``submit_job()`` creates a PENDING job (idempotency check).
        - ``execute_job()`` runs the full batch with per-item SAVEPOINTs.
        - ``get_job()`` / ``get_job_items()`` / ``find_by_idempotency_key()``
          for queries.

    Non-goals:
        - Does NOT call ``session.commit()``; the caller controls boundaries.
        - Does NOT cancel running jobs: every item is idempotent or
          read-only, so a killed run is simply run again.
    """

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        clock: Clock | None = None,
    ):
        self._session = session
        self._task_registry = task_registry
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def submit_job(
        self,
        job_name: str,
        task_type: str,
        idempotency_key: str,
        actor_id: UUID,
        parameters: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> BatchJob:
        """Create a new PENDING batch job.

        Raises:
            TaskNotRegisteredError: If task_type is not in the registry.
            BatchIdempotencyError: If idempotency_key is already used.
        """
        if task_type not in self._task_registry:
            raise TaskNotRegisteredError(
                task_type, self._task_registry.list_tasks(),
            )

        existing = self.find_by_idempotency_key(idempotency_key)
        if existing is not None:
            raise BatchIdempotencyError(idempotency_key, str(existing.job_id))

        now = self._clock.now()
        dto = BatchJob(
            job_id=uuid4(),
            job_name=job_name,
            task_type=task_type,
            status=BatchJobStatus.PENDING,
            idempotency_key=idempotency_key,
            parameters=parameters or {},
            created_at=now,
            created_by=actor_id,
            correlation_id=correlation_id,
        )

        model = BatchJobModel.from_dto(dto, created_by_id=actor_id)
        model.created_at = now
        self._session.add(model)
        self._session.flush()

        logger.info(
            "batch_job_submitted",
            extra={
                "job_id": str(dto.job_id),
                "job_name": job_name,
                "task_type": task_type,
                "idempotency_key": idempotency_key,
            },
        )
        return dto

    # -------------------------------------------------------------------------
    # Execute
    # -------------------------------------------------------------------------

    def execute_job(
        self,
        job_id: UUID,
        actor_id: UUID,
    ) -> BatchRunResult:
        """Execute a PENDING job with SAVEPOINT-per-item isolation.

        Raises:
            BatchJobNotFoundError: If job_id does not exist.
            BatchAlreadyRunningError: If the job is not PENDING.
        """
        start_time = time.monotonic()

        job_model = self._session.execute(
            select(BatchJobModel)
            .where(BatchJobModel.id == job_id)
            .with_for_update()
        ).scalar_one_or_none()

        if job_model is None:
            raise BatchJobNotFoundError(str(job_id))

        if job_model.status != BatchJobStatus.PENDING.value:
            raise BatchAlreadyRunningError(job_model.job_name, str(job_id))

        task = self._task_registry.get(job_model.task_type)

        now = self._clock.now()
        job_model.status = BatchJobStatus.RUNNING.value
        job_model.started_at = now
        self._session.flush()

        scope = RunScope(job_id=job_id, actor_id=actor_id, as_of=now)
        parameters = job_model.parameters or {}

        with LogContext.bind(job_id=str(job_id)):
            logger.info(
                "batch_job_started",
                extra={"job_name": job_model.job_name, "task_type": job_model.task_type},
            )
            try:
                items = task.prepare_items(
                    parameters=parameters,
                    session=self._session,
                    scope=scope,
                )
            except Exception as exc:
                logger.error(
                    "batch_prepare_failed",
                    extra={"task_type": job_model.task_type},
                    exc_info=True,
                )
                return self._fail_job(job_model, f"prepare_items failed: {exc}", start_time)

            job_model.total_items = len(items)
            self._session.flush()

            succeeded = 0
            failed = 0
            skipped = 0
            item_results: list[BatchItemResult] = []

            for batch_item in items:
                item_start = time.monotonic()
                item_started_at = self._clock.now()

                savepoint = self._session.begin_nested()
                try:
                    result = task.execute_item(
                        item=batch_item,
                        parameters=parameters,
                        session=self._session,
                        scope=scope,
                    )
                    if result.status == BatchItemStatus.SUCCEEDED:
                        savepoint.commit()
                        succeeded += 1
                    elif result.status == BatchItemStatus.SKIPPED:
                        savepoint.rollback()
                        skipped += 1
                    else:
                        savepoint.rollback()
                        scope.discard_resources()
                        failed += 1
                        logger.warning(
                            "batch_item_failed",
                            extra={
                                "item_key": batch_item.item_key,
                                "error_code": result.error_code,
                                "error": result.error_message,
                            },
                        )

                    item_result = BatchItemResult(
                        item_index=batch_item.item_index,
                        item_key=batch_item.item_key,
                        status=result.status,
                        error_code=result.error_code,
                        error_message=result.error_message,
                        result_data=result.result_data,
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                        started_at=item_started_at,
                        completed_at=self._clock.now(),
                    )

                except Exception as exc:
                    savepoint.rollback()
                    scope.discard_resources()
                    failed += 1
                    logger.error(
                        "batch_item_failed",
                        extra={
                            "item_key": batch_item.item_key,
                            "error_code": "UNHANDLED_EXCEPTION",
                            "error": str(exc),
                        },
                        exc_info=True,
                    )
                    item_result = BatchItemResult(
                        item_index=batch_item.item_index,
                        item_key=batch_item.item_key,
                        status=BatchItemStatus.FAILED,
                        error_code="UNHANDLED_EXCEPTION",
                        error_message=str(exc),
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                        started_at=item_started_at,
                        completed_at=self._clock.now(),
                    )

                item_results.append(item_result)

                item_model = BatchItemModel.from_dto(
                    item_result, job_id=job_id, created_by_id=actor_id,
                )
                item_model.created_at = self._clock.now()
                self._session.add(item_model)

            job_model.succeeded_items = succeeded
            job_model.failed_items = failed
            job_model.skipped_items = skipped

            # Skipped items are already done (idempotent re-run), not failures.
            if failed == 0:
                job_model.status = BatchJobStatus.COMPLETED.value
            elif succeeded == 0 and skipped == 0:
                job_model.status = BatchJobStatus.FAILED.value
            else:
                job_model.status = BatchJobStatus.PARTIALLY_COMPLETED.value

            completed_at = self._clock.now()
            job_model.completed_at = completed_at
            total_duration = int((time.monotonic() - start_time) * 1000)

            if failed > 0:
                job_model.error_summary = f"{failed} item(s) failed"

            self._session.flush()

            logger.info(
                "batch_job_finished",
                extra={
                    "job_name": job_model.job_name,
                    "status": job_model.status,
                    "succeeded": succeeded,
                    "failed": failed,
                    "skipped": skipped,
                    "duration_ms": total_duration,
                },
            )

        return BatchRunResult(
            job_id=job_id,
            status=BatchJobStatus(job_model.status),
            total_items=len(items),
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            item_results=tuple(item_results),
            started_at=job_model.started_at,
            completed_at=completed_at,
            duration_ms=total_duration,
            correlation_id=job_model.correlation_id,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_job(self, job_id: UUID) -> BatchJob:
        """
        Raises:
            BatchJobNotFoundError: If job_id does not exist.
        """
        model = self._session.get(BatchJobModel, job_id)
        if model is None:
            raise BatchJobNotFoundError(str(job_id))
        return model.to_dto()

    def find_by_idempotency_key(self, idempotency_key: str) -> BatchJob | None:
        model = self._session.execute(
            select(BatchJobModel).where(
                BatchJobModel.idempotency_key == idempotency_key,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def get_job_items(self, job_id: UUID) -> tuple[BatchItemResult, ...]:
        models = self._session.execute(
            select(BatchItemModel)
            .where(BatchItemModel.job_id == job_id)
            .order_by(BatchItemModel.item_index)
        ).scalars().all()

        return tuple(m.to_dto() for m in models)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _fail_job(
        self,
        job_model: BatchJobModel,
        error_summary: str,
        start_time: float,
    ) -> BatchRunResult:
        job_model.status = BatchJobStatus.FAILED.value
        job_model.completed_at = self._clock.now()
        job_model.error_summary = error_summary
        self._session.flush()

        return BatchRunResult(
            job_id=job_model.id,
            status=BatchJobStatus.FAILED,
            total_items=0,
            succeeded=0,
            failed=0,
            skipped=0,
            started_at=job_model.started_at,
            completed_at=job_model.completed_at,
            duration_ms=int((time.monotonic() - start_time) * 1000),
            correlation_id=job_model.correlation_id,
        )
