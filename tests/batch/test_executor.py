"""
Tests for ledger_batch.services.executor.

Validates BatchExecutor: submit_job (idempotency), execute_job
(SAVEPOINT-per-item), run-scoped resources, get_job, get_job_items.
"""

import itertools
from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_batch.domain.types import BatchItemStatus, BatchJobStatus
from ledger_batch.models.batch import BatchItemModel
from ledger_batch.services.executor import BatchExecutor
from ledger_batch.tasks.base import (
    BatchItemInput,
    BatchTaskResult,
    RunScope,
    TaskRegistry,
)
from ledger_kernel.exceptions import (
    BatchAlreadyRunningError,
    BatchIdempotencyError,
    BatchJobNotFoundError,
    TaskNotRegisteredError,
)
from ledger_kernel.models.organization import Organization


# =============================================================================
# Test tasks
# =============================================================================


def _items(count: int) -> tuple[BatchItemInput, ...]:
    return tuple(BatchItemInput(item_index=i, item_key=f"item-{i:03d}") for i in range(count))


class SuccessTask:
    """Every item succeeds."""

    @property
    def task_type(self) -> str:
        return "test.success"

    @property
    def description(self) -> str:
        return "All items succeed"

    def prepare_items(
        self, parameters: dict[str, Any], session: Session, scope: RunScope,
    ) -> tuple[BatchItemInput, ...]:
        return _items(parameters.get("item_count", 3))

    def execute_item(
        self, item: BatchItemInput, parameters: dict[str, Any],
        session: Session, scope: RunScope,
    ) -> BatchTaskResult:
        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={"processed": item.item_key},
        )


class WritingTask:
    """Writes one organization per item; odd items report failure after writing."""

    @property
    def task_type(self) -> str:
        return "test.writing"

    @property
    def description(self) -> str:
        return "Writes then maybe fails"

    def prepare_items(
        self, parameters: dict[str, Any], session: Session, scope: RunScope,
    ) -> tuple[BatchItemInput, ...]:
        return _items(4)

    def execute_item(
        self, item: BatchItemInput, parameters: dict[str, Any],
        session: Session, scope: RunScope,
    ) -> BatchTaskResult:
        session.add(Organization(name=f"org {item.item_key}", created_by_id=scope.actor_id))
        session.flush()
        if item.item_index % 2:
            return BatchTaskResult(
                status=BatchItemStatus.FAILED,
                error_code="ODD_INDEX",
                error_message=f"{item.item_key} has an odd index",
            )
        return BatchTaskResult(status=BatchItemStatus.SUCCEEDED)


class ExceptionTask:
    """The first item raises."""

    @property
    def task_type(self) -> str:
        return "test.exception"

    @property
    def description(self) -> str:
        return "Raises"

    def prepare_items(
        self, parameters: dict[str, Any], session: Session, scope: RunScope,
    ) -> tuple[BatchItemInput, ...]:
        return _items(2)

    def execute_item(
        self, item: BatchItemInput, parameters: dict[str, Any],
        session: Session, scope: RunScope,
    ) -> BatchTaskResult:
        if item.item_index == 0:
            raise RuntimeError("Unexpected error in item processing")
        return BatchTaskResult(status=BatchItemStatus.SUCCEEDED)


class PrepareFailTask:
    @property
    def task_type(self) -> str:
        return "test.prepare_fail"

    @property
    def description(self) -> str:
        return "Fails in prepare"

    def prepare_items(
        self, parameters: dict[str, Any], session: Session, scope: RunScope,
    ) -> tuple[BatchItemInput, ...]:
        raise ValueError("Cannot query eligible items")

    def execute_item(
        self, item: BatchItemInput, parameters: dict[str, Any],
        session: Session, scope: RunScope,
    ) -> BatchTaskResult:
        return BatchTaskResult(status=BatchItemStatus.SUCCEEDED)


class SkipTask:
    @property
    def task_type(self) -> str:
        return "test.skip"

    @property
    def description(self) -> str:
        return "All skipped"

    def prepare_items(
        self, parameters: dict[str, Any], session: Session, scope: RunScope,
    ) -> tuple[BatchItemInput, ...]:
        return _items(2)

    def execute_item(
        self, item: BatchItemInput, parameters: dict[str, Any],
        session: Session, scope: RunScope,
    ) -> BatchTaskResult:
        return BatchTaskResult(status=BatchItemStatus.SKIPPED)


class ScopedResourceTask:
    """Records which resource instance each item saw."""

    def __init__(self) -> None:
        self.seen: list[dict] = []

    @property
    def task_type(self) -> str:
        return "test.scoped"

    @property
    def description(self) -> str:
        return "Uses a run-scoped resource"

    def prepare_items(
        self, parameters: dict[str, Any], session: Session, scope: RunScope,
    ) -> tuple[BatchItemInput, ...]:
        return _items(3)

    def execute_item(
        self, item: BatchItemInput, parameters: dict[str, Any],
        session: Session, scope: RunScope,
    ) -> BatchTaskResult:
        cache = scope.resource("cache", dict)
        self.seen.append(cache)
        if item.item_index == 0:
            raise RuntimeError("first item fails")
        return BatchTaskResult(status=BatchItemStatus.SUCCEEDED)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def scoped_task():
    return ScopedResourceTask()


@pytest.fixture
def registry(scoped_task):
    registry = TaskRegistry()
    for task in (SuccessTask(), WritingTask(), ExceptionTask(), PrepareFailTask(), SkipTask(), scoped_task):
        registry.register(task)
    return registry


@pytest.fixture
def executor(session, registry, clock):
    return BatchExecutor(session=session, task_registry=registry, clock=clock)


@pytest.fixture
def submit(executor, actor_id):
    keys = itertools.count(1)

    def _submit(task_type: str, **parameters):
        return executor.submit_job(
            job_name=f"{task_type} run",
            task_type=task_type,
            idempotency_key=f"{task_type}:{next(keys)}",
            actor_id=actor_id,
            parameters=parameters,
        )

    return _submit


# =============================================================================
# submit_job
# =============================================================================


class TestSubmitJob:
    def test_creates_pending_job(self, executor, actor_id, clock):
        job = executor.submit_job(
            job_name="Nightly",
            task_type="test.success",
            idempotency_key="test.success:2026-03-15",
            actor_id=actor_id,
            parameters={"item_count": 2},
            correlation_id="corr-001",
        )

        assert job.status == BatchJobStatus.PENDING
        assert job.parameters == {"item_count": 2}
        assert job.created_by == actor_id
        assert job.created_at == clock.now()
        assert job.correlation_id == "corr-001"

    def test_unregistered_task_rejected(self, executor, actor_id):
        with pytest.raises(TaskNotRegisteredError):
            executor.submit_job(
                job_name="Unknown",
                task_type="nonexistent.task",
                idempotency_key="k-1",
                actor_id=actor_id,
            )

    def test_duplicate_idempotency_key_rejected(self, executor, actor_id):
        first = executor.submit_job(
            job_name="Job 1", task_type="test.success", idempotency_key="dup-key", actor_id=actor_id,
        )

        with pytest.raises(BatchIdempotencyError) as exc_info:
            executor.submit_job(
                job_name="Job 2", task_type="test.success", idempotency_key="dup-key", actor_id=actor_id,
            )

        assert exc_info.value.existing_job_id == str(first.job_id)

    def test_find_by_idempotency_key(self, executor, submit):
        job = submit("test.success")

        assert executor.find_by_idempotency_key(job.idempotency_key).job_id == job.job_id
        assert executor.find_by_idempotency_key("missing") is None


# =============================================================================
# execute_job
# =============================================================================


class TestExecuteJob:
    def test_all_succeed(self, executor, submit, actor_id):
        job = submit("test.success", item_count=3)

        result = executor.execute_job(job.job_id, actor_id)

        assert result.status == BatchJobStatus.COMPLETED
        assert (result.total_items, result.succeeded, result.failed, result.skipped) == (3, 3, 0, 0)
        assert result.item_results[0].result_data == {"processed": "item-000"}

    def test_failed_items_rolled_back_individually(self, session, executor, submit, actor_id):
        job = submit("test.writing")

        result = executor.execute_job(job.job_id, actor_id)

        assert result.status == BatchJobStatus.PARTIALLY_COMPLETED
        assert (result.succeeded, result.failed) == (2, 2)
        names = set(session.execute(select(Organization.name)).scalars())
        assert names == {"org item-000", "org item-002"}

    def test_exception_becomes_failed_item(self, executor, submit, actor_id, captured_logs):
        job = submit("test.exception")

        result = executor.execute_job(job.job_id, actor_id)

        assert result.status == BatchJobStatus.PARTIALLY_COMPLETED
        assert result.item_results[0].error_code == "UNHANDLED_EXCEPTION"
        assert "Unexpected error" in result.item_results[0].error_message
        assert any(r["message"] == "batch_item_failed" for r in captured_logs())

    def test_prepare_failure_fails_job(self, executor, submit, actor_id):
        job = submit("test.prepare_fail")

        result = executor.execute_job(job.job_id, actor_id)

        assert result.status == BatchJobStatus.FAILED
        assert result.total_items == 0
        assert "Cannot query eligible items" in executor.get_job(job.job_id).error_summary

    def test_skipped_items_complete_the_job(self, executor, submit, actor_id):
        job = submit("test.skip")

        result = executor.execute_job(job.job_id, actor_id)

        assert result.status == BatchJobStatus.COMPLETED
        assert result.skipped == 2

    def test_empty_batch_completes(self, executor, submit, actor_id):
        job = submit("test.success", item_count=0)

        result = executor.execute_job(job.job_id, actor_id)

        assert result.status == BatchJobStatus.COMPLETED
        assert result.total_items == 0

    def test_resources_discarded_after_failed_item(self, executor, submit, actor_id, scoped_task):
        job = submit("test.scoped")

        executor.execute_job(job.job_id, actor_id)

        first, second, third = scoped_task.seen
        assert first is not second
        assert second is third

    def test_unknown_job(self, executor, actor_id):
        with pytest.raises(BatchJobNotFoundError):
            executor.execute_job(uuid4(), actor_id)

    def test_job_runs_once(self, executor, submit, actor_id):
        job = submit("test.success")
        executor.execute_job(job.job_id, actor_id)

        with pytest.raises(BatchAlreadyRunningError):
            executor.execute_job(job.job_id, actor_id)


# =============================================================================
# Queries
# =============================================================================


class TestQueries:
    def test_job_counters_persisted(self, executor, submit, actor_id):
        job = submit("test.writing")
        executor.execute_job(job.job_id, actor_id)

        stored = executor.get_job(job.job_id)

        assert stored.status == BatchJobStatus.PARTIALLY_COMPLETED
        assert (stored.total_items, stored.succeeded_items, stored.failed_items) == (4, 2, 2)
        assert stored.error_summary == "2 item(s) failed"

    def test_items_in_order(self, session, executor, submit, actor_id):
        job = submit("test.writing")
        executor.execute_job(job.job_id, actor_id)

        items = executor.get_job_items(job.job_id)

        assert [i.item_key for i in items] == ["item-000", "item-001", "item-002", "item-003"]
        assert [i.status for i in items] == [
            BatchItemStatus.SUCCEEDED,
            BatchItemStatus.FAILED,
            BatchItemStatus.SUCCEEDED,
            BatchItemStatus.FAILED,
        ]
        assert items[1].error_code == "ODD_INDEX"
        assert len(session.execute(select(BatchItemModel)).scalars().all()) == 4

    def test_get_unknown_job(self, executor):
        with pytest.raises(BatchJobNotFoundError):
            executor.get_job(uuid4())
