"""
BatchTask protocol, supporting types, and TaskRegistry.

Contract:
    ``BatchTask`` defines the interface every batch task implements.
    ``RunScope`` carries per-run state (the job, the actor, run-scoped
    resources such as an account cache) from ``prepare_items`` to every
    ``execute_item`` call of the same run.
    ``TaskRegistry`` stores registered tasks keyed by ``task_type``.

Architecture:
    ledger_batch/tasks.  Imports only from ledger_batch.domain and
    SQLAlchemy; concrete tasks import the services they drive.

Invariants enforced:
    - One task per ``task_type`` string.
    - Run-scoped resources never outlive the run that created them.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, TypeVar, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_batch.domain.types import BatchItemStatus

R = TypeVar("R")


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass(frozen=True)
class BatchItemInput:
    """Input specification for a single batch item.

    Created by ``BatchTask.prepare_items()``.
    """

    item_index: int
    item_key: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchTaskResult:
    """Result returned by ``BatchTask.execute_item()``."""

    status: BatchItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass
class RunScope:
    """State shared by the items of one job run, and only that run."""

    job_id: UUID
    actor_id: UUID
    as_of: datetime
    _resources: dict[str, Any] = field(default_factory=dict, repr=False)

    def resource(self, name: str, factory: Callable[[], R]) -> R:
        """Return the run's ``name`` resource, creating it on first use."""
        if name not in self._resources:
            self._resources[name] = factory()
        return self._resources[name]

    def discard_resources(self) -> None:
        """Forget every resource; the next ``resource()`` call rebuilds it.

        The executor calls this after rolling back a failed item, since a
        cached value may refer to rows the rollback removed.
        """
        self._resources.clear()


# =============================================================================
# BatchTask Protocol
# =============================================================================


@runtime_checkable
class BatchTask(Protocol):
    """Protocol for batch task implementations.

    Contract:
        - ``task_type``: unique string key registered in TaskRegistry.
        - ``description``: human-readable label for logs.
        - ``prepare_items()``: queries eligible records, returns immutable tuple.
        - ``execute_item()``: processes ONE item within a SAVEPOINT.

    Non-goals:
        - Does NOT manage transactions; the executor owns SAVEPOINT lifecycle.
    """

    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        scope: RunScope,
    ) -> tuple[BatchItemInput, ...]:
        """Query eligible items for this run.

        Args:
            parameters: Job-level parameters from BatchJob.parameters.
            session: Database session for querying eligible records.
            scope: Run scope; ``scope.as_of`` is the clock-injected run time.
        """
        ...

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        scope: RunScope,
    ) -> BatchTaskResult:
        """Execute a single item within a SAVEPOINT."""
        ...


# =============================================================================
# TaskRegistry
# =============================================================================


class TaskRegistry:
    """Registry mapping task_type strings to BatchTask implementations.

    Contract:
        - ``register()`` adds a task; raises ValueError on duplicate.
        - ``get()`` retrieves by task_type; raises KeyError if missing.
        - ``list_tasks()`` returns all registered task_type strings.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, BatchTask] = {}

    def register(self, task: BatchTask) -> None:
        if task.task_type in self._tasks:
            raise ValueError(
                f"Task type '{task.task_type}' is already registered"
            )
        self._tasks[task.task_type] = task

    def get(self, task_type: str) -> BatchTask:
        try:
            return self._tasks[task_type]
        except KeyError:
            raise KeyError(
                f"No task registered for type '{task_type}'. "
                f"Available: {sorted(self._tasks.keys())}"
            ) from None

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._tasks.keys()))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_type: str) -> bool:
        return task_type in self._tasks
