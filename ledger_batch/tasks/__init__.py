"""Batch task protocol, registry and the ledger task implementations."""

from ledger_batch.tasks.base import (
    BatchItemInput,
    BatchTask,
    BatchTaskResult,
    RunScope,
    TaskRegistry,
)

__all__ = [
    "BatchItemInput",
    "BatchTask",
    "BatchTaskResult",
    "RunScope",
    "TaskRegistry",
]
