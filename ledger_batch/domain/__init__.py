"""Pure batch DTOs and enums."""

from ledger_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJob,
    BatchJobStatus,
    BatchRunResult,
    JobLockHandle,
)

__all__ = [
    "BatchItemResult",
    "BatchItemStatus",
    "BatchJob",
    "BatchJobStatus",
    "BatchRunResult",
    "JobLockHandle",
]
