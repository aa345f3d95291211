"""
ledger_batch.domain.types -- Pure frozen dataclasses for the batch system.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - BatchJob carries an idempotency_key; one job per key.
    - Item results are immutable once produced.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class BatchJobStatus(str, Enum):
    """Job-level lifecycle status."""

    PENDING = "pending"  # Created, not yet started
    RUNNING = "running"  # Execution in progress
    COMPLETED = "completed"  # All items succeeded
    FAILED = "failed"  # No item succeeded, or preparation failed
    PARTIALLY_COMPLETED = "partially_completed"  # Some items failed or were skipped


class BatchItemStatus(str, Enum):
    """Per-item lifecycle status within a batch job."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Nothing to do (e.g., already posted)


# =============================================================================
# Job DTOs
# =============================================================================


@dataclass(frozen=True)
class BatchJob:
    """Immutable snapshot of a batch job.

    ``idempotency_key`` is UNIQUE: submitting the same key twice is refused.
    """

    job_id: UUID
    job_name: str  # e.g. "ledger.nightly_check 2026-10-17"
    task_type: str  # Registered task key (e.g., "ledger.backfill")
    status: BatchJobStatus
    idempotency_key: str
    parameters: dict[str, Any] = field(default_factory=dict)
    total_items: int = 0
    succeeded_items: int = 0
    failed_items: int = 0
    skipped_items: int = 0
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_by: UUID | None = None
    correlation_id: str | None = None
    error_summary: str | None = None


@dataclass(frozen=True)
class BatchItemResult:
    """Result of processing one item.  Each item runs in its own SAVEPOINT."""

    item_index: int  # 0-indexed position in the batch
    item_key: str  # Business identifier (e.g., "invoice:<id>")
    status: BatchItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class BatchRunResult:
    """Result of executing a complete batch job."""

    job_id: UUID
    status: BatchJobStatus
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    item_results: tuple[BatchItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    correlation_id: str | None = None


# =============================================================================
# Job lock
# =============================================================================


@dataclass(frozen=True)
class JobLockHandle:
    """Proof of holding a job lock.  ``token`` is needed to release it."""

    job_name: str
    token: str
    holder: str
    expires_at: datetime
