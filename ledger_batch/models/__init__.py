"""Batch ORM models."""

from ledger_batch.models.batch import BatchItemModel, BatchJobModel, JobLockModel

__all__ = ["BatchItemModel", "BatchJobModel", "JobLockModel"]
