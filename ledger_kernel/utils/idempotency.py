"""
Idempotency key generation for scheduled jobs.

A scheduled job submitted twice for the same period must not run twice.
The batch executor stores the key under a UNIQUE constraint; these helpers
build and parse it.
"""

from uuid import UUID


def job_idempotency_key(
    task_type: str,
    period_key: str,
    scope: UUID | str | None = None,
) -> str:
    """
    Build the idempotency key for one run of a job.

    Format: task_type:period_key[:scope]

    Example:
        >>> job_idempotency_key("ledger.nightly_check", "2026-02-01")
        'ledger.nightly_check:2026-02-01'
    """
    if scope is None:
        return f"{task_type}:{period_key}"
    return f"{task_type}:{period_key}:{scope}"


def parse_job_idempotency_key(key: str) -> tuple[str, str, str | None]:
    """Split a key built by ``job_idempotency_key``.

    Raises:
        ValueError: If the key has fewer than two parts.
    """
    parts = key.split(":", 2)
    if len(parts) < 2:
        raise ValueError(f"Invalid job idempotency key: {key!r}")
    return parts[0], parts[1], parts[2] if len(parts) == 3 else None
