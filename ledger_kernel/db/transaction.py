"""
Module: ledger_kernel.db.transaction
Responsibility: Run one business operation as a single transactional scope
    with bounded retry on transient storage conflicts.
Architecture position: Kernel > DB.  Used by entry points (scripts, job
    runner, API adapters) around Posting Orchestrator and Rebooking Manager
    calls.  Services themselves never commit.

Invariants enforced:
    - Each attempt uses a fresh Session; a failed attempt is rolled back in
      full, so no partial multi-document state is ever visible.
    - Only transient conflicts (serialization failure, deadlock, SQLite busy,
      TransientConflictError) are retried; everything else propagates on
      the first failure.
    - After ``max_attempts`` transient failures the last error propagates.

Audit relevance:
    Start, commit, retry and final failure are logged with the operation name
    and attempt number.
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import get_session_factory
from ledger_kernel.exceptions import TransientConflictError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.transaction")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3

# SQLSTATE serialization_failure, deadlock_detected
_TRANSIENT_PGCODES = frozenset({"40001", "40P01"})
_TRANSIENT_MARKERS = ("deadlock", "could not serialize", "database is locked")


def is_transient_error(exc: BaseException) -> bool:
    """True if ``exc`` is a storage conflict that a retry may resolve."""
    if isinstance(exc, TransientConflictError):
        return True
    if isinstance(exc, DBAPIError):
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in _TRANSIENT_PGCODES:
            return True
        message = str(exc.orig).lower()
        return any(marker in message for marker in _TRANSIENT_MARKERS)
    return False


def run_in_transaction(
    work: Callable[[Session], T],
    *,
    operation: str = "operation",
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    session_factory: sessionmaker[Session] | None = None,
    backoff_seconds: float = 0.05,
) -> T:
    """
    Execute ``work(session)`` and commit, retrying transient conflicts.

    Preconditions:
        - ``max_attempts`` >= 1.
        - ``work`` performs all of its writes through the given session and
          does not commit it.

    Postconditions:
        - On success the work's writes are committed and post-commit hooks
          have run; the work's return value is returned.
        - On failure nothing is committed and the error propagates.

    Raises:
        ValueError: If max_attempts < 1.
        Whatever ``work`` raises, after retries are exhausted for transient
        errors or immediately for any other error.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    factory = session_factory or get_session_factory()

    for attempt in range(1, max_attempts + 1):
        session = factory()
        logger.info(
            "transaction_started",
            extra={"operation": operation, "attempt": attempt},
        )
        try:
            result = work(session)
            session.commit()
        except Exception as exc:
            session.rollback()
            if is_transient_error(exc) and attempt < max_attempts:
                logger.warning(
                    "transaction_retry",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "error": str(exc),
                    },
                )
                if backoff_seconds:
                    time.sleep(backoff_seconds * attempt)
                continue
            logger.error(
                "transaction_failed",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "transient": is_transient_error(exc),
                },
                exc_info=True,
            )
            raise
        finally:
            session.close()

        logger.info(
            "transaction_committed",
            extra={"operation": operation, "attempt": attempt},
        )
        return result

    # Unreachable: the loop either returns or raises.
    raise RuntimeError(f"{operation}: retry loop exited without result")
