"""
JobLockService -- mutual exclusion for scheduled jobs across processes.

Contract:
    ``acquire()`` takes the lock for a job name or raises JobLockedError;
    ``release()`` gives it back.  Both run in their own short transaction
    so the lock is visible to other processes before the job starts and
    survives a job that rolls back.

Invariants enforced:
    - At most one unexpired holder per job name (UNIQUE job_name row,
      read FOR UPDATE).
    - An expired lock is taken over, so a crashed holder blocks the job
      for at most the TTL.
    - Release only succeeds with the token issued at acquisition.
"""

from __future__ import annotations

import secrets
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ledger_batch.domain.types import JobLockHandle
from ledger_batch.models.batch import JobLockModel
from ledger_kernel.db.transaction import run_in_transaction
from ledger_kernel.domain.clock import Clock, SystemClock, as_utc
from ledger_kernel.exceptions import JobLockedError
from ledger_kernel.logging_config import get_logger

logger = get_logger("batch.job_lock")

DEFAULT_LOCK_TTL_SECONDS = 600


class JobLockService:

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._ttl = timedelta(seconds=ttl_seconds)

    def acquire(self, job_name: str, holder: str) -> JobLockHandle:
        """
        Raises:
            JobLockedError: another holder's lock has not expired.
        """
        token = secrets.token_hex(16)

        def work(session: Session) -> JobLockHandle:
            now = self._clock.now()
            expires_at = now + self._ttl
            row = session.execute(
                select(JobLockModel)
                .where(JobLockModel.job_name == job_name)
                .with_for_update()
            ).scalar_one_or_none()

            if row is None:
                session.add(JobLockModel(
                    job_name=job_name,
                    token=token,
                    holder=holder,
                    acquired_at=now,
                    expires_at=expires_at,
                ))
                try:
                    session.flush()
                except IntegrityError:
                    # Another process inserted the row first.
                    raise JobLockedError(job_name) from None
            elif as_utc(row.expires_at) > now:
                raise JobLockedError(job_name, row.holder)
            else:
                logger.warning(
                    "job_lock_expired_taken_over",
                    extra={"job_name": job_name, "previous_holder": row.holder},
                )
                row.token = token
                row.holder = holder
                row.acquired_at = now
                row.expires_at = expires_at

            return JobLockHandle(job_name=job_name, token=token, holder=holder, expires_at=expires_at)

        handle = run_in_transaction(
            work,
            operation=f"acquire_job_lock:{job_name}",
            max_attempts=1,
            session_factory=self._session_factory,
        )
        logger.info(
            "job_lock_acquired",
            extra={"job_name": job_name, "holder": holder, "expires_at": handle.expires_at.isoformat()},
        )
        return handle

    def release(self, handle: JobLockHandle) -> bool:
        """Drop the lock if ``handle`` still owns it.  False when it had expired and moved on."""

        def work(session: Session) -> int:
            return session.execute(
                delete(JobLockModel).where(
                    JobLockModel.job_name == handle.job_name,
                    JobLockModel.token == handle.token,
                )
            ).rowcount

        released = run_in_transaction(
            work,
            operation=f"release_job_lock:{handle.job_name}",
            max_attempts=1,
            session_factory=self._session_factory,
        ) > 0
        if released:
            logger.info("job_lock_released", extra={"job_name": handle.job_name})
        else:
            logger.warning(
                "job_lock_release_lost",
                extra={"job_name": handle.job_name, "holder": handle.holder},
            )
        return released
