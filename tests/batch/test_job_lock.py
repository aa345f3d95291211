"""
Tests for ledger_batch.services.job_lock.

The lock is taken and released in its own transactions, so these tests
use the session factory rather than the shared test session.
"""

import pytest

from ledger_batch.services.job_lock import JobLockService
from ledger_kernel.exceptions import JobLockedError


@pytest.fixture
def locks(session_factory, clock):
    return JobLockService(session_factory, clock=clock, ttl_seconds=60)


class TestAcquire:
    def test_second_holder_blocked(self, locks):
        handle = locks.acquire("ledger.nightly_check", "worker-a")

        with pytest.raises(JobLockedError) as exc_info:
            locks.acquire("ledger.nightly_check", "worker-b")

        assert exc_info.value.holder == "worker-a"
        assert handle.holder == "worker-a"

    def test_locks_are_per_job(self, locks):
        locks.acquire("ledger.nightly_check", "worker-a")

        handle = locks.acquire("ledger.backfill", "worker-b")

        assert handle.job_name == "ledger.backfill"

    def test_expiry_set_from_clock(self, locks, clock):
        handle = locks.acquire("ledger.backfill", "worker-a")

        assert (handle.expires_at - clock.now()).total_seconds() == 60

    def test_expired_lock_taken_over(self, locks, clock, captured_logs):
        stale = locks.acquire("ledger.backfill", "crashed-worker")
        clock.advance(61)

        fresh = locks.acquire("ledger.backfill", "worker-b")

        assert fresh.token != stale.token
        assert any(r["message"] == "job_lock_expired_taken_over" for r in captured_logs())

    def test_lock_still_held_at_ttl(self, locks, clock):
        locks.acquire("ledger.backfill", "worker-a")
        clock.advance(59)

        with pytest.raises(JobLockedError):
            locks.acquire("ledger.backfill", "worker-b")


class TestRelease:
    def test_release_frees_job(self, locks):
        handle = locks.acquire("ledger.backfill", "worker-a")

        assert locks.release(handle) is True
        assert locks.acquire("ledger.backfill", "worker-b").holder == "worker-b"

    def test_release_after_takeover_is_refused(self, locks, clock):
        stale = locks.acquire("ledger.backfill", "crashed-worker")
        clock.advance(61)
        locks.acquire("ledger.backfill", "worker-b")

        assert locks.release(stale) is False
        with pytest.raises(JobLockedError):
            locks.acquire("ledger.backfill", "worker-c")


@pytest.mark.parametrize("ttl", [0, -5])
def test_non_positive_ttl_rejected(session_factory, ttl):
    with pytest.raises(ValueError):
        JobLockService(session_factory, ttl_seconds=ttl)
