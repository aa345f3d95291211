"""
Tests for ledger_kernel.db.transaction and ledger_kernel.db.hooks.

run_in_transaction: one fresh session per attempt, commit on success,
retry only transient storage conflicts.  on_commit: hooks run once after
the root commit and never after a rollback.
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from ledger_kernel.db.hooks import on_commit, pending_hooks
from ledger_kernel.db.transaction import is_transient_error, run_in_transaction
from ledger_kernel.exceptions import TransientConflictError, ValidationError
from ledger_kernel.models.organization import Organization


def _count_organizations(session) -> int:
    return session.execute(select(func.count()).select_from(Organization)).scalar()


class _PgError(Exception):
    def __init__(self, pgcode):
        super().__init__("conflict")
        self.pgcode = pgcode


# =============================================================================
# Transient error classification
# =============================================================================


class TestIsTransientError:
    def test_transient_conflict_error(self):
        assert is_transient_error(TransientConflictError())

    @pytest.mark.parametrize("pgcode", ["40001", "40P01"])
    def test_postgres_serialization_and_deadlock(self, pgcode):
        assert is_transient_error(OperationalError("UPDATE", {}, _PgError(pgcode)))

    def test_sqlite_locked(self):
        assert is_transient_error(OperationalError("INSERT", {}, Exception("database is locked")))

    def test_other_errors_are_not_transient(self):
        assert not is_transient_error(ValidationError("bad input"))
        assert not is_transient_error(OperationalError("SELECT", {}, _PgError("23505")))


# =============================================================================
# run_in_transaction
# =============================================================================


class TestRunInTransaction:
    def test_commits_work(self, session_factory, actor_id, session):
        def work(s):
            s.add(Organization(name="Committed", created_by_id=actor_id))
            return "done"

        assert run_in_transaction(work, operation="test", session_factory=session_factory) == "done"
        assert _count_organizations(session) == 1

    def test_transient_error_retried_with_fresh_session(self, session_factory, actor_id, session, captured_logs):
        seen_sessions = []

        def work(s):
            seen_sessions.append(s)
            s.add(Organization(name=f"Attempt {len(seen_sessions)}", created_by_id=actor_id))
            s.flush()
            if len(seen_sessions) == 1:
                raise TransientConflictError()
            return len(seen_sessions)

        attempts = run_in_transaction(
            work, operation="retry", session_factory=session_factory, backoff_seconds=0,
        )

        assert attempts == 2
        assert seen_sessions[0] is not seen_sessions[1]
        assert session.execute(select(Organization.name)).scalars().all() == ["Attempt 2"]
        assert any(r["message"] == "transaction_retry" for r in captured_logs())

    def test_gives_up_after_max_attempts(self, session_factory):
        calls = []

        def work(s):
            calls.append(1)
            raise TransientConflictError()

        with pytest.raises(TransientConflictError):
            run_in_transaction(
                work, max_attempts=3, session_factory=session_factory, backoff_seconds=0,
            )
        assert len(calls) == 3

    def test_validation_error_not_retried_and_rolled_back(self, session_factory, actor_id, session):
        calls = []

        def work(s):
            calls.append(1)
            s.add(Organization(name="Rolled back", created_by_id=actor_id))
            s.flush()
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            run_in_transaction(work, session_factory=session_factory, backoff_seconds=0)

        assert len(calls) == 1
        assert _count_organizations(session) == 0

    def test_max_attempts_must_be_positive(self, session_factory):
        with pytest.raises(ValueError):
            run_in_transaction(lambda s: None, max_attempts=0, session_factory=session_factory)

    def test_hooks_run_after_commit_only(self, session_factory):
        ran = []

        def work(s):
            on_commit(s, lambda: ran.append("after"), name="probe")
            assert ran == []

        run_in_transaction(work, session_factory=session_factory)
        assert ran == ["after"]


# =============================================================================
# Post-commit hooks
# =============================================================================


class TestPostCommitHooks:
    def test_pending_hooks_listed(self, session):
        on_commit(session, lambda: None, name="first")
        on_commit(session, lambda: None, name="second")

        assert pending_hooks(session) == ("first", "second")

    def test_savepoint_release_does_not_run_hooks(self, session, actor_id):
        ran = []
        session.add(Organization(name="Outer", created_by_id=actor_id))
        session.flush()
        on_commit(session, lambda: ran.append(1), name="probe")

        with session.begin_nested():
            session.add(Organization(name="Inner", created_by_id=actor_id))

        assert ran == []
        session.commit()
        assert ran == [1]

    def test_savepoint_rollback_keeps_outer_hooks(self, session, actor_id):
        ran = []
        session.add(Organization(name="Outer", created_by_id=actor_id))
        session.flush()
        on_commit(session, lambda: ran.append(1), name="probe")

        savepoint = session.begin_nested()
        session.add(Organization(name="Inner", created_by_id=actor_id))
        session.flush()
        savepoint.rollback()

        session.commit()
        assert ran == [1]

    def test_root_rollback_discards_hooks(self, session, actor_id):
        ran = []
        session.add(Organization(name="Discarded", created_by_id=actor_id))
        session.flush()
        on_commit(session, lambda: ran.append(1), name="probe")

        session.rollback()
        session.commit()

        assert ran == []
        assert pending_hooks(session) == ()

    def test_failing_hook_does_not_stop_others(self, session, actor_id, captured_logs):
        ran = []

        def boom():
            raise RuntimeError("notifier down")

        session.add(Organization(name="Committed", created_by_id=actor_id))
        on_commit(session, boom, name="boom")
        on_commit(session, lambda: ran.append(1), name="after_boom")
        session.commit()

        assert ran == [1]
        failures = [r for r in captured_logs() if r["message"] == "post_commit_hook_failed"]
        assert failures[0]["hook"] == "boom"
        assert _count_organizations(session) == 1
