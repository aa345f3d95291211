"""
Module: ledger_kernel.db.hooks
Responsibility: Post-commit hooks.  Side effects that must not survive an
    aborted transaction (opening-balance cache invalidation, alert
    notifications) are queued on the Session and executed only after the
    outermost transaction commits.
Architecture position: Kernel > DB.  Registers global SessionEvents
    listeners on import; imported by the kernel package so registration
    always happens before any session is used.

Invariants enforced:
    - A hook runs at most once, after the root transaction commits.
    - Releasing a SAVEPOINT does not run hooks; rolling back the root
      transaction discards every queued hook.
    - A failing hook is logged and never affects the committed data or the
      remaining hooks.
"""

from __future__ import annotations

from typing import Callable

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from ledger_kernel.logging_config import get_logger

logger = get_logger("db.hooks")

_HOOKS_KEY = "ledger_post_commit_hooks"


def on_commit(session: Session, callback: Callable[[], None], *, name: str | None = None) -> None:
    """Queue ``callback`` to run after ``session``'s transaction commits."""
    hooks = session.info.setdefault(_HOOKS_KEY, [])
    hooks.append((name or getattr(callback, "__name__", "hook"), callback))


def pending_hooks(session: Session) -> tuple[str, ...]:
    """Names of the hooks currently queued on ``session``."""
    return tuple(name for name, _ in session.info.get(_HOOKS_KEY, ()))


@event.listens_for(Session, "after_commit")
def _run_post_commit_hooks(session: Session) -> None:
    # after_commit also fires when a SAVEPOINT is released
    if session.in_nested_transaction():
        return
    hooks = session.info.pop(_HOOKS_KEY, [])
    for name, callback in hooks:
        try:
            callback()
        except Exception:
            logger.error("post_commit_hook_failed", extra={"hook": name}, exc_info=True)


@event.listens_for(Session, "after_soft_rollback")
def _discard_post_commit_hooks(session: Session, previous_transaction: SessionTransaction) -> None:
    if previous_transaction.parent is not None:
        return
    discarded = session.info.pop(_HOOKS_KEY, [])
    if discarded:
        logger.debug(
            "post_commit_hooks_discarded",
            extra={"hooks": [name for name, _ in discarded]},
        )
