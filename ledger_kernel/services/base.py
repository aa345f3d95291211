"""
BaseService -- abstract base for all write-side services.

Responsibility:
    Common constructor and session-handling contract.  Every service
    receives a SQLAlchemy ``Session`` and persists through
    ``session.flush()``, never ``session.commit()``.

Invariants enforced:
    Transaction boundaries belong to the caller (``session_scope``,
    ``run_in_transaction`` or the batch executor).  A business operation
    spanning several services therefore commits or aborts as one unit.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Read-only reporting queries live in selectors.
    """

    def __init__(self, session: Session):
        self.session = session
