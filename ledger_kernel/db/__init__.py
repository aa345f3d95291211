"""Database layer: engine, base classes, transactions and post-commit hooks."""

from ledger_kernel.db import hooks  # noqa: F401  registers session listeners
from ledger_kernel.db.base import UUID, Base, OrganizationScoped, TrackedBase, UUIDString
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from ledger_kernel.db.hooks import on_commit

__all__ = [
    "UUID",
    "Base",
    "OrganizationScoped",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "on_commit",
    "reset_engine",
    "session_scope",
]
