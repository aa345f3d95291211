"""
Module ORM registry (``ledger_modules._orm_registry``).

Responsibility
--------------
Import every ORM module so ``Base.metadata`` knows all tables before
``create_all()`` runs, then register the append-only listeners (they
target kernel and module models alike).

Architecture position
---------------------
Modules layer utility.  Called by ``ledger_kernel.db.engine`` when the
engine is initialized and when tables are created or dropped.
"""


def import_all_orm_models() -> None:
    """Import kernel, module and batch ORM models (idempotent)."""
    import ledger_kernel.models  # noqa: F401
    # fmt: off
    import ledger_modules.parties.orm  # noqa: F401
    import ledger_modules.inventory.orm  # noqa: F401
    import ledger_modules.sales.orm  # noqa: F401
    import ledger_modules.purchasing.orm  # noqa: F401
    import ledger_modules.payments.orm  # noqa: F401
    import ledger_modules.installments.orm  # noqa: F401
    import ledger_batch.models  # noqa: F401
    # fmt: on

    from ledger_kernel.db.immutability import register_immutability_listeners

    register_immutability_listeners()
