"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the organization-scoped chart of accounts,
    the target of every journal line.
Architecture position: Kernel > Models.  May import from db/base.py and domain/.

Invariants enforced:
    - ``code`` is unique per organization (uq_account_org_code).
    - ``code``, ``account_type`` and ``organization_id`` never change once the
      row exists (db/immutability.py).
    - Accounts are never deleted; journal lines reference them by id.

Audit relevance:
    ``cached_balance`` is a running Sum(debit) - Sum(credit) maintained by the
    Journal Line Store with SQL-level increments.  It is a convenience read,
    not the source of truth; statements always aggregate journal lines.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import OrganizationScoped, TrackedBase
from ledger_kernel.domain.dtos import AccountType


class Account(OrganizationScoped, TrackedBase):
    """
    Chart of Accounts entry.

    Contract:
        (organization_id, code) is unique.  ``account_type`` decides the
        statement an account feeds and its normal side.

    Non-goals:
        - Group accounts (``is_group``) are carried for callers that build
          hierarchies; the posting rules never post to them.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_account_org_code"),
        Index("idx_account_org_type", "organization_id", "account_type"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    is_group: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    cached_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    @property
    def is_debit_normal(self) -> bool:
        return AccountType(self.account_type).is_debit_normal

    @property
    def natural_balance(self) -> Decimal:
        """``cached_balance`` expressed on the account's normal side."""
        if self.is_debit_normal:
            return self.cached_balance
        return -self.cached_balance

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"
