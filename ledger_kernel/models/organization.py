"""
Module: ledger_kernel.models.organization
Responsibility: ORM persistence for the tenant boundary.
Architecture position: Kernel > Models.  May import from db/base.py only.

Every other tenant-owned row carries an ``organization_id``; the column is
not a foreign key so that operational stores owned by other services can
reference organizations created elsewhere.
"""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class Organization(TrackedBase):
    """A tenant.  Nothing is ever shared between organizations."""

    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Organization {self.name}>"
