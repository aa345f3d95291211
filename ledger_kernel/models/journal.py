"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal lines, the append-only ledger.
Architecture position: Kernel > Models.  May import from db/base.py and domain/.

Invariants enforced:
    - Exactly one of debit/credit is nonzero and both are non-negative
      (CHECK constraints here, validated earlier by the Journal Line Store).
    - Lines are never updated in place (db/immutability.py).
    - A posting is the set of lines sharing (reference_type, reference_id);
      it nets to zero.  Enforced at write time by the Journal Line Store.

Audit relevance:
    ``created_by_id`` records the actor, ``reference_type``/``reference_id``
    tie each line to the business document that produced it.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString
from ledger_kernel.domain.dtos import JournalLineView, ReferenceType
from ledger_kernel.models.account import Account


class JournalLine(OrganizationScoped, TrackedBase):
    """One debit-or-credit posting against a single account."""

    __tablename__ = "journal_lines"

    __table_args__ = (
        CheckConstraint("debit >= 0 AND credit >= 0", name="chk_line_non_negative"),
        CheckConstraint(
            "(debit = 0 AND credit > 0) OR (debit > 0 AND credit = 0)",
            name="chk_line_single_sided",
        ),
        Index("idx_line_reference", "organization_id", "reference_type", "reference_id"),
        Index("idx_line_org_date", "organization_id", "entry_date"),
        Index("idx_line_account", "account_id"),
        Index("idx_line_customer", "customer_id"),
        Index("idx_line_supplier", "supplier_id"),
    )

    branch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )

    customer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    supplier_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    debit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    credit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    reference_type: Mapped[ReferenceType] = mapped_column(String(30), nullable=False)

    reference_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    line_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    account: Mapped[Account] = relationship(Account, lazy="joined")

    def to_view(self) -> JournalLineView:
        return JournalLineView(
            line_id=self.id,
            organization_id=self.organization_id,
            account_id=self.account_id,
            account_code=self.account.code,
            account_name=self.account.name,
            entry_date=self.entry_date,
            debit=self.debit,
            credit=self.credit,
            reference_type=ReferenceType(self.reference_type),
            reference_id=self.reference_id,
            description=self.description,
            branch_id=self.branch_id,
            customer_id=self.customer_id,
            supplier_id=self.supplier_id,
        )

    def __repr__(self) -> str:
        return (
            f"<JournalLine {self.reference_type}:{self.reference_id} "
            f"dr={self.debit} cr={self.credit}>"
        )
