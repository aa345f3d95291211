"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only aggregations over journal lines: per-account totals
    (trial balance, statement inputs), organization totals, per-reference and
    per-party sums used by the integrity engine, and party line listings.
Architecture position: Kernel > Selectors.  May import from models/, domain/
    and selectors/base.py.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Statements and integrity checks derive from journal lines only, never
      from ``Account.cached_balance`` or document totals.
    - Every returned amount is a Decimal rounded to cents.

Failure modes:
    - Aggregation errors propagate.  Callers never receive partial results.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import AccountType, JournalLineView, ReferenceType
from ledger_kernel.domain.money import ZERO, round_money
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalLine
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AccountTotals:
    """Debit and credit sums for one account over a window."""

    account_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    debit_total: Decimal
    credit_total: Decimal

    @property
    def balance(self) -> Decimal:
        """Net balance (debits - credits)."""
        return self.debit_total - self.credit_total


@dataclass(frozen=True)
class ReferenceTotals:
    reference_type: ReferenceType
    reference_id: UUID
    debit_total: Decimal
    credit_total: Decimal

    @property
    def difference(self) -> Decimal:
        return self.debit_total - self.credit_total


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    return round_money(Decimal(str(value)))


class LedgerSelector(BaseSelector[JournalLine]):
    """
    Aggregations over an organization's journal lines.

    Contract:
        Every query is scoped to one organization.  Date filters apply to
        ``entry_date``; ``branch_id`` filters apply when given.

    Non-goals:
        - No currency handling (single currency).
    """

    def __init__(self, session: Session):
        super().__init__(session)

    # =========================================================================
    # Account totals
    # =========================================================================

    def account_totals(
        self,
        organization_id: UUID,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        branch_id: UUID | None = None,
        account_types: tuple[AccountType, ...] | None = None,
    ) -> list[AccountTotals]:
        """Per-account debit/credit sums, ordered by account code."""
        query = (
            select(
                Account.id,
                Account.code,
                Account.name,
                Account.account_type,
                func.coalesce(func.sum(JournalLine.debit), 0).label("debit_total"),
                func.coalesce(func.sum(JournalLine.credit), 0).label("credit_total"),
            )
            .join(Account, JournalLine.account_id == Account.id)
            .where(JournalLine.organization_id == organization_id)
            .group_by(Account.id, Account.code, Account.name, Account.account_type)
            .order_by(Account.code)
        )
        if start_date is not None:
            query = query.where(JournalLine.entry_date >= start_date)
        if end_date is not None:
            query = query.where(JournalLine.entry_date <= end_date)
        if branch_id is not None:
            query = query.where(JournalLine.branch_id == branch_id)
        if account_types:
            query = query.where(Account.account_type.in_([t.value for t in account_types]))

        return [
            AccountTotals(
                account_id=row.id,
                account_code=row.code,
                account_name=row.name,
                account_type=AccountType(row.account_type),
                debit_total=_money(row.debit_total),
                credit_total=_money(row.credit_total),
            )
            for row in self.session.execute(query).all()
        ]

    def trial_balance(
        self,
        organization_id: UUID,
        as_of_date: date | None = None,
        branch_id: UUID | None = None,
    ) -> list[AccountTotals]:
        """Per-account sums for all lines dated on or before ``as_of_date``."""
        return self.account_totals(organization_id, end_date=as_of_date, branch_id=branch_id)

    # =========================================================================
    # Organization totals
    # =========================================================================

    def organization_totals(self, organization_id: UUID) -> tuple[Decimal, Decimal]:
        """All-time (Sum debit, Sum credit) for the organization."""
        row = self.session.execute(
            select(
                func.coalesce(func.sum(JournalLine.debit), 0),
                func.coalesce(func.sum(JournalLine.credit), 0),
            ).where(JournalLine.organization_id == organization_id)
        ).one()
        return _money(row[0]), _money(row[1])

    def organizations_with_lines(self) -> list[UUID]:
        return list(
            self.session.execute(
                select(JournalLine.organization_id).distinct()
            ).scalars()
        )

    # =========================================================================
    # References
    # =========================================================================

    def reference_totals(
        self,
        organization_id: UUID,
        reference_type: ReferenceType,
        reference_id: UUID,
    ) -> ReferenceTotals:
        row = self.session.execute(
            select(
                func.coalesce(func.sum(JournalLine.debit), 0),
                func.coalesce(func.sum(JournalLine.credit), 0),
            ).where(
                JournalLine.organization_id == organization_id,
                JournalLine.reference_type == ReferenceType(reference_type).value,
                JournalLine.reference_id == reference_id,
            )
        ).one()
        return ReferenceTotals(
            reference_type=ReferenceType(reference_type),
            reference_id=reference_id,
            debit_total=_money(row[0]),
            credit_total=_money(row[1]),
        )

    def totals_by_reference(
        self,
        organization_id: UUID,
        reference_type: ReferenceType,
        account_id: UUID | None = None,
    ) -> dict[UUID, ReferenceTotals]:
        """Sums per reference id of one type, optionally for one account."""
        query = (
            select(
                JournalLine.reference_id,
                func.coalesce(func.sum(JournalLine.debit), 0),
                func.coalesce(func.sum(JournalLine.credit), 0),
            )
            .where(
                JournalLine.organization_id == organization_id,
                JournalLine.reference_type == ReferenceType(reference_type).value,
            )
            .group_by(JournalLine.reference_id)
        )
        if account_id is not None:
            query = query.where(JournalLine.account_id == account_id)
        return {
            ref_id: ReferenceTotals(
                reference_type=ReferenceType(reference_type),
                reference_id=ref_id,
                debit_total=_money(debit),
                credit_total=_money(credit),
            )
            for ref_id, debit, credit in self.session.execute(query).all()
        }

    def unbalanced_references(
        self,
        organization_id: UUID,
        tolerance: Decimal = Decimal("0.000001"),
    ) -> list[ReferenceTotals]:
        """References whose lines do not net to zero."""
        query = (
            select(
                JournalLine.reference_type,
                JournalLine.reference_id,
                func.coalesce(func.sum(JournalLine.debit), 0),
                func.coalesce(func.sum(JournalLine.credit), 0),
            )
            .where(JournalLine.organization_id == organization_id)
            .group_by(JournalLine.reference_type, JournalLine.reference_id)
        )
        found = []
        for ref_type, ref_id, debit, credit in self.session.execute(query).all():
            totals = ReferenceTotals(
                reference_type=ReferenceType(ref_type),
                reference_id=ref_id,
                debit_total=_money(debit),
                credit_total=_money(credit),
            )
            if abs(totals.difference) > tolerance:
                found.append(totals)
        return found

    # =========================================================================
    # Parties
    # =========================================================================

    def party_balances(
        self,
        organization_id: UUID,
        *,
        supplier: bool = False,
    ) -> dict[UUID, Decimal]:
        """Sum(debit - credit) per customer (or supplier) id."""
        column = JournalLine.supplier_id if supplier else JournalLine.customer_id
        query = (
            select(
                column,
                func.coalesce(func.sum(JournalLine.debit), 0),
                func.coalesce(func.sum(JournalLine.credit), 0),
            )
            .where(JournalLine.organization_id == organization_id, column.is_not(None))
            .group_by(column)
        )
        return {
            party_id: _money(debit) - _money(credit)
            for party_id, debit, credit in self.session.execute(query).all()
        }

    def party_balance(
        self,
        organization_id: UUID,
        *,
        customer_id: UUID | None = None,
        supplier_id: UUID | None = None,
        before: date | None = None,
    ) -> Decimal:
        """Sum(debit - credit) over lines tagged with the party (all parties when none given)."""
        query = select(
            func.coalesce(func.sum(JournalLine.debit), 0),
            func.coalesce(func.sum(JournalLine.credit), 0),
        ).where(JournalLine.organization_id == organization_id)
        if customer_id is not None:
            query = query.where(JournalLine.customer_id == customer_id)
        if supplier_id is not None:
            query = query.where(JournalLine.supplier_id == supplier_id)
        if customer_id is None and supplier_id is None:
            query = query.where(
                (JournalLine.customer_id.is_not(None)) | (JournalLine.supplier_id.is_not(None))
            )
        if before is not None:
            query = query.where(JournalLine.entry_date < before)
        debit, credit = self.session.execute(query).one()
        return _money(debit) - _money(credit)

    def party_lines(
        self,
        organization_id: UUID,
        *,
        customer_id: UUID | None = None,
        supplier_id: UUID | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[JournalLineView]:
        query = select(JournalLine).where(JournalLine.organization_id == organization_id)
        if customer_id is not None:
            query = query.where(JournalLine.customer_id == customer_id)
        if supplier_id is not None:
            query = query.where(JournalLine.supplier_id == supplier_id)
        if start_date is not None:
            query = query.where(JournalLine.entry_date >= start_date)
        if end_date is not None:
            query = query.where(JournalLine.entry_date <= end_date)
        query = query.order_by(JournalLine.entry_date, JournalLine.created_at, JournalLine.line_no)
        return [row.to_view() for row in self.session.execute(query).scalars()]

    def lines_for_reference(
        self,
        organization_id: UUID,
        reference_types: tuple[ReferenceType, ...],
        reference_id: UUID,
    ) -> list[JournalLineView]:
        query = (
            select(JournalLine)
            .where(
                JournalLine.organization_id == organization_id,
                JournalLine.reference_type.in_([ReferenceType(t).value for t in reference_types]),
                JournalLine.reference_id == reference_id,
            )
            .order_by(JournalLine.created_at, JournalLine.line_no)
        )
        return [row.to_view() for row in self.session.execute(query).scalars()]
