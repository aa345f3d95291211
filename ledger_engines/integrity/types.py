"""
Integrity domain types.

Frozen inputs populated by ``IntegrityService`` and frozen findings
returned by the checker.  Pure, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from ledger_kernel.domain.dtos import JournalLineView


# =============================================================================
# Enums
# =============================================================================


class MismatchType(str, Enum):
    """Entity whose stored total is compared against the ledger."""

    INVOICE = "invoice"
    PAYMENT = "payment"
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    PURCHASE = "purchase"


# =============================================================================
# Mismatch scan
# =============================================================================


@dataclass(frozen=True)
class MismatchCandidate:
    """One stored value and its ledger re-derivation, before filtering."""

    entity_type: MismatchType
    entity_id: UUID
    stored_value: Decimal
    ledger_value: Decimal
    tolerance: Decimal

    @property
    def diff(self) -> Decimal:
        return self.stored_value - self.ledger_value


@dataclass(frozen=True)
class Mismatch:
    entity_type: MismatchType
    entity_id: UUID
    stored_value: Decimal
    ledger_value: Decimal
    diff: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.entity_type.value,
            "doc_id": str(self.entity_id),
            "stored_value": str(self.stored_value),
            "ledger_value": str(self.ledger_value),
            "diff": str(self.diff),
        }


# =============================================================================
# Organization balance
# =============================================================================


@dataclass(frozen=True)
class BalanceFinding:
    organization_id: UUID
    total_debit: Decimal
    total_credit: Decimal
    tolerance: Decimal

    @property
    def diff(self) -> Decimal:
        return self.total_debit - self.total_credit

    @property
    def is_balanced(self) -> bool:
        return abs(self.diff) <= self.tolerance


# =============================================================================
# Drill-down
# =============================================================================


@dataclass(frozen=True)
class DrillDown:
    """Source document, its journal lines and the diff, for manual audit."""

    entity_type: MismatchType
    entity_id: UUID
    document: dict[str, Any]
    lines: tuple[JournalLineView, ...]
    stored_value: Decimal
    ledger_value: Decimal
    diff: Decimal
    is_balanced: bool  # the entity's lines net to zero within tolerance


# =============================================================================
# Backfill verification
# =============================================================================


@dataclass(frozen=True)
class ReferenceCoverage:
    """Posted vs source totals for one reference type."""

    reference_type: str
    documents: int
    posted: int
    unposted_ids: tuple[UUID, ...]
    source_total: Decimal
    posted_total: Decimal
    tolerance: Decimal

    @property
    def unposted(self) -> int:
        return len(self.unposted_ids)

    @property
    def diff(self) -> Decimal:
        return self.source_total - self.posted_total

    @property
    def within_tolerance(self) -> bool:
        return abs(self.diff) <= self.tolerance


@dataclass(frozen=True)
class UnbalancedReference:
    reference_type: str
    reference_id: UUID
    debit_total: Decimal
    credit_total: Decimal

    @property
    def diff(self) -> Decimal:
        return self.debit_total - self.credit_total


@dataclass(frozen=True)
class BackfillVerification:
    organization_id: UUID
    coverage: tuple[ReferenceCoverage, ...]
    unbalanced: tuple[UnbalancedReference, ...] = field(default_factory=tuple)

    @property
    def discrepancies(self) -> tuple[str, ...]:
        found = [
            f"{c.reference_type}: source {c.source_total} vs posted {c.posted_total}"
            for c in self.coverage
            if not c.within_tolerance
        ]
        found.extend(
            f"{c.reference_type}: {c.unposted} unposted document(s)"
            for c in self.coverage
            if c.unposted
        )
        found.extend(
            f"{u.reference_type} {u.reference_id} does not net to zero ({u.diff})"
            for u in self.unbalanced
        )
        return tuple(found)

    @property
    def is_clean(self) -> bool:
        return not self.discrepancies
