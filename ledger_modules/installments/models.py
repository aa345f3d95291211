"""
Installment Domain Models (``ledger_modules.installments.models``).

Responsibility
--------------
Enums and frozen value objects for installment schedules, payment
allocation and reconciliation results.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.domain.money import ZERO


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class PlanStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"


class ReconciliationStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    FAILED = "failed"


@dataclass(frozen=True)
class ScheduledInstallment:
    """One row of a freshly computed schedule."""

    number: int
    due_date: date
    principal: Decimal
    interest: Decimal

    @property
    def total(self) -> Decimal:
        return self.principal + self.interest


@dataclass(frozen=True)
class InstallmentState:
    """What allocation needs to know about one stored installment."""

    number: int
    due_date: date
    total: Decimal
    paid_amount: Decimal
    status: InstallmentStatus

    @property
    def outstanding(self) -> Decimal:
        return max(self.total - self.paid_amount, ZERO)


@dataclass(frozen=True)
class InstallmentAllocation:
    """Amount applied to one installment and its resulting state."""

    number: int
    amount: Decimal
    paid_amount: Decimal
    status: InstallmentStatus

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "amount": str(self.amount),
            "paid_amount": str(self.paid_amount),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class AllocationResult:
    """Outcome of spreading one amount over a plan."""

    allocations: tuple[InstallmentAllocation, ...] = field(default_factory=tuple)
    advance: Decimal = ZERO

    @property
    def applied_total(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO)


@dataclass(frozen=True)
class ReconciliationResult:
    """Returned by ``reconcile_payment``."""

    reconciliation_id: UUID
    plan_id: UUID
    applied_installments: tuple[InstallmentAllocation, ...]
    remaining_advance: Decimal
    plan_status: PlanStatus


@dataclass(frozen=True)
class InstallmentSummary:
    """Counts and amounts per status for one organization."""

    organization_id: UUID
    reconciliations_by_status: dict[str, int]
    reconciliation_amounts_by_status: dict[str, Decimal]
    installments_by_status: dict[str, int]
    installment_outstanding_by_status: dict[str, Decimal]
