"""
Module: ledger_kernel.domain.dtos
Responsibility: Frozen value objects passed between the posting layer and the
    Journal Line Store: line specifications, posting requests, account roles
    and chart entries, plus the read-side view of a persisted line.
Architecture position: Kernel > Domain.  Pure, zero I/O.  Imports nothing
    from db/, models/ or services/.

Invariants enforced here:
    - ``LineSpec`` amounts are Decimals (floats rejected by ``to_decimal``).
    - ``PostingRequest.lines`` is an immutable tuple.
    Single-sidedness and balance are enforced by the Journal Line Store so
    that every write path, not just the orchestrator, is covered.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.domain.money import ZERO, to_decimal


class ReferenceType(str, Enum):
    """What kind of business document owns a posting."""

    INVOICE = "invoice"
    PURCHASE = "purchase"
    PAYMENT = "payment"
    ADJUSTMENT = "adjustment"
    PURCHASE_RETURN = "purchase_return"
    MANUAL = "manual"


class AccountType(str, Enum):
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"

    @property
    def is_debit_normal(self) -> bool:
        return self in (AccountType.ASSET, AccountType.EXPENSE)


class AccountRole(str, Enum):
    """Semantic account slots the posting rules write to."""

    CASH = "CASH"
    BANK = "BANK"
    UPI_RECEIVABLE = "UPI_RECEIVABLE"
    CARD_RECEIVABLE = "CARD_RECEIVABLE"
    ACCOUNTS_RECEIVABLE = "ACCOUNTS_RECEIVABLE"
    INVENTORY = "INVENTORY"
    ACCOUNTS_PAYABLE = "ACCOUNTS_PAYABLE"
    TAX_PAYABLE = "TAX_PAYABLE"
    OPENING_BALANCE_EQUITY = "OPENING_BALANCE_EQUITY"
    SALES = "SALES"
    INVENTORY_GAIN = "INVENTORY_GAIN"
    COGS = "COGS"
    INVENTORY_SHRINKAGE = "INVENTORY_SHRINKAGE"


@dataclass(frozen=True)
class ChartEntry:
    """One configured chart-of-accounts slot."""

    role: AccountRole
    code: str
    name: str
    account_type: AccountType


@dataclass(frozen=True)
class LineSpec:
    """One side of a posting before it is written."""

    account_id: UUID
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str = ""
    customer_id: UUID | None = None
    supplier_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "debit", to_decimal(self.debit))
        object.__setattr__(self, "credit", to_decimal(self.credit))

    @classmethod
    def dr(cls, account_id: UUID, amount: Decimal, description: str = "", **parties) -> LineSpec:
        return cls(account_id=account_id, debit=amount, description=description, **parties)

    @classmethod
    def cr(cls, account_id: UUID, amount: Decimal, description: str = "", **parties) -> LineSpec:
        return cls(account_id=account_id, credit=amount, description=description, **parties)

    def mirrored(self, description: str | None = None) -> LineSpec:
        """The reversing line: debit and credit swapped."""
        return replace(
            self,
            debit=self.credit,
            credit=self.debit,
            description=self.description if description is None else description,
        )


@dataclass(frozen=True)
class PostingRequest:
    """A set of lines sharing one reference, written all-or-nothing."""

    organization_id: UUID
    reference_type: ReferenceType
    reference_id: UUID
    entry_date: date
    actor_id: UUID
    lines: tuple[LineSpec, ...] = field(default_factory=tuple)
    branch_id: UUID | None = None

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)


@dataclass(frozen=True)
class JournalLineView:
    """Read-side snapshot of a persisted journal line."""

    line_id: UUID
    organization_id: UUID
    account_id: UUID
    account_code: str
    account_name: str
    entry_date: date
    debit: Decimal
    credit: Decimal
    reference_type: ReferenceType
    reference_id: UUID
    description: str
    branch_id: UUID | None = None
    customer_id: UUID | None = None
    supplier_id: UUID | None = None
