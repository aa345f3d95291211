"""
JournalLineStore -- the append-only ledger.

Responsibility:
    Validate and write postings (sets of journal lines sharing a reference),
    maintain account cached balances, mirror a posting for cancellations,
    and remove a posting for financial-edit rebooking.

Architecture position:
    Kernel > Services.  Consumes AccountDirectory output (account ids);
    consumed by the Posting Orchestrator, the Rebooking Manager and the
    Backfill service.

Invariants enforced:
    - Every line: amounts non-negative, rounded to cents, exactly one side
      nonzero (InvariantError otherwise).
    - Every posting: Sum(debit) == Sum(credit) (BalanceError otherwise).
    - Validation completes before the first row is added, so a rejected
      posting writes nothing.
    - Lines are never updated; removal is reference-scoped.
    - Each committed write or removal invalidates the organization's derived
      caches through a post-commit hook, never inside the transaction.

Failure modes:
    - ValidationError: empty posting.
    - NotFoundError: a line names an account outside the organization.

Audit relevance:
    ``posting_written``, ``posting_reversed`` and ``posting_removed`` log
    events carry the reference, line count and totals.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable
from uuid import UUID

from sqlalchemy import delete, exists, select, update
from sqlalchemy.orm import Session

from ledger_kernel.db.hooks import on_commit
from ledger_kernel.domain.dtos import JournalLineView, LineSpec, PostingRequest, ReferenceType
from ledger_kernel.domain.money import ZERO, round_money
from ledger_kernel.exceptions import BalanceError, InvariantError, NotFoundError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalLine
from ledger_kernel.services.base import BaseService

logger = get_logger("services.journal_store")


def normalize_line(line: LineSpec) -> tuple[Decimal, Decimal]:
    """Round a line to cents and check it is single-sided.

    Raises:
        InvariantError: negative amount, both sides zero, or both nonzero.
    """
    if line.debit < 0 or line.credit < 0:
        raise InvariantError("negative amount", line.debit, line.credit)
    debit = round_money(line.debit)
    credit = round_money(line.credit)
    if debit == ZERO and credit == ZERO:
        raise InvariantError("both sides zero", debit, credit)
    if debit > ZERO and credit > ZERO:
        raise InvariantError("both sides set", debit, credit)
    return debit, credit


class JournalLineStore(BaseService[JournalLine]):
    """
    Writes and removes postings.

    Contract:
        ``post_lines`` is all-or-nothing for the request.  ``delete_reference``
        and ``post_reversal`` operate on the lines currently stored for one
        (reference_type, reference_id).

    Non-goals:
        - Does NOT decide what to post; posting rules live in the modules.
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        on_ledger_changed: Callable[[UUID], None] | None = None,
    ):
        super().__init__(session)
        self._on_ledger_changed = on_ledger_changed

    # =========================================================================
    # Writes
    # =========================================================================

    def post_lines(self, request: PostingRequest) -> tuple[JournalLine, ...]:
        """
        Validate and write one posting.

        Raises:
            ValidationError: If the request has no lines.
            InvariantError: If any line is not single-sided.
            BalanceError: If debits and credits differ after rounding.
            NotFoundError: If an account is unknown in the organization.
        """
        if not request.lines:
            raise ValidationError("A posting needs at least one line", field="lines")

        normalized = [normalize_line(line) for line in request.lines]
        total_debit = sum((d for d, _ in normalized), ZERO)
        total_credit = sum((c for _, c in normalized), ZERO)
        if total_debit != total_credit:
            logger.error(
                "posting_unbalanced",
                extra={
                    "reference_type": request.reference_type.value,
                    "reference_id": str(request.reference_id),
                    "debits": total_debit,
                    "credits": total_credit,
                },
            )
            raise BalanceError(total_debit, total_credit, str(request.reference_id))

        self._check_accounts(request.organization_id, {l.account_id for l in request.lines})

        rows = []
        deltas: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for index, (line, (debit, credit)) in enumerate(zip(request.lines, normalized)):
            row = JournalLine(
                organization_id=request.organization_id,
                branch_id=request.branch_id,
                account_id=line.account_id,
                customer_id=line.customer_id,
                supplier_id=line.supplier_id,
                entry_date=request.entry_date,
                debit=debit,
                credit=credit,
                description=line.description,
                reference_type=request.reference_type.value,
                reference_id=request.reference_id,
                line_no=index,
                created_by_id=request.actor_id,
            )
            rows.append(row)
            deltas[line.account_id] += debit - credit

        self.session.add_all(rows)
        self.session.flush()
        self._apply_balance_deltas(deltas)
        self._ledger_changed(request.organization_id)

        logger.info(
            "posting_written",
            extra={
                "reference_type": request.reference_type.value,
                "reference_id": str(request.reference_id),
                "line_count": len(rows),
                "total": total_debit,
            },
        )
        return tuple(rows)

    def post_reversal(
        self,
        organization_id: UUID,
        reference_type: ReferenceType,
        reference_id: UUID,
        *,
        entry_date: date,
        actor_id: UUID,
        reversal_type: ReferenceType | None = None,
        description: str = "Reversal",
    ) -> tuple[JournalLine, ...]:
        """
        Post the mirror image of the lines stored for a reference.

        The reversal is written under ``reversal_type`` (defaults to the
        original type) and the same reference id, so the original and its
        reversal net to zero.  Returns () when nothing is posted.
        """
        originals = self._load_reference(organization_id, reference_type, reference_id)
        if not originals:
            return ()

        lines = tuple(
            LineSpec(
                account_id=row.account_id,
                debit=row.credit,
                credit=row.debit,
                description=f"{description}: {row.description}" if row.description else description,
                customer_id=row.customer_id,
                supplier_id=row.supplier_id,
            )
            for row in originals
        )
        written = self.post_lines(
            PostingRequest(
                organization_id=organization_id,
                reference_type=reversal_type or reference_type,
                reference_id=reference_id,
                entry_date=entry_date,
                actor_id=actor_id,
                lines=lines,
                branch_id=originals[0].branch_id,
            )
        )
        logger.info(
            "posting_reversed",
            extra={
                "reference_type": ReferenceType(reference_type).value,
                "reference_id": str(reference_id),
                "line_count": len(written),
            },
        )
        return written

    def delete_reference(
        self,
        organization_id: UUID,
        reference_type: ReferenceType,
        reference_id: UUID,
    ) -> int:
        """
        Delete the lines of one posting (financial-edit rebooking only).

        Returns:
            Number of lines removed.
        """
        originals = self._load_reference(organization_id, reference_type, reference_id)
        if not originals:
            return 0

        deltas: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for row in originals:
            deltas[row.account_id] -= row.debit - row.credit

        self.session.execute(
            delete(JournalLine)
            .where(JournalLine.id.in_([row.id for row in originals]))
            .execution_options(synchronize_session="fetch")
        )
        self._apply_balance_deltas(deltas)
        self._ledger_changed(organization_id)

        logger.info(
            "posting_removed",
            extra={
                "reference_type": ReferenceType(reference_type).value,
                "reference_id": str(reference_id),
                "line_count": len(originals),
            },
        )
        return len(originals)

    # =========================================================================
    # Reads
    # =========================================================================

    def has_posting(
        self, organization_id: UUID, reference_type: ReferenceType, reference_id: UUID,
    ) -> bool:
        return bool(
            self.session.execute(
                select(
                    exists().where(
                        JournalLine.organization_id == organization_id,
                        JournalLine.reference_type == ReferenceType(reference_type).value,
                        JournalLine.reference_id == reference_id,
                    )
                )
            ).scalar()
        )

    def lines_for_reference(
        self, organization_id: UUID, reference_type: ReferenceType, reference_id: UUID,
    ) -> list[JournalLineView]:
        return [
            row.to_view()
            for row in self._load_reference(organization_id, reference_type, reference_id)
        ]

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _load_reference(
        self, organization_id: UUID, reference_type: ReferenceType, reference_id: UUID,
    ) -> list[JournalLine]:
        return list(
            self.session.execute(
                select(JournalLine)
                .where(
                    JournalLine.organization_id == organization_id,
                    JournalLine.reference_type == ReferenceType(reference_type).value,
                    JournalLine.reference_id == reference_id,
                )
                .order_by(JournalLine.created_at, JournalLine.line_no)
            ).scalars()
        )

    def _check_accounts(self, organization_id: UUID, account_ids: Iterable[UUID]) -> None:
        wanted = set(account_ids)
        found = set(
            self.session.execute(
                select(Account.id).where(
                    Account.id.in_(wanted),
                    Account.organization_id == organization_id,
                )
            ).scalars()
        )
        missing = wanted - found
        if missing:
            raise NotFoundError("Account", str(sorted(str(m) for m in missing)[0]))

    def _apply_balance_deltas(self, deltas: dict[UUID, Decimal]) -> None:
        for account_id, delta in deltas.items():
            if delta == ZERO:
                continue
            self.session.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(cached_balance=Account.cached_balance + delta)
                .execution_options(synchronize_session="fetch")
            )

    def _ledger_changed(self, organization_id: UUID) -> None:
        if self._on_ledger_changed is None:
            return
        callback = self._on_ledger_changed
        on_commit(
            self.session,
            lambda: callback(organization_id),
            name="ledger_changed",
        )
