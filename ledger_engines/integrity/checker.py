"""
IntegrityChecker -- pure engine behind the reconciliation scans.

Filters, ranks and caps mismatch candidates; evaluates organization
balance; summarises backfill coverage.  All inputs are frozen dataclasses
or plain mappings populated by the service layer.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from uuid import UUID

from ledger_engines.integrity.types import (
    BalanceFinding,
    Mismatch,
    MismatchCandidate,
    ReferenceCoverage,
)
from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.money import ZERO, exceeds_tolerance

DEFAULT_MISMATCH_LIMIT = 20


class IntegrityChecker:
    """Pure engine.  No I/O, no database access.

    Usage:
        checker = IntegrityChecker()
        top = checker.rank_mismatches(candidates=candidates, limit=20)
    """

    @traced_engine("integrity", "1.0", fingerprint_fields=("limit",))
    def rank_mismatches(
        self,
        *,
        candidates: Iterable[MismatchCandidate],
        limit: int = DEFAULT_MISMATCH_LIMIT,
    ) -> tuple[Mismatch, ...]:
        """Candidates past their tolerance, largest |diff| first, capped at ``limit``."""
        if limit < 0:
            raise ValueError("limit cannot be negative")
        flagged = [
            c for c in candidates
            if exceeds_tolerance(c.diff, c.tolerance)
        ]
        # Ties broken by type and id so repeated scans agree.
        flagged.sort(key=lambda c: (-abs(c.diff), c.entity_type.value, str(c.entity_id)))
        return tuple(
            Mismatch(
                entity_type=c.entity_type,
                entity_id=c.entity_id,
                stored_value=c.stored_value,
                ledger_value=c.ledger_value,
                diff=c.diff,
            )
            for c in flagged[:limit]
        )

    @traced_engine("integrity", "1.0", fingerprint_fields=("organization_id",))
    def balance_finding(
        self,
        *,
        organization_id: UUID,
        total_debit: Decimal,
        total_credit: Decimal,
        tolerance: Decimal,
    ) -> BalanceFinding:
        return BalanceFinding(
            organization_id=organization_id,
            total_debit=total_debit,
            total_credit=total_credit,
            tolerance=tolerance,
        )

    @traced_engine("integrity", "1.0", fingerprint_fields=("reference_type",))
    def coverage(
        self,
        *,
        reference_type: str,
        source_totals: Mapping[UUID, Decimal],
        posted_totals: Mapping[UUID, Decimal],
        tolerance: Decimal,
    ) -> ReferenceCoverage:
        """
        Compare documents in scope (``source_totals``) against the amounts
        their references posted (``posted_totals``).  Posted references with
        no document in scope are ignored.
        """
        unposted = tuple(sorted((i for i in source_totals if i not in posted_totals), key=str))
        posted_ids = [i for i in source_totals if i in posted_totals]
        return ReferenceCoverage(
            reference_type=reference_type,
            documents=len(source_totals),
            posted=len(posted_ids),
            unposted_ids=unposted,
            source_total=sum(source_totals.values(), ZERO),
            posted_total=sum((posted_totals[i] for i in posted_ids), ZERO),
            tolerance=tolerance,
        )
