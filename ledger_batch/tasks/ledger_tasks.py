"""
Batch tasks: ledger maintenance (backfill, backfill verification, nightly
balance check).
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_batch.domain.types import BatchItemStatus
from ledger_batch.tasks.base import BatchItemInput, BatchTaskResult, RunScope
from ledger_config.schema import LedgerSettings
from ledger_kernel.domain.dtos import ReferenceType
from ledger_kernel.exceptions import LedgerKernelError
from ledger_kernel.models.organization import Organization
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.account_directory import AccountCache
from ledger_kernel.utils.opening_balance_cache import OpeningBalanceCache
from ledger_services.backfill_service import (
    BACKFILL_REFERENCE_TYPES,
    BackfillOutcome,
    BackfillService,
)
from ledger_services.integrity_service import IntegrityService
from ledger_services.notifications import Notifier


def organization_ids(parameters: dict[str, Any], session: Session) -> list[UUID]:
    """``parameters["organization_id"]`` when given, else every active organization."""
    if parameters.get("organization_id"):
        return [UUID(str(parameters["organization_id"]))]
    return list(
        session.execute(
            select(Organization.id)
            .where(Organization.is_active == True)  # noqa: E712
            .order_by(Organization.created_at)
        ).scalars()
    )


def _failed(exc: LedgerKernelError) -> BatchTaskResult:
    return BatchTaskResult(
        status=BatchItemStatus.FAILED,
        error_code=exc.code,
        error_message=str(exc),
    )


class BackfillTask:
    """Post journal lines for documents that have none."""

    def __init__(
        self,
        settings: LedgerSettings,
        opening_balances: OpeningBalanceCache | None = None,
    ) -> None:
        self._settings = settings
        self._opening_balances = opening_balances

    @property
    def task_type(self) -> str:
        return "ledger.backfill"

    @property
    def description(self) -> str:
        return "Post missing journal lines for pre-existing documents"

    def _service(self, session: Session, scope: RunScope) -> BackfillService:
        return BackfillService(
            session,
            self._settings,
            account_cache=scope.resource("account_cache", AccountCache),
            opening_balances=self._opening_balances,
        )

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        scope: RunScope,
    ) -> tuple[BatchItemInput, ...]:
        reference_types = tuple(
            ReferenceType(t) for t in parameters.get("reference_types") or BACKFILL_REFERENCE_TYPES
        )
        service = self._service(session, scope)
        items = []
        for organization_id in organization_ids(parameters, session):
            for candidate in service.candidates(organization_id, reference_types):
                items.append((organization_id, candidate))
        return tuple(
            BatchItemInput(
                item_index=i,
                item_key=f"{candidate.reference_type.value}:{candidate.document_id}",
                payload={
                    "organization_id": str(organization_id),
                    "reference_type": candidate.reference_type.value,
                    "document_id": str(candidate.document_id),
                },
            )
            for i, (organization_id, candidate) in enumerate(items)
        )

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        scope: RunScope,
    ) -> BatchTaskResult:
        try:
            outcome = self._service(session, scope).backfill_document(
                UUID(item.payload["organization_id"]),
                ReferenceType(item.payload["reference_type"]),
                UUID(item.payload["document_id"]),
                scope.actor_id,
            )
        except LedgerKernelError as exc:
            return _failed(exc)
        if outcome == BackfillOutcome.SKIPPED:
            return BatchTaskResult(status=BatchItemStatus.SKIPPED, result_data={"reason": "already_posted"})
        return BatchTaskResult(status=BatchItemStatus.SUCCEEDED, result_data={"outcome": outcome.value})


class VerifyBackfillTask:
    """Re-derive per-reference-type totals and report discrepancies."""

    def __init__(self, settings: LedgerSettings) -> None:
        self._settings = settings

    @property
    def task_type(self) -> str:
        return "ledger.verify_backfill"

    @property
    def description(self) -> str:
        return "Compare documents against their postings after a backfill"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        scope: RunScope,
    ) -> tuple[BatchItemInput, ...]:
        return tuple(
            BatchItemInput(item_index=i, item_key=str(org_id), payload={"organization_id": str(org_id)})
            for i, org_id in enumerate(organization_ids(parameters, session))
        )

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        scope: RunScope,
    ) -> BatchTaskResult:
        service = IntegrityService(session, self._settings)
        result = service.verify_backfill(UUID(item.payload["organization_id"]))
        data = {
            "coverage": [
                {
                    "reference_type": c.reference_type,
                    "documents": c.documents,
                    "posted": c.posted,
                    "unposted": c.unposted,
                    "source_total": str(c.source_total),
                    "posted_total": str(c.posted_total),
                }
                for c in result.coverage
            ],
            "discrepancies": list(result.discrepancies),
        }
        if result.is_clean:
            return BatchTaskResult(status=BatchItemStatus.SUCCEEDED, result_data=data)
        return BatchTaskResult(
            status=BatchItemStatus.FAILED,
            result_data=data,
            error_code="BACKFILL_DISCREPANCIES",
            error_message=f"{len(result.discrepancies)} discrepancy(ies)",
        )


class NightlyBalanceCheckTask:
    """Per-organization Sum(debit) vs Sum(credit), alerting after commit."""

    def __init__(self, settings: LedgerSettings, notifier: Notifier | None = None) -> None:
        self._settings = settings
        self._notifier = notifier

    @property
    def task_type(self) -> str:
        return "ledger.nightly_check"

    @property
    def description(self) -> str:
        return "Flag organizations whose ledger does not balance"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        scope: RunScope,
    ) -> tuple[BatchItemInput, ...]:
        if parameters.get("organization_id"):
            ids = organization_ids(parameters, session)
        else:
            ids = LedgerSelector(session).organizations_with_lines()
        return tuple(
            BatchItemInput(item_index=i, item_key=str(org_id), payload={"organization_id": str(org_id)})
            for i, org_id in enumerate(ids)
        )

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        scope: RunScope,
    ) -> BatchTaskResult:
        service = IntegrityService(session, self._settings, notifier=self._notifier)
        # An unbalanced ledger is a finding, not a task failure: the item
        # succeeds so its queued alert is sent when the job commits.
        (finding,) = service.nightly_balance_check([UUID(item.payload["organization_id"])])
        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={
                "is_balanced": finding.is_balanced,
                "total_debit": str(finding.total_debit),
                "total_credit": str(finding.total_credit),
                "diff": str(finding.diff),
            },
        )
