"""
Batch tasks: installment plans.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_batch.domain.types import BatchItemStatus
from ledger_batch.tasks.base import BatchItemInput, BatchTaskResult, RunScope
from ledger_modules.installments.models import PlanStatus
from ledger_modules.installments.orm import InstallmentPlanModel
from ledger_modules.installments.service import InstallmentService


class MarkOverdueInstallmentsTask:
    """Flag installments past their due date, one item per organization."""

    @property
    def task_type(self) -> str:
        return "installments.mark_overdue"

    @property
    def description(self) -> str:
        return "Mark pending and partial installments past due as overdue"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        scope: RunScope,
    ) -> tuple[BatchItemInput, ...]:
        query = (
            select(InstallmentPlanModel.organization_id)
            .where(InstallmentPlanModel.status == PlanStatus.ACTIVE.value)
            .distinct()
        )
        if parameters.get("organization_id"):
            query = query.where(
                InstallmentPlanModel.organization_id == UUID(str(parameters["organization_id"]))
            )
        ids = sorted(session.execute(query).scalars(), key=str)
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
        count = InstallmentService(session).mark_overdue(
            scope.as_of.date(), organization_id=UUID(item.payload["organization_id"]),
        )
        if count == 0:
            return BatchTaskResult(status=BatchItemStatus.SKIPPED, result_data={"marked": 0})
        return BatchTaskResult(status=BatchItemStatus.SUCCEEDED, result_data={"marked": count})
