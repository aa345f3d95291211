"""
RequestContext -- identity handed to every business operation.

Authentication and authorization happen upstream; the core trusts the
organization, branch and actor it is given and performs no access control.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from ledger_kernel.logging_config import LogContext


@dataclass(frozen=True)
class RequestContext:
    """Who is acting, for which tenant, at which branch."""

    organization_id: UUID
    actor_id: UUID
    branch_id: UUID | None = None
    correlation_id: str | None = None

    def log_scope(self):
        """Bind the context fields to every log line inside the ``with`` block."""
        return LogContext.bind(
            organization_id=self.organization_id,
            branch_id=self.branch_id,
            actor_id=self.actor_id,
            correlation_id=self.correlation_id,
        )

    def for_branch(self, branch_id: UUID) -> RequestContext:
        return RequestContext(
            organization_id=self.organization_id,
            actor_id=self.actor_id,
            branch_id=branch_id,
            correlation_id=self.correlation_id,
        )


# Actor recorded on rows written by scheduled jobs and maintenance scripts.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")
