"""
AccountDirectory -- organization-scoped chart of accounts.

Responsibility:
    Idempotent get-or-create of accounts by (organization, code), role-based
    resolution of the accounts the posting rules need, and seeding of the
    configured default chart.

Architecture position:
    Kernel > Services.  Leaf of the posting stack: the Journal Line Store
    and the Posting Orchestrator resolve accounts through this service.

Invariants enforced:
    - (organization_id, code) is unique.  Creation happens inside a SAVEPOINT
      in the caller's transaction, so a concurrent duplicate insert only
      rolls back the savepoint and the winner's row is re-fetched.
    - A role missing from the configured chart, or a missing account when
      auto-creation is disabled, raises CriticalAccountMissing.  Postings are
      never skipped to keep an operation running.

Failure modes:
    - ValidationError when a concurrent insert violated uniqueness and the
      re-fetch still finds nothing.
    - CriticalAccountMissing as above.
"""

from __future__ import annotations

from typing import Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import AccountRole, AccountType, ChartEntry
from ledger_kernel.domain.money import ZERO
from ledger_kernel.exceptions import CriticalAccountMissing, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account_directory")


class AccountCache:
    """
    Explicit lookup cache of account ids by (organization, code).

    Created per run (a backfill job, a request) and dropped with it; never
    module-level state.  ``clear()`` must be called when the transaction
    that created cached accounts may have been rolled back.
    """

    def __init__(self) -> None:
        self._ids: dict[tuple[UUID, str], UUID] = {}
        self.hits = 0
        self.misses = 0

    def get(self, organization_id: UUID, code: str) -> UUID | None:
        account_id = self._ids.get((organization_id, code))
        if account_id is None:
            self.misses += 1
        else:
            self.hits += 1
        return account_id

    def put(self, organization_id: UUID, code: str, account_id: UUID) -> None:
        self._ids[(organization_id, code)] = account_id

    def clear(self) -> None:
        self._ids.clear()

    def __len__(self) -> int:
        return len(self._ids)


class AccountDirectory(BaseService[Account]):
    """
    Chart-of-accounts lookups and idempotent creation.

    Contract:
        ``get_or_create_account`` returns the existing account for the code or
        creates it with a zero balance.  ``resolve`` maps an AccountRole to the
        configured code and returns that account.

    Non-goals:
        - No deletion: accounts are referenced by history forever.
        - No renaming of codes or types (blocked at the ORM layer).
    """

    def __init__(
        self,
        session: Session,
        chart: Mapping[AccountRole, ChartEntry],
        *,
        auto_create: bool = True,
        cache: AccountCache | None = None,
    ):
        super().__init__(session)
        self._chart = dict(chart)
        self._auto_create = auto_create
        self._cache = cache

    # =========================================================================
    # Lookups
    # =========================================================================

    def find_by_code(self, organization_id: UUID, code: str) -> Account | None:
        if self._cache is not None:
            cached_id = self._cache.get(organization_id, code)
            if cached_id is not None:
                account = self.session.get(Account, cached_id)
                if account is not None:
                    return account
        account = self.session.execute(
            select(Account).where(
                Account.organization_id == organization_id,
                Account.code == code,
            )
        ).scalar_one_or_none()
        if account is not None and self._cache is not None:
            self._cache.put(organization_id, code, account.id)
        return account

    def list_accounts(self, organization_id: UUID) -> list[Account]:
        return list(
            self.session.execute(
                select(Account)
                .where(Account.organization_id == organization_id)
                .order_by(Account.code)
            ).scalars()
        )

    def chart_entry(self, organization_id: UUID, role: AccountRole) -> ChartEntry:
        entry = self._chart.get(role)
        if entry is None:
            logger.critical(
                "account_role_unmapped",
                extra={"organization_id": str(organization_id), "role": role.value},
            )
            raise CriticalAccountMissing(str(organization_id), role.value)
        return entry

    # =========================================================================
    # Creation
    # =========================================================================

    def get_or_create_account(
        self,
        organization_id: UUID,
        code: str,
        name: str,
        account_type: AccountType,
        actor_id: UUID,
    ) -> Account:
        """
        Return the account with ``code`` or create it with a zero balance.

        Must run inside the caller's transaction.  The insert is wrapped in a
        SAVEPOINT so a lost creation race does not poison the outer
        transaction.

        Raises:
            ValidationError: If the insert violated uniqueness and the
                re-fetch found no row.
        """
        existing = self.find_by_code(organization_id, code)
        if existing is not None:
            return existing

        account = Account(
            organization_id=organization_id,
            code=code,
            name=name,
            account_type=AccountType(account_type).value,
            is_group=False,
            cached_balance=ZERO,
            created_by_id=actor_id,
        )
        try:
            with self.session.begin_nested():
                self.session.add(account)
        except IntegrityError:
            logger.warning(
                "account_create_conflict",
                extra={"organization_id": str(organization_id), "code": code},
            )
            winner = self.find_by_code(organization_id, code)
            if winner is None:
                raise ValidationError(
                    f"Account code {code} conflicts in organization {organization_id}",
                    field="code",
                )
            return winner

        if self._cache is not None:
            self._cache.put(organization_id, code, account.id)

        logger.info(
            "account_created",
            extra={
                "organization_id": str(organization_id),
                "account_id": str(account.id),
                "code": code,
                "account_type": AccountType(account_type).value,
            },
        )
        return account

    def resolve(self, organization_id: UUID, role: AccountRole, actor_id: UUID) -> Account:
        """
        Return the account configured for ``role``.

        Raises:
            CriticalAccountMissing: Role not in the chart, or the account is
                absent while auto-creation is disabled.
        """
        entry = self.chart_entry(organization_id, role)
        if self._auto_create:
            return self.get_or_create_account(
                organization_id, entry.code, entry.name, entry.account_type, actor_id,
            )

        account = self.find_by_code(organization_id, entry.code)
        if account is None:
            logger.critical(
                "critical_account_missing",
                extra={
                    "organization_id": str(organization_id),
                    "role": role.value,
                    "code": entry.code,
                },
            )
            raise CriticalAccountMissing(str(organization_id), role.value, entry.code)
        return account

    def resolve_many(
        self, organization_id: UUID, roles: tuple[AccountRole, ...], actor_id: UUID,
    ) -> dict[AccountRole, Account]:
        return {role: self.resolve(organization_id, role, actor_id) for role in roles}

    def seed_default_chart(self, organization_id: UUID, actor_id: UUID) -> int:
        """Create every configured chart entry the organization lacks.

        Returns:
            Number of accounts created.
        """
        created = 0
        for entry in self._chart.values():
            if self.find_by_code(organization_id, entry.code) is not None:
                continue
            self.get_or_create_account(
                organization_id, entry.code, entry.name, entry.account_type, actor_id,
            )
            created += 1
        logger.info(
            "chart_seeded",
            extra={"organization_id": str(organization_id), "created": created},
        )
        return created
