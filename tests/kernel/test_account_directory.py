"""
Tests for ledger_kernel.services.account_directory.

Role resolution against the configured chart, idempotent account creation,
the per-run id cache, and the no-silent-skip rule when auto-creation is off.
"""

from dataclasses import replace
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import AccountRole, AccountType
from ledger_kernel.exceptions import CriticalAccountMissing, ValidationError
from ledger_kernel.models.account import Account
from ledger_kernel.services.account_directory import AccountCache, AccountDirectory


@pytest.fixture
def directory(session, settings):
    return AccountDirectory(session, settings.chart)


class TestResolve:
    def test_resolve_creates_configured_account(self, directory, organization, actor_id):
        account = directory.resolve(organization.id, AccountRole.ACCOUNTS_RECEIVABLE, actor_id)

        assert account.code == "1200"
        assert account.account_type == AccountType.ASSET.value
        assert account.cached_balance == 0

    def test_resolve_is_idempotent(self, directory, organization, actor_id):
        first = directory.resolve(organization.id, AccountRole.SALES, actor_id)
        second = directory.resolve(organization.id, AccountRole.SALES, actor_id)

        assert first.id == second.id
        assert len(directory.list_accounts(organization.id)) == 1

    def test_accounts_are_per_organization(self, directory, organization, other_organization, actor_id):
        ours = directory.resolve(organization.id, AccountRole.CASH, actor_id)
        theirs = directory.resolve(other_organization.id, AccountRole.CASH, actor_id)

        assert ours.id != theirs.id
        assert ours.code == theirs.code == "1001"

    def test_missing_account_raises_when_auto_create_disabled(self, session, settings, organization, actor_id):
        directory = AccountDirectory(session, settings.chart, auto_create=False)

        with pytest.raises(CriticalAccountMissing) as exc_info:
            directory.resolve(organization.id, AccountRole.TAX_PAYABLE, actor_id)

        assert exc_info.value.role == AccountRole.TAX_PAYABLE.value
        assert directory.list_accounts(organization.id) == []

    def test_unmapped_role_raises(self, session, settings, organization, actor_id):
        chart = dict(settings.chart)
        del chart[AccountRole.COGS]
        directory = AccountDirectory(session, chart)

        with pytest.raises(CriticalAccountMissing):
            directory.resolve(organization.id, AccountRole.COGS, actor_id)

    def test_existing_account_resolved_when_auto_create_disabled(self, session, settings, organization, actor_id):
        AccountDirectory(session, settings.chart).resolve(organization.id, AccountRole.BANK, actor_id)
        strict = AccountDirectory(session, settings.chart, auto_create=False)

        assert strict.resolve(organization.id, AccountRole.BANK, actor_id).code == "1002"

    def test_resolve_many(self, directory, organization, actor_id):
        resolved = directory.resolve_many(
            organization.id, (AccountRole.INVENTORY, AccountRole.ACCOUNTS_PAYABLE), actor_id,
        )

        assert {role: a.code for role, a in resolved.items()} == {
            AccountRole.INVENTORY: "1500",
            AccountRole.ACCOUNTS_PAYABLE: "2000",
        }


class TestGetOrCreateAccount:
    @pytest.fixture
    def concurrent_winner(self, session, organization, actor_id):
        """An account committed by another writer after our lookup missed."""
        account = Account(
            organization_id=organization.id,
            code="9100",
            name="Suspense",
            account_type=AccountType.ASSET.value,
            is_group=False,
            cached_balance=0,
            created_by_id=actor_id,
        )
        session.add(account)
        session.flush()
        return account

    def test_existing_account_returned(self, directory, organization, actor_id):
        first = directory.get_or_create_account(organization.id, "9100", "Suspense", AccountType.ASSET, actor_id)
        second = directory.get_or_create_account(organization.id, "9100", "Other", AccountType.EXPENSE, actor_id)

        assert second.id == first.id
        assert second.name == "Suspense"

    def test_lost_race_returns_winner(
        self, directory, organization, actor_id, concurrent_winner, monkeypatch, captured_logs,
    ):
        real_find = directory.find_by_code
        lookups = []

        def miss_first_lookup(org_id, code):
            lookups.append(code)
            return None if len(lookups) == 1 else real_find(org_id, code)

        monkeypatch.setattr(directory, "find_by_code", miss_first_lookup)

        account = directory.get_or_create_account(
            organization.id, "9100", "Suspense", AccountType.ASSET, actor_id,
        )

        assert account.id == concurrent_winner.id
        assert lookups == ["9100", "9100"]
        assert [a.code for a in directory.list_accounts(organization.id)] == ["9100"]
        assert any(r["message"] == "account_create_conflict" for r in captured_logs())

    def test_conflict_without_winner_raises(self, directory, organization, actor_id, concurrent_winner, monkeypatch):
        monkeypatch.setattr(directory, "find_by_code", lambda org_id, code: None)

        with pytest.raises(ValidationError, match="9100"):
            directory.get_or_create_account(organization.id, "9100", "Suspense", AccountType.ASSET, actor_id)


class TestSeedDefaultChart:
    def test_seeds_every_entry_once(self, directory, settings, organization, actor_id):
        created = directory.seed_default_chart(organization.id, actor_id)
        again = directory.seed_default_chart(organization.id, actor_id)

        assert created == len(settings.chart)
        assert again == 0
        codes = [a.code for a in directory.list_accounts(organization.id)]
        assert codes == sorted(entry.code for entry in settings.chart.values())

    def test_seed_respects_custom_chart(self, session, settings, organization, actor_id):
        chart = dict(settings.chart)
        chart[AccountRole.SALES] = replace(chart[AccountRole.SALES], code="4100", name="Retail Sales")
        directory = AccountDirectory(session, chart)

        directory.seed_default_chart(organization.id, actor_id)

        assert directory.find_by_code(organization.id, "4100").name == "Retail Sales"
        assert directory.find_by_code(organization.id, "4000") is None


class TestAccountCache:
    def test_cache_filled_on_create_and_used_on_lookup(self, session, settings, organization, actor_id):
        cache = AccountCache()
        directory = AccountDirectory(session, settings.chart, cache=cache)

        account = directory.resolve(organization.id, AccountRole.CASH, actor_id)

        assert len(cache) == 1
        assert cache.get(organization.id, "1001") == account.id
        assert directory.find_by_code(organization.id, "1001").id == account.id

    def test_clear(self):
        cache = AccountCache()
        cache.put(uuid4(), "1001", uuid4())
        cache.clear()

        assert len(cache) == 0
        assert cache.misses == 0
