"""
Tests for ledger_kernel.services.journal_store.

Validates JournalLineStore: balanced all-or-nothing postings, line
normalization, cached balance maintenance, mirrored reversals,
reference-scoped removal and the post-commit ``ledger_changed`` hook.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from ledger_kernel.domain.dtos import AccountRole, LineSpec, PostingRequest, ReferenceType
from ledger_kernel.exceptions import (
    BalanceError,
    InvariantError,
    NotFoundError,
    ValidationError,
)
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalLine
from ledger_kernel.services.account_directory import AccountDirectory
from ledger_kernel.services.journal_store import JournalLineStore, normalize_line


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def accounts(session, settings, organization, actor_id):
    """Role -> account id for a seeded default chart."""
    directory = AccountDirectory(session, settings.chart)
    directory.seed_default_chart(organization.id, actor_id)
    resolved = directory.resolve_many(
        organization.id,
        (AccountRole.CASH, AccountRole.SALES, AccountRole.TAX_PAYABLE),
        actor_id,
    )
    session.commit()
    return {role: account.id for role, account in resolved.items()}


@pytest.fixture
def changed():
    return []


@pytest.fixture
def store(session, changed):
    return JournalLineStore(session, on_ledger_changed=changed.append)


def _request(organization, actor_id, lines, clock, reference_id=None, reference_type=ReferenceType.MANUAL):
    return PostingRequest(
        organization_id=organization.id,
        reference_type=reference_type,
        reference_id=reference_id or uuid4(),
        entry_date=clock.today(),
        actor_id=actor_id,
        lines=tuple(lines),
    )


def _line_count(session) -> int:
    return session.execute(select(func.count()).select_from(JournalLine)).scalar()


def _balance(session, account_id) -> Decimal:
    return session.execute(
        select(Account.cached_balance).where(Account.id == account_id)
    ).scalar_one()


# =============================================================================
# Line normalization
# =============================================================================


class TestNormalizeLine:
    def test_rounds_to_cents(self):
        debit, credit = normalize_line(LineSpec(account_id=uuid4(), debit=Decimal("10.005")))
        assert debit == Decimal("10.01")
        assert credit == Decimal("0.00")

    def test_negative_amount_rejected(self):
        with pytest.raises(InvariantError):
            normalize_line(LineSpec(account_id=uuid4(), debit=Decimal("-1")))

    def test_both_sides_zero_rejected(self):
        with pytest.raises(InvariantError):
            normalize_line(LineSpec(account_id=uuid4()))

    def test_both_sides_set_rejected(self):
        with pytest.raises(InvariantError):
            normalize_line(
                LineSpec(account_id=uuid4(), debit=Decimal("1"), credit=Decimal("1"))
            )

    def test_sub_cent_amount_rounding_to_zero_rejected(self):
        with pytest.raises(InvariantError):
            normalize_line(LineSpec(account_id=uuid4(), credit=Decimal("0.004")))


# =============================================================================
# post_lines
# =============================================================================


class TestPostLines:
    def test_balanced_posting_is_written(self, session, store, accounts, organization, actor_id, clock):
        rows = store.post_lines(_request(organization, actor_id, [
            LineSpec.dr(accounts[AccountRole.CASH], Decimal("1180.00")),
            LineSpec.cr(accounts[AccountRole.SALES], Decimal("1000.00")),
            LineSpec.cr(accounts[AccountRole.TAX_PAYABLE], Decimal("180.00")),
        ], clock))

        assert len(rows) == 3
        assert [row.line_no for row in rows] == [0, 1, 2]
        assert sum(row.debit for row in rows) == sum(row.credit for row in rows)
        assert _line_count(session) == 3

    def test_cached_balances_follow_postings(self, session, store, accounts, organization, actor_id, clock):
        store.post_lines(_request(organization, actor_id, [
            LineSpec.dr(accounts[AccountRole.CASH], Decimal("250.00")),
            LineSpec.cr(accounts[AccountRole.SALES], Decimal("250.00")),
        ], clock))
        session.flush()

        assert _balance(session, accounts[AccountRole.CASH]) == Decimal("250.00")
        assert _balance(session, accounts[AccountRole.SALES]) == Decimal("-250.00")

    def test_unbalanced_posting_writes_nothing(self, session, store, accounts, organization, actor_id, clock):
        with pytest.raises(BalanceError):
            store.post_lines(_request(organization, actor_id, [
                LineSpec.dr(accounts[AccountRole.CASH], Decimal("100.00")),
                LineSpec.cr(accounts[AccountRole.SALES], Decimal("99.99")),
            ], clock))

        assert _line_count(session) == 0

    def test_empty_posting_rejected(self, store, organization, actor_id, clock):
        with pytest.raises(ValidationError):
            store.post_lines(_request(organization, actor_id, [], clock))

    def test_invalid_line_rejected_before_any_write(self, session, store, accounts, organization, actor_id, clock):
        with pytest.raises(InvariantError):
            store.post_lines(_request(organization, actor_id, [
                LineSpec.dr(accounts[AccountRole.CASH], Decimal("100.00")),
                LineSpec.cr(accounts[AccountRole.SALES], Decimal("100.00")),
                LineSpec(account_id=accounts[AccountRole.SALES]),
            ], clock))

        assert _line_count(session) == 0

    def test_account_of_another_organization_rejected(
        self, session, store, accounts, other_organization, actor_id, clock,
    ):
        with pytest.raises(NotFoundError):
            store.post_lines(_request(other_organization, actor_id, [
                LineSpec.dr(accounts[AccountRole.CASH], Decimal("10.00")),
                LineSpec.cr(accounts[AccountRole.SALES], Decimal("10.00")),
            ], clock))

        assert _line_count(session) == 0

    def test_posting_logged(self, store, accounts, organization, actor_id, clock, captured_logs):
        store.post_lines(_request(organization, actor_id, [
            LineSpec.dr(accounts[AccountRole.CASH], Decimal("10.00")),
            LineSpec.cr(accounts[AccountRole.SALES], Decimal("10.00")),
        ], clock))

        written = [r for r in captured_logs() if r["message"] == "posting_written"]
        assert len(written) == 1
        assert written[0]["line_count"] == 2


# =============================================================================
# Reversal and removal
# =============================================================================


class TestReversal:
    def test_reversal_nets_reference_to_zero(self, session, store, accounts, organization, actor_id, clock):
        reference_id = uuid4()
        store.post_lines(_request(organization, actor_id, [
            LineSpec.dr(accounts[AccountRole.CASH], Decimal("1180.00")),
            LineSpec.cr(accounts[AccountRole.SALES], Decimal("1000.00")),
            LineSpec.cr(accounts[AccountRole.TAX_PAYABLE], Decimal("180.00")),
        ], clock, reference_id=reference_id))

        reversed_rows = store.post_reversal(
            organization.id, ReferenceType.MANUAL, reference_id,
            entry_date=clock.today(), actor_id=actor_id,
        )

        assert len(reversed_rows) == 3
        lines = store.lines_for_reference(organization.id, ReferenceType.MANUAL, reference_id)
        assert len(lines) == 6
        assert sum(l.debit for l in lines) == sum(l.credit for l in lines)
        by_account = {}
        for line in lines:
            by_account[line.account_id] = by_account.get(line.account_id, Decimal("0")) + line.debit - line.credit
        assert all(net == 0 for net in by_account.values())

    def test_reversal_under_another_reference_type(self, store, accounts, organization, actor_id, clock):
        reference_id = uuid4()
        store.post_lines(_request(organization, actor_id, [
            LineSpec.dr(accounts[AccountRole.CASH], Decimal("40.00")),
            LineSpec.cr(accounts[AccountRole.SALES], Decimal("40.00")),
        ], clock, reference_id=reference_id, reference_type=ReferenceType.PURCHASE))

        store.post_reversal(
            organization.id, ReferenceType.PURCHASE, reference_id,
            entry_date=clock.today(), actor_id=actor_id,
            reversal_type=ReferenceType.PURCHASE_RETURN,
        )

        assert store.has_posting(organization.id, ReferenceType.PURCHASE_RETURN, reference_id)
        assert len(store.lines_for_reference(organization.id, ReferenceType.PURCHASE, reference_id)) == 2

    def test_reversal_of_nothing_posts_nothing(self, store, organization, actor_id, clock):
        assert store.post_reversal(
            organization.id, ReferenceType.INVOICE, uuid4(),
            entry_date=clock.today(), actor_id=actor_id,
        ) == ()


class TestDeleteReference:
    def test_removes_lines_and_restores_balances(self, session, store, accounts, organization, actor_id, clock):
        reference_id = uuid4()
        store.post_lines(_request(organization, actor_id, [
            LineSpec.dr(accounts[AccountRole.CASH], Decimal("75.00")),
            LineSpec.cr(accounts[AccountRole.SALES], Decimal("75.00")),
        ], clock, reference_id=reference_id))

        removed = store.delete_reference(organization.id, ReferenceType.MANUAL, reference_id)
        session.flush()

        assert removed == 2
        assert not store.has_posting(organization.id, ReferenceType.MANUAL, reference_id)
        assert _balance(session, accounts[AccountRole.CASH]) == Decimal("0")

    def test_unknown_reference_removes_nothing(self, store, organization):
        assert store.delete_reference(organization.id, ReferenceType.MANUAL, uuid4()) == 0


# =============================================================================
# Post-commit notification
# =============================================================================


class TestLedgerChangedHook:
    def test_fires_after_commit(self, session, store, accounts, organization, actor_id, clock, changed):
        store.post_lines(_request(organization, actor_id, [
            LineSpec.dr(accounts[AccountRole.CASH], Decimal("5.00")),
            LineSpec.cr(accounts[AccountRole.SALES], Decimal("5.00")),
        ], clock))
        assert changed == []

        session.commit()

        assert changed == [organization.id]

    def test_discarded_on_rollback(self, session, store, accounts, organization, actor_id, clock, changed):
        store.post_lines(_request(organization, actor_id, [
            LineSpec.dr(accounts[AccountRole.CASH], Decimal("5.00")),
            LineSpec.cr(accounts[AccountRole.SALES], Decimal("5.00")),
        ], clock))

        session.rollback()
        session.commit()

        assert changed == []
        assert _line_count(session) == 0
