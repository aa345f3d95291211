"""
Pytest fixtures for the ledger test suite.

Provides:
- A fresh database per test (SQLite in memory unless DATABASE_URL says otherwise)
- A seeded organization: one customer, one supplier, one stocked product
- Deterministic clock, packaged default settings and a request context
- Structured log capture

Environment Variables:
- DATABASE_URL: SQLAlchemy URL.  Defaults to sqlite+pysqlite:///:memory:.
  Point it at PostgreSQL (postgresql+psycopg2://...) to run the suite
  against the production backend.

SQLite runs every session over one shared connection.  A test that mixes
the ``session`` fixture with code that opens its own sessions
(run_in_transaction, the batch orchestrator, job locks) must end the
fixture session's transaction first, with ``session.commit()``.
"""

import itertools
import json
import logging
import os
from datetime import UTC, datetime
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.context import RequestContext
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.models.account import Account
from ledger_kernel.models.organization import Organization
from ledger_modules.inventory.orm import BranchInventoryModel, ProductModel
from ledger_modules.parties.orm import CustomerModel, SupplierModel
from ledger_modules.posting.models import (
    InvoiceInput,
    InvoiceItemInput,
    PurchaseInput,
    PurchaseItemInput,
)
from ledger_services.ledger_context import build_ledger_services

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

TEST_TIME = datetime(2026, 3, 15, 9, 30, tzinfo=UTC)

OPENING_STOCK = 100


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.create_invoice(...)
            logs = captured_logs()
            assert any(r["message"] == "invoice_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


@pytest.fixture
def engine(database_url):
    """Engine with every table created; dropped again after the test."""
    engine = init_engine_from_url(database_url, echo=False)
    drop_tables()
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    session = get_session()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Ambient fixtures
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(TEST_TIME)


@pytest.fixture
def settings() -> LedgerSettings:
    return LedgerSettings.with_defaults()


@pytest.fixture
def actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def branch_id() -> UUID:
    return uuid4()


# =============================================================================
# Seed data (committed, so fresh sessions see it)
# =============================================================================


@pytest.fixture
def organization(session, actor_id) -> Organization:
    org = Organization(name="Test Traders", is_active=True, created_by_id=actor_id)
    session.add(org)
    session.commit()
    return org


@pytest.fixture
def other_organization(session, actor_id) -> Organization:
    org = Organization(name="Other Traders", is_active=True, created_by_id=actor_id)
    session.add(org)
    session.commit()
    return org


@pytest.fixture
def customer(session, organization, actor_id) -> CustomerModel:
    row = CustomerModel(
        organization_id=organization.id,
        name="Asha Stores",
        outstanding_balance=Decimal("0"),
        total_purchases=Decimal("0"),
        created_by_id=actor_id,
    )
    session.add(row)
    session.commit()
    return row


@pytest.fixture
def supplier(session, organization, actor_id) -> SupplierModel:
    row = SupplierModel(
        organization_id=organization.id,
        name="Northern Wholesale",
        outstanding_balance=Decimal("0"),
        created_by_id=actor_id,
    )
    session.add(row)
    session.commit()
    return row


@pytest.fixture
def product(session, organization, branch_id, actor_id) -> ProductModel:
    """A product bought at 50 and sold at 100, with opening stock at the branch."""
    row = ProductModel(
        organization_id=organization.id,
        name="Steel Bottle",
        sku="SB-001",
        purchase_price=Decimal("50.00"),
        selling_price=Decimal("100.00"),
        created_by_id=actor_id,
    )
    session.add(row)
    session.flush()
    session.add(BranchInventoryModel(
        organization_id=organization.id,
        product_id=row.id,
        branch_id=branch_id,
        quantity=OPENING_STOCK,
        created_by_id=actor_id,
    ))
    session.commit()
    return row


@pytest.fixture
def ctx(organization, actor_id, branch_id) -> RequestContext:
    return RequestContext(
        organization_id=organization.id,
        actor_id=actor_id,
        branch_id=branch_id,
        correlation_id="test-correlation",
    )


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def services(session, settings, clock):
    return build_ledger_services(session, settings, clock=clock)


@pytest.fixture
def orchestrator(services):
    return services.orchestrator


@pytest.fixture
def rebooking(services):
    return services.rebooking


@pytest.fixture
def create_invoice(orchestrator, ctx, customer, product, branch_id, clock):
    """
    Create an issued invoice for one line of the seeded product.

    Usage::

        invoice = create_invoice(price="1000.00", tax_rate="18")
    """
    numbers = itertools.count(1)

    def _create(
        price: str = "1000.00",
        quantity: int = 1,
        tax_rate: str = "0",
        **kwargs,
    ):
        data = InvoiceInput(
            invoice_number=kwargs.pop("invoice_number", f"INV-{next(numbers):04d}"),
            customer_id=kwargs.pop("customer_id", customer.id),
            branch_id=kwargs.pop("branch_id", branch_id),
            invoice_date=kwargs.pop("invoice_date", clock.today()),
            items=(
                InvoiceItemInput(
                    product_id=product.id,
                    quantity=quantity,
                    price=Decimal(price),
                    tax_rate=Decimal(tax_rate),
                ),
            ),
            **kwargs,
        )
        return orchestrator.create_invoice(ctx, data)

    return _create


@pytest.fixture
def create_purchase(orchestrator, ctx, supplier, product, branch_id, clock):
    """Create a received purchase of the seeded product."""
    numbers = itertools.count(1)

    def _create(price: str = "50.00", quantity: int = 10, tax_rate: str = "0", **kwargs):
        data = PurchaseInput(
            purchase_number=kwargs.pop("purchase_number", f"PO-{next(numbers):04d}"),
            supplier_id=supplier.id,
            branch_id=kwargs.pop("branch_id", branch_id),
            purchase_date=kwargs.pop("purchase_date", clock.today()),
            items=(
                PurchaseItemInput(
                    product_id=product.id,
                    quantity=quantity,
                    price=Decimal(price),
                    tax_rate=Decimal(tax_rate),
                ),
            ),
            **kwargs,
        )
        return orchestrator.create_purchase(ctx, data)

    return _create


# =============================================================================
# Ledger inspection
# =============================================================================


@pytest.fixture
def account_balance(session, organization):
    """Cached balance of an account by code, read straight from the table."""
    def _balance(code: str, organization_id: UUID | None = None) -> Decimal:
        session.flush()
        value = session.execute(
            select(Account.cached_balance).where(
                Account.organization_id == (organization_id or organization.id),
                Account.code == code,
            )
        ).scalar_one_or_none()
        return Decimal("0") if value is None else Decimal(value)

    return _balance


@pytest.fixture
def posted(orchestrator, organization):
    """
    Net posting per account code for one document reference.

    Usage::

        assert posted(ReferenceType.INVOICE, invoice.id) == {"1200": Decimal("1180.00"), ...}

    Values are debit minus credit; codes that net to zero are omitted.
    """

    def _posted(reference_type, reference_id) -> dict[str, Decimal]:
        net: dict[str, Decimal] = {}
        for line in orchestrator.posting_lines(organization.id, reference_type, reference_id):
            net[line.account_code] = net.get(line.account_code, Decimal("0")) + line.debit - line.credit
        return {code: value for code, value in net.items() if value != 0}

    return _posted
