"""
Pytest fixtures for the rent kernel test suite.

Provides:
- A database engine and per-test session (in-memory SQLite by default)
- A DeterministicClock pinned to 2026-03-10 12:00 UTC
- Factories for leases, invoices, payments and prepayment requests
- Structured log capture

Environment Variables:
- DATABASE_URL: database URL.  Defaults to ``sqlite://`` (in-memory).
  Point it at PostgreSQL to run the suite against the production backend.
"""

import json
import logging
import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from rent_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from rent_kernel.domain.clock import DeterministicClock
from rent_kernel.domain.dtos import PaymentMethod, PrepaymentRequest
from rent_kernel.domain.periods import due_date_for, month_start
from rent_kernel.domain.policy import AllocationPolicy
from rent_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from rent_kernel.models.invoice import Invoice, InvoiceStatus, InvoiceType
from rent_kernel.models.lease import Lease, LeaseStatus
from rent_kernel.models.payment import Payment
from rent_kernel.services.allocation_service import RentAllocationService
from rent_kernel.services.notifications import RecordingNotifier

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

FIXED_NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)

DEFAULT_DATABASE_URL = "sqlite://"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


@pytest.fixture(autouse=True)
def _require_postgres(request):
    """Skip tests marked @pytest.mark.postgres on other backends."""
    if request.node.get_closest_marker("postgres") and not get_database_url().startswith(
        "postgresql"
    ):
        pytest.skip("requires PostgreSQL (set DATABASE_URL)")


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
    Capture rent_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, allocation_service):
            allocation_service.process_rent_prepayment(...)
            logs = captured_logs()
            assert any(r["message"] == "prepayment_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("rent_kernel")
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
# Database
# =============================================================================


@pytest.fixture
def engine():
    engine = init_engine_from_url(get_database_url())
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    session = get_session()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def clock():
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def policy():
    return AllocationPolicy.with_defaults()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def allocation_service(session, clock, policy, notifier):
    return RentAllocationService(session, clock=clock, policy=policy, notifier=notifier)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_lease(session, tenant_id, test_actor_id):
    def _make(
        monthly_rent: Decimal = Decimal("10000"),
        start_date: date = date(2026, 1, 1),
        status: str = LeaseStatus.ACTIVE.value,
        end_date: date | None = None,
        rent_paid_until: date | None = None,
        next_rent_due_date: date | None = None,
        rent_due_day: int | None = None,
        tenant_user_id=None,
    ) -> Lease:
        lease = Lease(
            tenant_user_id=tenant_user_id or tenant_id,
            monthly_rent=monthly_rent,
            status=status,
            start_date=start_date,
            end_date=end_date,
            rent_paid_until=rent_paid_until,
            next_rent_due_date=next_rent_due_date,
            rent_due_day=rent_due_day,
            created_by_id=test_actor_id,
        )
        session.add(lease)
        session.commit()
        return lease

    return _make


@pytest.fixture
def make_invoice(session, test_actor_id):
    def _make(
        lease: Lease,
        period_start: date,
        status: str = InvoiceStatus.UNPAID.value,
        amount: Decimal | None = None,
        invoice_type: str = InvoiceType.RENT.value,
        due_day: int = 5,
    ) -> Invoice:
        period = month_start(period_start)
        invoice = Invoice(
            lease_id=lease.id,
            invoice_type=invoice_type,
            period_start=period,
            due_date=due_date_for(period, due_day),
            amount=amount if amount is not None else lease.monthly_rent,
            status=status,
            created_by_id=test_actor_id,
        )
        session.add(invoice)
        session.commit()
        return invoice

    return _make


@pytest.fixture
def make_payment(session, tenant_id, test_actor_id):
    def _make(
        amount_paid: Decimal,
        payment_date: datetime = FIXED_NOW - timedelta(hours=1),
        invoice: Invoice | None = None,
        months_paid: int | None = None,
        receipt_reference: str | None = None,
        tenant_user_id=None,
        verified: bool = True,
        notes: str | None = None,
    ) -> Payment:
        payment = Payment(
            invoice_id=invoice.id if invoice is not None else None,
            tenant_user_id=tenant_user_id or tenant_id,
            amount_paid=amount_paid,
            payment_date=payment_date,
            months_paid=months_paid,
            payment_method=PaymentMethod.MPESA.value,
            receipt_reference=receipt_reference,
            verified=verified,
            notes=notes,
            created_by_id=test_actor_id,
        )
        session.add(payment)
        session.commit()
        return payment

    return _make


@pytest.fixture
def make_request(test_actor_id):
    def _make(
        lease: Lease,
        payment: Payment,
        months_paid: int | None = None,
        amount_paid: Decimal | None = None,
        payment_date: datetime | None = None,
        tenant_user_id=None,
    ) -> PrepaymentRequest:
        return PrepaymentRequest(
            payment_id=payment.id,
            lease_id=lease.id,
            tenant_user_id=tenant_user_id or lease.tenant_user_id,
            amount_paid=amount_paid if amount_paid is not None else payment.amount_paid,
            payment_date=payment_date or payment.payment_date,
            months_paid=months_paid,
            actor_id=test_actor_id,
        )

    return _make
