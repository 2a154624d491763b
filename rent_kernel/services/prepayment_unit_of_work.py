"""
PrepaymentUnitOfWork -- the atomic storage side of a rent allocation.

Responsibility:
    Upserts the invoices of a coverage window, marks them paid, advances
    the lease pointers and writes the payment's idempotency markers, all
    inside the caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only; the allocation
    orchestrator commits on success and rolls back on any failure.

Invariants enforced:
    - The payment row is locked (SELECT ... FOR UPDATE) and its applied
      flag re-checked under the lock before anything is written.
    - Invoice creation is INSERT ... ON CONFLICT DO NOTHING on the
      (lease, type, period) unique key; concurrent creators converge on
      one row.
    - Lease pointers only move forward.
    - The applied flag, batch id, sentinel and months are written in the
      same transaction as the invoice mutations.

Failure modes:
    - PaymentNotFoundError if the payment vanished before the lock.
    - PaymentAlreadyAppliedError if a concurrent request won the race.
    - StorageTransactionError wrapping any SQLAlchemy error; the caller
      rolls back so no partial mutation survives.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from rent_kernel.domain.clock import Clock, SystemClock
from rent_kernel.domain.dtos import CoverageWindow
from rent_kernel.domain.periods import add_months, due_date_for, month_start
from rent_kernel.domain.policy import AllocationPolicy
from rent_kernel.exceptions import (
    PaymentAlreadyAppliedError,
    PaymentNotFoundError,
    StorageTransactionError,
)
from rent_kernel.logging_config import get_logger
from rent_kernel.models.invoice import Invoice, InvoiceStatus, InvoiceType
from rent_kernel.models.lease import Lease
from rent_kernel.models.payment import Payment
from rent_kernel.services.base import BaseService

logger = get_logger("services.prepayment_unit_of_work")

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass(frozen=True)
class ApplyPrepaymentOutcome:
    """What one atomic apply changed."""

    touched_invoice_ids: tuple[UUID, ...]
    created_invoice_ids: tuple[UUID, ...]
    batch_id: UUID
    updated_rent_paid_until: date | None
    updated_next_rent_due_date: date | None


class PrepaymentUnitOfWork(BaseService[Invoice]):
    """Storage operations for invoice upserts and prepayment application."""

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        policy: AllocationPolicy | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = policy or AllocationPolicy.with_defaults()

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    def lock_payment(self, payment_id: UUID) -> Payment:
        payment = self.session.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    def lock_lease(self, lease_id: UUID) -> Lease:
        return self.session.execute(
            select(Lease)
            .where(Lease.id == lease_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()

    # ------------------------------------------------------------------
    # Invoice upsert
    # ------------------------------------------------------------------

    def _find_invoice(
        self, lease_id: UUID, invoice_type: str, period_start: date
    ) -> Invoice | None:
        return self.session.execute(
            select(Invoice).where(
                Invoice.lease_id == lease_id,
                Invoice.invoice_type == invoice_type,
                Invoice.period_start == period_start,
            )
        ).scalar_one_or_none()

    def upsert_invoice(
        self,
        lease: Lease,
        period_start: date,
        due_date: date,
        amount: Decimal,
        actor_id: UUID,
        invoice_type: str = InvoiceType.RENT.value,
        description: str | None = None,
    ) -> tuple[Invoice, bool]:
        """
        Ensure exactly one invoice exists for (lease, type, period).

        Returns:
            (invoice, created) -- created is False when the row already
            existed, including when a concurrent writer inserted it first.
        """
        period_start = month_start(period_start)
        self.session.flush()

        insert_fn = _UPSERT_DIALECTS.get(self.session.get_bind().dialect.name)
        if insert_fn is not None:
            stmt = (
                insert_fn(Invoice.__table__)
                .values(
                    id=uuid4(),
                    lease_id=lease.id,
                    invoice_type=invoice_type,
                    period_start=period_start,
                    due_date=due_date,
                    amount=amount,
                    status=InvoiceStatus.UNPAID.value,
                    months_covered=1,
                    description=description,
                    created_by_id=actor_id,
                )
                .on_conflict_do_nothing(
                    index_elements=["lease_id", "invoice_type", "period_start"]
                )
            )
            created = self.session.execute(stmt).rowcount == 1
        else:
            created = self._insert_with_savepoint(
                lease, invoice_type, period_start, due_date, amount, actor_id, description
            )

        invoice = self._find_invoice(lease.id, invoice_type, period_start)
        if invoice is None:
            raise StorageTransactionError(
                "upsert_invoice",
                f"Invoice for {period_start.isoformat()} missing after upsert",
            )

        logger.info(
            "invoice_upserted",
            extra={
                "invoice_id": str(invoice.id),
                "lease_id": str(lease.id),
                "period_start": period_start.isoformat(),
                "was_created": created,
            },
        )
        return invoice, created

    def _insert_with_savepoint(
        self,
        lease: Lease,
        invoice_type: str,
        period_start: date,
        due_date: date,
        amount: Decimal,
        actor_id: UUID,
        description: str | None,
    ) -> bool:
        if self._find_invoice(lease.id, invoice_type, period_start) is not None:
            return False
        savepoint = self.session.begin_nested()
        try:
            self.session.add(
                Invoice(
                    lease_id=lease.id,
                    invoice_type=invoice_type,
                    period_start=period_start,
                    due_date=due_date,
                    amount=amount,
                    status=InvoiceStatus.UNPAID.value,
                    months_covered=1,
                    description=description,
                    created_by_id=actor_id,
                )
            )
            self.session.flush()
        except IntegrityError:
            savepoint.rollback()
            return False
        savepoint.commit()
        return True

    # ------------------------------------------------------------------
    # Pointers
    # ------------------------------------------------------------------

    def due_day_for(self, lease: Lease) -> int:
        return self._policy.due_day_for(lease.rent_due_day)

    def advance_pointers(
        self, lease: Lease, paid_period: date, actor_id: UUID | None = None
    ) -> bool:
        """Move rent_paid_until forward to ``paid_period`` (never back)."""
        paid_period = month_start(paid_period)
        if lease.rent_paid_until is not None and month_start(lease.rent_paid_until) >= paid_period:
            return False

        next_due = due_date_for(add_months(paid_period, 1), self.due_day_for(lease))
        lease.rent_paid_until = paid_period
        if lease.next_rent_due_date is None or lease.next_rent_due_date < next_due:
            lease.next_rent_due_date = next_due
        if actor_id is not None:
            lease.updated_by_id = actor_id
        return True

    # ------------------------------------------------------------------
    # Atomic apply
    # ------------------------------------------------------------------

    def apply_rent_prepayment(
        self,
        payment_id: UUID,
        lease_id: UUID,
        months: int,
        payment_date: datetime,
        window: CoverageWindow,
        actor_id: UUID,
    ) -> ApplyPrepaymentOutcome:
        """
        Apply a multi-month payment across ``window`` in one transaction.

        Raises:
            PaymentAlreadyAppliedError: another request applied it first.
            StorageTransactionError: any database failure.
        """
        payment = self.lock_payment(payment_id)
        sentinel = self._policy.idempotency_sentinel
        if payment.is_applied(sentinel):
            raise PaymentAlreadyAppliedError(
                str(payment_id),
                str(payment.batch_id) if payment.batch_id else None,
            )

        try:
            lease = self.lock_lease(lease_id)
            batch_id = uuid4()
            paid_on = payment_date.date()

            touched: list[UUID] = []
            created: list[UUID] = []
            for period, due in zip(window.periods, window.due_dates):
                invoice, was_created = self.upsert_invoice(
                    lease, period, due, lease.monthly_rent, actor_id
                )
                if not invoice.is_paid:
                    invoice.status = InvoiceStatus.PAID.value
                    invoice.payment_date = paid_on
                    invoice.updated_by_id = actor_id
                touched.append(invoice.id)
                if was_created:
                    created.append(invoice.id)

            if window.last is not None:
                self.advance_pointers(lease, window.last, actor_id)

            payment.applied_to_prepayment = True
            payment.batch_id = batch_id
            payment.months_paid = months
            if touched:
                payment.invoice_id = touched[0]
            if not payment.carries_sentinel(sentinel):
                payment.append_note(sentinel)
            payment.updated_by_id = actor_id

            self.session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "prepayment_apply_failed",
                extra={"payment_id": str(payment_id), "error": str(exc)},
            )
            raise StorageTransactionError("apply_rent_prepayment", str(exc)) from exc

        logger.info(
            "prepayment_batch_written",
            extra={
                "payment_id": str(payment_id),
                "batch_id": str(batch_id),
                "months": months,
                "touched_count": len(touched),
                "created_count": len(created),
            },
        )

        return ApplyPrepaymentOutcome(
            touched_invoice_ids=tuple(touched),
            created_invoice_ids=tuple(created),
            batch_id=batch_id,
            updated_rent_paid_until=lease.rent_paid_until,
            updated_next_rent_due_date=lease.next_rent_due_date,
        )
