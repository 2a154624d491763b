"""
InvoiceLifecycleService -- scheduled invoice generation and ageing.

Responsibility:
    Ensures every active lease has an invoice for each month it owes,
    backfilling missed months up to the current one, and flips unpaid
    invoices past their due date to overdue.  Invoked by a scheduled
    job; safe to run concurrently or repeatedly.

Architecture position:
    Kernel > Services -- orchestrator.  Commits once per lease so that
    one broken lease never aborts the batch.

Invariants enforced:
    - At most one invoice per (lease, type, period); creation is an
      upsert that does nothing on conflict.
    - Nothing is billed for a future month or past the lease end month.
    - Per-lease failures are collected, never raised.
"""

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rent_kernel.domain.clock import Clock, SystemClock
from rent_kernel.domain.coverage import CoverageScheduler
from rent_kernel.domain.dtos import LeaseState
from rent_kernel.domain.periods import add_months, due_date_for, month_label, month_start
from rent_kernel.domain.policy import AllocationPolicy
from rent_kernel.exceptions import RentKernelError
from rent_kernel.logging_config import LogContext, get_logger
from rent_kernel.models.invoice import InvoiceStatus
from rent_kernel.models.lease import Lease, LeaseStatus
from rent_kernel.selectors.invoice_selector import InvoiceSelector
from rent_kernel.services.base import SYSTEM_ACTOR_ID
from rent_kernel.services.prepayment_unit_of_work import PrepaymentUnitOfWork

logger = get_logger("services.invoice_lifecycle")


@dataclass(frozen=True)
class LeaseInvoiceError:
    lease_id: UUID
    error: str


@dataclass
class AutoCreateResult:
    """Counters for one auto-create run."""

    processed_leases: int = 0
    invoices_created: int = 0
    invoices_skipped: int = 0
    errors: list[LeaseInvoiceError] = field(default_factory=list)
    created_invoice_ids: list[UUID] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class InvoiceLifecycleService:
    """Cron-side invoice generation and overdue marking."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: AllocationPolicy | None = None,
        actor_id: UUID | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or AllocationPolicy.with_defaults()
        self._actor_id = actor_id or SYSTEM_ACTOR_ID
        self._scheduler = CoverageScheduler(self._policy)
        self._uow = PrepaymentUnitOfWork(session, self._clock, self._policy)
        self._invoices = InvoiceSelector(session)

    def _active_lease_ids(self, lease_ids: list[UUID] | None) -> list[UUID]:
        stmt = select(Lease.id).where(Lease.status == LeaseStatus.ACTIVE.value)
        if lease_ids is not None:
            stmt = stmt.where(Lease.id.in_(lease_ids))
        return list(self._session.execute(stmt.order_by(Lease.id)).scalars().all())

    def auto_create_missing_invoices(
        self,
        lease_ids: list[UUID] | None = None,
        force_recreate: bool = False,
    ) -> AutoCreateResult:
        """
        Upsert the rent invoices each active lease currently owes.

        Args:
            lease_ids: Restrict the run to these leases.
            force_recreate: Ignore the stored next-due pointer and
                re-assert every invoice from the first month after
                ``rent_paid_until`` (operator repair).
        """
        result = AutoCreateResult()
        current_period = month_start(self._clock.today())

        for lease_id in self._active_lease_ids(lease_ids):
            result.processed_leases += 1
            with LogContext.bind(lease_id=lease_id, actor_id=self._actor_id):
                try:
                    created_ids, skipped = self._ensure_invoices(
                        lease_id, current_period, force_recreate
                    )
                    self._session.commit()
                except (RentKernelError, SQLAlchemyError) as exc:
                    self._session.rollback()
                    logger.warning("invoice_generation_failed", extra={"error": str(exc)})
                    result.errors.append(LeaseInvoiceError(lease_id, str(exc)))
                    continue

            result.invoices_created += len(created_ids)
            result.invoices_skipped += skipped
            result.created_invoice_ids.extend(created_ids)

        logger.info("invoice_generation_completed", extra={
            "processed_leases": result.processed_leases,
            "invoices_created": result.invoices_created,
            "invoices_skipped": result.invoices_skipped,
            "errors": len(result.errors),
            "force_recreate": force_recreate,
        })
        return result

    def _ensure_invoices(
        self, lease_id: UUID, current_period, force_recreate: bool
    ) -> tuple[list[UUID], int]:
        """
        Upsert every missing month from coverage start up to the earlier
        of the current month and the lease end month.

        Returns:
            (created invoice ids, count of months that already had one).
            An empty range counts as one skip.
        """
        lease = self._session.get(Lease, lease_id)
        state = LeaseState.from_model(lease)
        start = self._scheduler.coverage_start(state, honor_next_due=not force_recreate)

        last = current_period
        if lease.end_date is not None:
            last = min(last, month_start(lease.end_date))
        if start > last:
            logger.debug("invoice_not_due", extra={"period": start, "last_billable": last})
            return [], 1

        due_day = self._scheduler.due_day_for(state)
        created_ids: list[UUID] = []
        skipped = 0
        period = start
        while period <= last:
            invoice, created = self._uow.upsert_invoice(
                lease,
                period,
                due_date_for(period, due_day),
                lease.monthly_rent,
                self._actor_id,
                description=f"Rent for {month_label(period)}",
            )
            if created:
                created_ids.append(invoice.id)
            else:
                skipped += 1
            period = add_months(period, 1)

        next_due = due_date_for(period, due_day)
        if lease.next_rent_due_date is None or lease.next_rent_due_date < next_due:
            lease.next_rent_due_date = next_due
            lease.updated_by_id = self._actor_id
        self._session.flush()

        return created_ids, skipped

    def mark_overdue_invoices(self) -> int:
        """Flip unpaid rent invoices past their due date to overdue."""
        today = self._clock.today()
        try:
            invoices = self._invoices.overdue_candidates(today)
            for invoice in invoices:
                invoice.status = InvoiceStatus.OVERDUE.value
                invoice.updated_by_id = self._actor_id
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("invoices_marked_overdue", extra={"count": len(invoices), "as_of": today})
        return len(invoices)
