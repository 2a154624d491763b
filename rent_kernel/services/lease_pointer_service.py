"""
LeasePointerService -- recomputes lease pointers from invoice truth.

Responsibility:
    Repairs ``rent_paid_until`` / ``next_rent_due_date`` drift by reading
    the most recently paid rent invoice of the lease.  Runs after every
    allocation and may be called on its own as an operator repair.

Architecture position:
    Kernel > Services -- flush-only; the caller owns the transaction.

Invariants enforced:
    - Pointers only advance; a stale or missing paid invoice never moves
      them backward.
    - Invoices before the lease's eligible start month are ignored.
    - Repeated calls with unchanged invoices are no-ops.

Failure modes:
    - LeaseNotFoundError if the lease id does not resolve.
"""

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from rent_kernel.domain.coverage import eligible_start_month
from rent_kernel.domain.periods import add_months, due_date_for, month_start
from rent_kernel.domain.policy import AllocationPolicy
from rent_kernel.exceptions import LeaseNotFoundError
from rent_kernel.logging_config import get_logger
from rent_kernel.models.lease import Lease
from rent_kernel.selectors.invoice_selector import InvoiceSelector
from rent_kernel.services.base import BaseService

logger = get_logger("services.lease_pointer")


@dataclass(frozen=True)
class PointerSyncResult:
    lease_id: UUID
    rent_paid_until: date | None
    next_rent_due_date: date | None
    changed: bool


class LeasePointerService(BaseService[Lease]):
    """Self-healing pointer synchronisation."""

    def __init__(self, session, policy: AllocationPolicy | None = None):
        super().__init__(session)
        self._policy = policy or AllocationPolicy.with_defaults()
        self._invoices = InvoiceSelector(session)

    def sync_lease_pointers(
        self, lease_id: UUID, actor_id: UUID | None = None
    ) -> PointerSyncResult:
        lease = self.session.get(Lease, lease_id)
        if lease is None:
            raise LeaseNotFoundError(str(lease_id))

        latest = self._invoices.latest_paid_rent(
            lease_id, eligible_start_month(lease.start_date)
        )
        if latest is None:
            return PointerSyncResult(
                lease_id, lease.rent_paid_until, lease.next_rent_due_date, False
            )

        paid_period = month_start(latest.period_start)
        due_day = self._policy.due_day_for(lease.rent_due_day)
        expected_next = due_date_for(add_months(paid_period, 1), due_day)

        changed = False
        if lease.rent_paid_until is None or month_start(lease.rent_paid_until) < paid_period:
            lease.rent_paid_until = paid_period
            changed = True
        if lease.next_rent_due_date is None or lease.next_rent_due_date < expected_next:
            lease.next_rent_due_date = expected_next
            changed = True

        if changed:
            if actor_id is not None:
                lease.updated_by_id = actor_id
            self.session.flush()
            logger.info(
                "lease_pointers_advanced",
                extra={
                    "lease_id": str(lease_id),
                    "rent_paid_until": lease.rent_paid_until,
                    "next_rent_due_date": lease.next_rent_due_date,
                },
            )

        return PointerSyncResult(
            lease_id, lease.rent_paid_until, lease.next_rent_due_date, changed
        )
