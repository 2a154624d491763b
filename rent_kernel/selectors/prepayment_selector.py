"""
Module: rent_kernel.selectors.prepayment_selector
Responsibility: Derives paid-through, next-due and prepaid-month figures
    for a lease from paid invoices (invoice truth), not from the cached
    lease pointers.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Only contiguous paid months starting at the eligible start month
      count; a gap ends the run.
    - prepaid_months counts fully paid months strictly after the current
      month.
"""

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import select

from rent_kernel.domain.clock import Clock, SystemClock
from rent_kernel.domain.coverage import eligible_start_month
from rent_kernel.domain.periods import add_months, month_start, months_between
from rent_kernel.exceptions import LeaseNotFoundError
from rent_kernel.models.lease import Lease, LeaseStatus
from rent_kernel.selectors.base import BaseSelector
from rent_kernel.selectors.invoice_selector import InvoiceSelector

# Longest contiguous run inspected (20 years of monthly rent)
MAX_SCAN_MONTHS = 240


@dataclass(frozen=True)
class PrepaidCoverage:
    lease_id: UUID
    paid_through: date | None
    next_due_period: date
    prepaid_months: int

    @property
    def is_prepaid(self) -> bool:
        return self.prepaid_months > 0


class PrepaymentSelector(BaseSelector[Lease]):
    """Prepaid-month summaries for tenant and manager views."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._invoices = InvoiceSelector(session)

    def prepaid_coverage(self, lease_id: UUID) -> PrepaidCoverage:
        lease = self.session.get(Lease, lease_id)
        if lease is None:
            raise LeaseNotFoundError(str(lease_id))

        eligible = eligible_start_month(lease.start_date)
        paid = set(self._invoices.paid_rent_periods(lease_id, eligible))

        cursor = eligible
        for _ in range(MAX_SCAN_MONTHS):
            if cursor not in paid:
                break
            cursor = add_months(cursor, 1)

        paid_through = add_months(cursor, -1) if cursor != eligible else None
        next_month = add_months(month_start(self._clock.today()), 1)
        prepaid_start = max(next_month, eligible)
        prepaid_months = max(0, months_between(prepaid_start, cursor))

        return PrepaidCoverage(
            lease_id=lease_id,
            paid_through=paid_through,
            next_due_period=cursor,
            prepaid_months=prepaid_months,
        )

    def prepaid_leases(self) -> list[PrepaidCoverage]:
        """Coverage for every active lease with at least one prepaid month."""
        ids = self.session.execute(
            select(Lease.id)
            .where(Lease.status == LeaseStatus.ACTIVE.value)
            .order_by(Lease.id)
        ).scalars().all()
        results = [self.prepaid_coverage(lease_id) for lease_id in ids]
        return [r for r in results if r.is_prepaid]
