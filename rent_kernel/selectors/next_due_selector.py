"""
Module: rent_kernel.selectors.next_due_selector
Responsibility: Answers "what is owed next" for a lease from outstanding
    rent invoices, falling back to the lease pointer when nothing is
    outstanding.
Architecture position: Kernel > Selectors.  Read-only.

Failure modes:
    - LeaseNotFoundError if the lease id does not resolve.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from rent_kernel.domain.coverage import eligible_start_month
from rent_kernel.domain.periods import month_label
from rent_kernel.exceptions import LeaseNotFoundError
from rent_kernel.models.lease import Lease
from rent_kernel.selectors.base import BaseSelector
from rent_kernel.selectors.invoice_selector import InvoiceSelector


@dataclass(frozen=True)
class NextDueInfo:
    """Next amount owed on a lease."""

    next_due_date: date | None
    next_amount: Decimal | None
    unpaid_count: int
    total_owed: Decimal
    paid_count: int = 0
    last_paid_period: date | None = None

    @property
    def last_paid_label(self) -> str | None:
        if self.last_paid_period is None:
            return None
        return month_label(self.last_paid_period)

    @property
    def has_arrears(self) -> bool:
        return self.unpaid_count > 0


class NextDueSelector(BaseSelector[Lease]):
    """Selector computing the next due date and amount of a lease."""

    def __init__(self, session):
        super().__init__(session)
        self._invoices = InvoiceSelector(session)

    def get_next_due_date(self, lease_id: UUID) -> NextDueInfo:
        lease = self.session.get(Lease, lease_id)
        if lease is None:
            raise LeaseNotFoundError(str(lease_id))

        outstanding = self._invoices.outstanding_rent(lease_id)
        paid_periods = self._invoices.paid_rent_periods(
            lease_id, eligible_start_month(lease.start_date)
        )
        last_paid = paid_periods[-1] if paid_periods else lease.rent_paid_until

        if outstanding:
            return NextDueInfo(
                next_due_date=outstanding[0].due_date,
                next_amount=outstanding[0].amount,
                unpaid_count=len(outstanding),
                total_owed=sum((inv.amount for inv in outstanding), Decimal("0")),
                paid_count=len(paid_periods),
                last_paid_period=last_paid,
            )

        return NextDueInfo(
            next_due_date=lease.next_rent_due_date,
            next_amount=lease.monthly_rent if lease.next_rent_due_date else None,
            unpaid_count=0,
            total_owed=Decimal("0"),
            paid_count=len(paid_periods),
            last_paid_period=last_paid,
        )
