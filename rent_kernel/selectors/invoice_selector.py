"""
Module: rent_kernel.selectors.invoice_selector
Responsibility: Read-only queries over lease invoices: point lookups,
    outstanding-invoice scans ordered by due date, and period-range
    lookups used for allocation and replay.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Only ``rent`` invoices are returned unless another type is asked for.
    - Ordering is deterministic (due date / period, then id).
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from rent_kernel.models.invoice import (
    OUTSTANDING_STATUSES,
    Invoice,
    InvoiceStatus,
    InvoiceType,
)
from rent_kernel.selectors.base import BaseSelector


class InvoiceSelector(BaseSelector[Invoice]):
    """Selector for invoice queries."""

    def get(self, invoice_id: UUID) -> Invoice | None:
        return self.session.get(Invoice, invoice_id)

    def outstanding_rent(
        self,
        lease_id: UUID,
        from_period: date | None = None,
    ) -> list[Invoice]:
        """Unpaid, overdue and partially paid rent invoices by due date."""
        stmt = select(Invoice).where(
            Invoice.lease_id == lease_id,
            Invoice.invoice_type == InvoiceType.RENT.value,
            Invoice.status.in_(OUTSTANDING_STATUSES),
        )
        if from_period is not None:
            stmt = stmt.where(Invoice.period_start >= from_period)
        stmt = stmt.order_by(Invoice.due_date, Invoice.id)
        return list(self.session.execute(stmt).scalars().all())

    def in_period_range(
        self,
        lease_id: UUID,
        first_period: date,
        last_period: date,
        invoice_type: str = InvoiceType.RENT.value,
    ) -> list[Invoice]:
        """Invoices with ``first_period <= period_start <= last_period``."""
        stmt = (
            select(Invoice)
            .where(
                Invoice.lease_id == lease_id,
                Invoice.invoice_type == invoice_type,
                Invoice.period_start >= first_period,
                Invoice.period_start <= last_period,
            )
            .order_by(Invoice.period_start, Invoice.id)
        )
        return list(self.session.execute(stmt).scalars().all())

    def latest_paid_rent(
        self,
        lease_id: UUID,
        from_period: date | None = None,
    ) -> Invoice | None:
        """Most recent paid rent invoice, optionally at or after a period."""
        stmt = select(Invoice).where(
            Invoice.lease_id == lease_id,
            Invoice.invoice_type == InvoiceType.RENT.value,
            Invoice.status == InvoiceStatus.PAID.value,
        )
        if from_period is not None:
            stmt = stmt.where(Invoice.period_start >= from_period)
        stmt = stmt.order_by(Invoice.period_start.desc()).limit(1)
        return self.session.execute(stmt).scalars().first()

    def paid_rent_periods(
        self,
        lease_id: UUID,
        from_period: date | None = None,
    ) -> list[date]:
        stmt = select(Invoice.period_start).where(
            Invoice.lease_id == lease_id,
            Invoice.invoice_type == InvoiceType.RENT.value,
            Invoice.status == InvoiceStatus.PAID.value,
        )
        if from_period is not None:
            stmt = stmt.where(Invoice.period_start >= from_period)
        stmt = stmt.order_by(Invoice.period_start)
        return list(self.session.execute(stmt).scalars().all())

    def overdue_candidates(self, as_of: date) -> list[Invoice]:
        """Unpaid rent invoices whose due date lies before ``as_of``."""
        stmt = (
            select(Invoice)
            .where(
                Invoice.invoice_type == InvoiceType.RENT.value,
                Invoice.status == InvoiceStatus.UNPAID.value,
                Invoice.due_date < as_of,
            )
            .order_by(Invoice.due_date, Invoice.id)
        )
        return list(self.session.execute(stmt).scalars().all())
