"""
Module: rent_kernel.models.invoice
Responsibility: ORM persistence for monthly lease invoices.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one invoice per (lease, invoice type, period) --
      uq_invoice_lease_type_period.  Invoice creation is an upsert that
      does nothing on conflict, so concurrent or repeated runs are safe.
    - period_start is always the first day of a month.

Failure modes:
    - InvoiceNotFoundError when an invoice id does not resolve.
    - InvoiceTypeMismatchError / InvoiceLeaseMismatchError when a payment
      references an invoice it cannot settle.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rent_kernel.db.base import TrackedBase, UUIDString


class InvoiceType(str, Enum):
    """Invoice kinds.  Only rent invoices take part in allocation."""

    RENT = "rent"
    WATER = "water"
    ELECTRICITY = "electricity"
    DEPOSIT = "deposit"


class InvoiceStatus(str, Enum):
    """Payment status of an invoice.

    Contract: unpaid -> (overdue) -> partially_paid -> paid.  A paid
    invoice never returns to an outstanding status.
    """

    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"


OUTSTANDING_STATUSES = (
    InvoiceStatus.UNPAID.value,
    InvoiceStatus.OVERDUE.value,
    InvoiceStatus.PARTIALLY_PAID.value,
)


class Invoice(TrackedBase):
    """One billing period of one charge on a lease."""

    __tablename__ = "rent_invoices"

    __table_args__ = (
        UniqueConstraint(
            "lease_id",
            "invoice_type",
            "period_start",
            name="uq_invoice_lease_type_period",
        ),
        Index("idx_invoice_lease_status", "lease_id", "status"),
        Index("idx_invoice_due_date", "due_date"),
    )

    lease_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("rent_leases.id"),
        nullable=False,
    )

    invoice_type: Mapped[str] = mapped_column(
        String(20),
        default=InvoiceType.RENT.value,
        nullable=False,
    )

    # First day of the billed month
    period_start: Mapped[date] = mapped_column(Date, nullable=False)

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=InvoiceStatus.UNPAID.value,
        nullable=False,
    )

    months_covered: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
    )

    # Date the invoice was settled
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_type} {self.period_start}: {self.status}>"

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID.value

    @property
    def is_outstanding(self) -> bool:
        return self.status in OUTSTANDING_STATUSES
