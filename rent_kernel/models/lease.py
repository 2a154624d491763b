"""
Module: rent_kernel.models.lease
Responsibility: ORM persistence for tenancy leases and their rent pointers.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - rent_paid_until only moves forward (enforced by LeasePointerService
      and the prepayment unit of work, never by callers).
    - rent_paid_until, when set, is the first day of the last fully paid
      month; next_rent_due_date lies in a later month.

Failure modes:
    - LeaseNotFoundError when a lease id does not resolve.
    - LeaseInactiveError when a payment targets a lease that is not
      active or pending.

Audit relevance:
    The two pointers are a cache over invoice state.  They are recomputed
    from paid invoices after every allocation, so drift self-heals.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rent_kernel.db.base import TrackedBase, UUIDString


class LeaseStatus(str, Enum):
    """Lifecycle status of a lease."""

    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"
    EXPIRED = "expired"


PAYABLE_STATUSES = (LeaseStatus.ACTIVE.value, LeaseStatus.PENDING.value)


class Lease(TrackedBase):
    """
    A tenant's lease on a unit.

    Guarantees:
        - monthly_rent is a Decimal.
        - rent_due_day, when set, lies in 1..28.
    """

    __tablename__ = "rent_leases"

    __table_args__ = (
        CheckConstraint(
            "rent_due_day BETWEEN 1 AND 28",
            name="ck_rent_leases_due_day_range",
        ),
        Index("idx_lease_tenant", "tenant_user_id"),
        Index("idx_lease_status", "status"),
    )

    tenant_user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    monthly_rent: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=LeaseStatus.ACTIVE.value,
        nullable=False,
    )

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # First day of the last fully paid month
    rent_paid_until: Mapped[date | None] = mapped_column(Date, nullable=True)

    next_rent_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Per-lease override of the policy due day
    rent_due_day: Mapped[int | None] = mapped_column(Integer, nullable=True)

    currency: Mapped[str] = mapped_column(
        String(3),
        default="KES",
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Lease {self.id}: {self.status} rent={self.monthly_rent}>"

    @property
    def is_active(self) -> bool:
        return self.status == LeaseStatus.ACTIVE.value

    @property
    def accepts_payments(self) -> bool:
        return self.status in PAYABLE_STATUSES
