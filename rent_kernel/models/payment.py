"""
Module: rent_kernel.models.payment
Responsibility: ORM persistence for tenant payments and their allocation
    idempotency markers.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A payment is allocated at most once.  applied_to_prepayment, batch_id
      and the notes sentinel are written in the same transaction as the
      invoice mutations they guard; either marker short-circuits a replay.
    - payment_date is timezone-aware (UTCDateTime).

Failure modes:
    - PaymentNotFoundError when a payment id does not resolve.
    - PaymentAlreadyAppliedError when a concurrent request applied the
      payment first (detected under SELECT ... FOR UPDATE).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rent_kernel.db.base import TrackedBase, UUIDString


class Payment(TrackedBase):
    """A single payment by a tenant, possibly covering several months."""

    __tablename__ = "rent_payments"

    __table_args__ = (
        Index("idx_payment_tenant_date", "tenant_user_id", "payment_date"),
        Index("idx_payment_receipt", "receipt_reference"),
    )

    # First invoice settled by this payment
    invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("rent_invoices.id"),
        nullable=True,
    )

    tenant_user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    amount_paid: Mapped[Decimal] = mapped_column(nullable=False)

    payment_date: Mapped[datetime] = mapped_column(nullable=False)

    months_paid: Mapped[int | None] = mapped_column(Integer, nullable=True)

    payment_method: Mapped[str] = mapped_column(
        String(20),
        default="mpesa",
        nullable=False,
    )

    # M-Pesa receipt number or bank reference
    receipt_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    verified_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)

    applied_to_prepayment: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Shared id of the invoices touched by one allocation
    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    def __repr__(self) -> str:
        return f"<Payment {self.id}: {self.amount_paid} applied={self.applied_to_prepayment}>"

    def carries_sentinel(self, sentinel: str) -> bool:
        """Check whether the notes carry the idempotency sentinel."""
        return bool(self.notes) and sentinel in self.notes

    def is_applied(self, sentinel: str) -> bool:
        return bool(self.applied_to_prepayment) or self.carries_sentinel(sentinel)

    def append_note(self, text: str) -> None:
        self.notes = f"{self.notes}\n{text}" if self.notes else text
