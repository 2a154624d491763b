"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable data structures that flow through the allocation pipeline:
    LeaseState (snapshot of a lease), PaymentCandidate (duplicate scan
    input), CoverageWindow (scheduler output), PrepaymentRequest (input)
    and PrepaymentResult / ValidationReport (outputs).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ``from_model()`` class methods are boundary converters invoked only
    from the service and selector layers.

Invariants enforced:
    - Domain logic accepts/returns DTOs, never ORM entities.
    - Monetary fields are Decimal, never float.

Data flow:
    PrepaymentRequest -> (validators, CoverageWindow) -> PrepaymentResult
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


@dataclass(frozen=True)
class LeaseState:
    """Snapshot of the lease fields that drive coverage scheduling."""

    lease_id: UUID
    tenant_user_id: UUID
    monthly_rent: Decimal
    status: str
    start_date: date
    end_date: date | None = None
    rent_paid_until: date | None = None
    next_rent_due_date: date | None = None
    rent_due_day: int | None = None

    @classmethod
    def from_model(cls, lease: Any) -> LeaseState:
        """Build from an ORM Lease (service/selector layer only)."""
        return cls(
            lease_id=lease.id,
            tenant_user_id=lease.tenant_user_id,
            monthly_rent=lease.monthly_rent,
            status=str(lease.status),
            start_date=lease.start_date,
            end_date=lease.end_date,
            rent_paid_until=lease.rent_paid_until,
            next_rent_due_date=lease.next_rent_due_date,
            rent_due_day=lease.rent_due_day,
        )


@dataclass(frozen=True)
class PaymentCandidate:
    """Another payment considered by the duplicate scan."""

    payment_id: UUID
    amount_paid: Decimal
    payment_date: datetime
    invoice_id: UUID | None = None
    receipt_reference: str | None = None

    @classmethod
    def from_model(cls, payment: Any) -> PaymentCandidate:
        return cls(
            payment_id=payment.id,
            amount_paid=payment.amount_paid,
            payment_date=payment.payment_date,
            invoice_id=payment.invoice_id,
            receipt_reference=payment.receipt_reference,
        )


@dataclass(frozen=True)
class CoverageWindow:
    """
    Consecutive monthly periods a payment is allocated against.

    Guarantees:
        - ``periods`` are month-start dates in ascending, gap-free order.
        - ``due_dates[i]`` falls inside ``periods[i]``.
        - ``len(periods) <= requested_months``; shorter means the lease
          end date truncated the window.
    """

    requested_months: int
    periods: tuple[date, ...] = ()
    due_dates: tuple[date, ...] = ()

    @property
    def start(self) -> date | None:
        return self.periods[0] if self.periods else None

    @property
    def last(self) -> date | None:
        return self.periods[-1] if self.periods else None

    @property
    def truncated(self) -> bool:
        """True when the lease end month cut the window short."""
        return len(self.periods) < self.requested_months

    @property
    def is_complete(self) -> bool:
        return len(self.periods) == self.requested_months and self.requested_months > 0

    @property
    def covers_months(self) -> tuple[str, ...]:
        """ISO due dates, for dry-run reporting."""
        return tuple(d.isoformat() for d in self.due_dates)


@dataclass(frozen=True)
class AmountCheck:
    """Outcome of the tolerance-band amount check."""

    expected: Decimal
    delta: Decimal
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class DuplicateCheck:
    """
    Near-duplicate scan result.

    hard_matches are (payment_id, reason) pairs that must reject the
    payment; soft_matches only produce a warning.
    """

    hard_matches: tuple[tuple[UUID, str], ...] = ()
    soft_matches: tuple[UUID, ...] = ()

    @property
    def is_hard_duplicate(self) -> bool:
        return bool(self.hard_matches)

    @property
    def is_soft_duplicate(self) -> bool:
        return bool(self.soft_matches) and not self.hard_matches


class PaymentMethod(str, Enum):
    """How the tenant paid."""

    MPESA = "mpesa"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CHEQUE = "cheque"
    CARD = "card"


@dataclass(frozen=True)
class PrepaymentRequest:
    """
    Verified payment event handed over by the payment gateway collaborator.

    ``months_paid`` is a hint; the engine resolves the authoritative count.
    """

    payment_id: UUID
    lease_id: UUID
    tenant_user_id: UUID
    amount_paid: Decimal
    payment_date: datetime
    months_paid: int | None = None
    payment_method: PaymentMethod = PaymentMethod.MPESA
    actor_id: UUID | None = None

    def __post_init__(self):
        if isinstance(self.amount_paid, float):
            raise TypeError("amount_paid must be Decimal, not float")
        if self.amount_paid <= 0:
            raise ValueError("amount_paid must be positive")
        if self.payment_date.tzinfo is None:
            raise ValueError("payment_date must be timezone-aware")


class AllocationStatus(str, Enum):
    """Status of an allocation attempt."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    VALIDATION_FAILED = "validation_failed"
    LEASE_INACTIVE = "lease_inactive"
    NOT_FOUND = "not_found"
    CONSISTENCY_FAILED = "consistency_failed"
    COVERAGE_EXHAUSTED = "coverage_exhausted"
    STORAGE_FAILED = "storage_failed"


@dataclass(frozen=True)
class PrepaymentResult:
    """Result of ``process_rent_prepayment``."""

    status: AllocationStatus
    message: str
    validation_errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    applied_invoices: tuple[UUID, ...] = ()
    created_invoices: tuple[UUID, ...] = ()
    next_due_date: date | None = None
    next_due_amount: Decimal | None = None
    paid_up_to_label: str | None = None
    months_paid: int | None = None
    batch_id: UUID | None = None
    error_code: str | None = None

    @property
    def success(self) -> bool:
        return self.status in (
            AllocationStatus.APPLIED,
            AllocationStatus.ALREADY_APPLIED,
        )

    @property
    def is_replay(self) -> bool:
        return self.status == AllocationStatus.ALREADY_APPLIED

    @classmethod
    def failure(
        cls,
        status: AllocationStatus,
        message: str,
        errors: list[str] | tuple[str, ...] = (),
        error_code: str | None = None,
        warnings: list[str] | tuple[str, ...] = (),
    ) -> PrepaymentResult:
        return cls(
            status=status,
            message=message,
            validation_errors=tuple(errors) or (message,),
            warnings=tuple(warnings),
            error_code=error_code,
        )


@dataclass(frozen=True)
class ValidationReport:
    """Dry-run result of ``validate_prepayment_data``. No mutation occurred."""

    is_valid: bool
    errors: tuple[str, ...] = field(default_factory=tuple)
    warnings: tuple[str, ...] = field(default_factory=tuple)
    expected_amount: Decimal = Decimal("0")
    months_paid: int = 0
    unpaid_invoice_count: int = 0
    covers_months: tuple[str, ...] = field(default_factory=tuple)

    def __bool__(self) -> bool:
        return self.is_valid
