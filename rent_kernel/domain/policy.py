"""
AllocationPolicy -- tunable constants for rent allocation.

Responsibility:
    Holds the policy knobs that govern amount matching, duplicate
    detection, recency, due dates and idempotency markers.  The kernel
    consumes this frozen value; ``rent_config`` builds it from YAML.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.  The kernel MUST NEVER import
    from ``rent_config``.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Self


@dataclass(frozen=True)
class AllocationPolicy:
    """Policy constants for validation and allocation."""

    # +/- fraction of the expected amount accepted without a hard error
    amount_tolerance: Decimal = Decimal("0.05")

    # Near-duplicate search window on either side of the payment date
    duplicate_window_hours: int = 24

    # Payments older than this are not processed automatically
    max_payment_age_days: int = 180

    # Default day of month rent falls due (leases may override, 1-28)
    rent_due_day: int = 5

    # Warning thresholds for unusually large prepayments
    large_prepayment_months: int = 6
    very_large_prepayment_months: int = 12

    # Marker appended to payment notes once a prepayment is applied
    idempotency_sentinel: str = "[prepayment_applied]"

    # Run recency/duplicate checks on single-month payments too
    enforce_checks_on_single_month: bool = False

    currency: str = "KES"

    def __post_init__(self):
        if not (Decimal("0") <= self.amount_tolerance < Decimal("1")):
            raise ValueError("amount_tolerance must be in [0, 1)")
        if self.duplicate_window_hours < 0:
            raise ValueError("duplicate_window_hours cannot be negative")
        if self.max_payment_age_days <= 0:
            raise ValueError("max_payment_age_days must be positive")
        if not 1 <= self.rent_due_day <= 28:
            raise ValueError("rent_due_day must be between 1 and 28")
        if self.large_prepayment_months > self.very_large_prepayment_months:
            raise ValueError(
                "large_prepayment_months cannot exceed very_large_prepayment_months"
            )
        if not self.idempotency_sentinel.strip():
            raise ValueError("idempotency_sentinel cannot be blank")

    def due_day_for(self, lease_due_day: int | None) -> int:
        """A lease's override when it lies in 1..28, else the policy day."""
        if lease_due_day and 1 <= lease_due_day <= 28:
            return lease_due_day
        return self.rent_due_day

    @classmethod
    def with_defaults(cls) -> Self:
        """Create a policy with the standard constants."""
        return cls()
