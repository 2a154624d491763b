"""
Configuration schema (``rent_config.schema``).

Frozen dataclasses mirroring the YAML policy set.  Parsing lives in
``rent_config.loader``; conversion to the kernel's ``AllocationPolicy``
happens here so that the kernel never imports this package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from rent_kernel.domain.policy import AllocationPolicy


@dataclass(frozen=True)
class AllocationPolicyDef:
    """The ``allocation:`` section of a policy set."""

    amount_tolerance: Decimal = Decimal("0.05")
    duplicate_window_hours: int = 24
    max_payment_age_days: int = 180
    rent_due_day: int = 5
    large_prepayment_months: int = 6
    very_large_prepayment_months: int = 12
    idempotency_sentinel: str = "[prepayment_applied]"
    enforce_checks_on_single_month: bool = False
    currency: str = "KES"

    def to_policy(self) -> AllocationPolicy:
        return AllocationPolicy(
            amount_tolerance=self.amount_tolerance,
            duplicate_window_hours=self.duplicate_window_hours,
            max_payment_age_days=self.max_payment_age_days,
            rent_due_day=self.rent_due_day,
            large_prepayment_months=self.large_prepayment_months,
            very_large_prepayment_months=self.very_large_prepayment_months,
            idempotency_sentinel=self.idempotency_sentinel,
            enforce_checks_on_single_month=self.enforce_checks_on_single_month,
            currency=self.currency,
        )


@dataclass(frozen=True)
class PolicySet:
    """A complete, identified policy set loaded from one YAML file."""

    config_id: str
    version: int
    allocation: AllocationPolicyDef = field(default_factory=AllocationPolicyDef)
    description: str = ""
    checksum: str = ""
