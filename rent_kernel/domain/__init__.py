"""Pure domain core: clock, policy, DTOs, validation and coverage rules."""

from rent_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from rent_kernel.domain.coverage import CoverageScheduler, eligible_start_month
from rent_kernel.domain.dtos import (
    AllocationStatus,
    AmountCheck,
    CoverageWindow,
    DuplicateCheck,
    LeaseState,
    PaymentCandidate,
    PaymentMethod,
    PrepaymentRequest,
    PrepaymentResult,
    ValidationReport,
)
from rent_kernel.domain.duplicate_detector import DuplicateDetector
from rent_kernel.domain.payment_validator import PaymentValidator
from rent_kernel.domain.policy import AllocationPolicy

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "AllocationPolicy",
    "AllocationStatus",
    "AmountCheck",
    "CoverageWindow",
    "DuplicateCheck",
    "LeaseState",
    "PaymentCandidate",
    "PaymentMethod",
    "PrepaymentRequest",
    "PrepaymentResult",
    "ValidationReport",
    "CoverageScheduler",
    "eligible_start_month",
    "DuplicateDetector",
    "PaymentValidator",
]
