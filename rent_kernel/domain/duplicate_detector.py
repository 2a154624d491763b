"""
DuplicateDetector -- time-windowed near-duplicate payment detection.

Responsibility:
    Classifies other payments by the same tenant, made within the
    duplicate window, as hard duplicates (reject) or soft duplicates
    (warn).  The candidate list is supplied by PaymentSelector; this
    module never queries.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - A candidate only matches when its amount lies within the tolerance
      band around the payment's amount.
    - Hard: identical receipt reference, or a matching candidate targets
      the same single invoice.  Everything else that matches is soft.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from rent_kernel.domain.dtos import DuplicateCheck, PaymentCandidate
from rent_kernel.domain.policy import AllocationPolicy

RECEIPT_MATCH = "receipt_reference"
SAME_INVOICE = "same_invoice"


class DuplicateDetector:
    """Near-duplicate scan over pre-filtered candidates."""

    def __init__(self, policy: AllocationPolicy | None = None):
        self._policy = policy or AllocationPolicy.with_defaults()

    def window(self, payment_date: datetime) -> tuple[datetime, datetime]:
        """Inclusive search window around ``payment_date``."""
        span = timedelta(hours=self._policy.duplicate_window_hours)
        return payment_date - span, payment_date + span

    def _amount_matches(self, amount: Decimal, candidate_amount: Decimal) -> bool:
        tolerance = self._policy.amount_tolerance
        lower = amount * (Decimal("1") - tolerance)
        upper = amount * (Decimal("1") + tolerance)
        return lower <= candidate_amount <= upper

    def check(
        self,
        payment_id: UUID,
        amount_paid: Decimal,
        payment_date: datetime,
        candidates: Iterable[PaymentCandidate],
        invoice_id: UUID | None = None,
        receipt_reference: str | None = None,
    ) -> DuplicateCheck:
        lower, upper = self.window(payment_date)
        reference = (receipt_reference or "").strip() or None

        hard: list[tuple[UUID, str]] = []
        soft: list[UUID] = []
        for candidate in candidates:
            if candidate.payment_id == payment_id:
                continue
            if not lower <= candidate.payment_date <= upper:
                continue

            candidate_reference = (candidate.receipt_reference or "").strip() or None
            if reference is not None and candidate_reference == reference:
                hard.append((candidate.payment_id, RECEIPT_MATCH))
                continue

            if not self._amount_matches(amount_paid, candidate.amount_paid):
                continue
            if invoice_id is not None and candidate.invoice_id == invoice_id:
                hard.append((candidate.payment_id, SAME_INVOICE))
            else:
                soft.append(candidate.payment_id)

        return DuplicateCheck(hard_matches=tuple(hard), soft_matches=tuple(soft))

    def soft_warning(self) -> str:
        return (
            "A similar payment was logged within the last "
            f"{self._policy.duplicate_window_hours} hours. "
            "Review duplicates before proceeding."
        )
