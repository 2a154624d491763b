"""
Module: rent_kernel.selectors.payment_selector
Responsibility: Read-only payment queries, including the candidate scan
    that feeds DuplicateDetector.
Architecture position: Kernel > Selectors.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from rent_kernel.domain.dtos import PaymentCandidate
from rent_kernel.models.payment import Payment
from rent_kernel.selectors.base import BaseSelector


class PaymentSelector(BaseSelector[Payment]):
    """Selector for payment queries."""

    def duplicate_candidates(
        self,
        tenant_user_id: UUID,
        exclude_payment_id: UUID,
        window_start: datetime,
        window_end: datetime,
    ) -> list[PaymentCandidate]:
        """Other payments by the same tenant inside the window."""
        stmt = (
            select(Payment)
            .where(
                Payment.tenant_user_id == tenant_user_id,
                Payment.id != exclude_payment_id,
                Payment.payment_date >= window_start,
                Payment.payment_date <= window_end,
            )
            .order_by(Payment.payment_date, Payment.id)
        )
        return [
            PaymentCandidate.from_model(p)
            for p in self.session.execute(stmt).scalars().all()
        ]
