"""
PaymentValidator -- Pure validation rules for rent payments.

Responsibility:
    Recency checks, tolerance-band amount matching, month-count inference
    and large-prepayment warnings.  Every rule is parameterised by an
    AllocationPolicy; nothing here touches the database or the clock.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Hard errors block allocation; warnings never do.
    - All amounts are Decimal; the expected amount is rent * months.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from rent_kernel.db.types import round_half_up_int, round_money
from rent_kernel.domain.dtos import AmountCheck
from rent_kernel.domain.policy import AllocationPolicy
from rent_kernel.exceptions import (
    AmountOutOfToleranceError,
    PaymentDateInFutureError,
    PaymentTooOldError,
)


class PaymentValidator:
    """
    Stateless rule set for incoming payments.

    Contract:
        ``validate_*`` methods return error/warning messages rather than
        raising, so that a dry run can collect every problem at once.
    """

    def __init__(self, policy: AllocationPolicy | None = None):
        self._policy = policy or AllocationPolicy.with_defaults()

    @property
    def policy(self) -> AllocationPolicy:
        return self._policy

    def validate_recency(self, payment_date: datetime, now: datetime) -> list[str]:
        """Reject future-dated payments and ones older than the age cap."""
        errors: list[str] = []
        if payment_date > now:
            errors.append(str(PaymentDateInFutureError(payment_date, now)))
        cutoff = now - timedelta(days=self._policy.max_payment_age_days)
        if payment_date < cutoff:
            errors.append(
                str(PaymentTooOldError(payment_date, self._policy.max_payment_age_days))
            )
        return errors

    def expected_amount(self, monthly_rent: Decimal, months: int) -> Decimal:
        return monthly_rent * months

    def within_tolerance(self, amount_paid: Decimal, expected: Decimal) -> bool:
        return abs(amount_paid - expected) <= expected * self._policy.amount_tolerance

    def validate_amount(
        self,
        amount_paid: Decimal,
        months_paid: int,
        monthly_rent: Decimal,
    ) -> AmountCheck:
        """
        Compare the paid amount with ``monthly_rent * months_paid``.

        Outside the tolerance band is an error; inside the band with a
        non-zero difference produces an over/underpayment warning.
        """
        expected = self.expected_amount(monthly_rent, months_paid)
        delta = amount_paid - expected

        if not self.within_tolerance(amount_paid, expected):
            error = AmountOutOfToleranceError(amount_paid, expected, months_paid)
            return AmountCheck(expected=expected, delta=delta, errors=(str(error),))

        warnings: tuple[str, ...] = ()
        currency = self._policy.currency
        if delta > 0:
            warnings = (
                f"Overpayment: +{currency} {round_money(delta):,} "
                "will still be applied to the covered months.",
            )
        elif delta < 0:
            warnings = (
                f"Underpayment: -{currency} {round_money(-delta):,} "
                "may leave part of a month unpaid.",
            )
        return AmountCheck(expected=expected, delta=delta, warnings=warnings)

    def infer_months_from_amount(
        self,
        amount_paid: Decimal,
        monthly_rent: Decimal,
        months_hint: int,
    ) -> tuple[int, str | None]:
        """
        Prefer the month count implied by the amount when it fits the band.

        Returns:
            (months, warning) -- warning is set only when the inferred
            count overrides the hint.
        """
        if monthly_rent <= 0:
            return months_hint, None
        inferred = round_half_up_int(amount_paid / monthly_rent)
        if inferred < 1 or inferred == months_hint:
            return months_hint, None
        if not self.within_tolerance(
            amount_paid, self.expected_amount(monthly_rent, inferred)
        ):
            return months_hint, None
        warning = (
            f"Payment amount matches {inferred} month(s) of rent; "
            f"using {inferred} instead of the requested {months_hint}."
        )
        return inferred, warning

    def resolve_months(
        self,
        amount_paid: Decimal,
        monthly_rent: Decimal,
        months_hint: int | None,
    ) -> tuple[int, str | None]:
        """Authoritative month count: hint (or amount/rent), then inference."""
        if months_hint:
            base = max(1, int(months_hint))
        elif monthly_rent > 0:
            base = max(1, round_half_up_int(amount_paid / monthly_rent))
        else:
            base = 1
        return self.infer_months_from_amount(amount_paid, monthly_rent, base)

    def prepayment_size_warnings(self, months: int) -> list[str]:
        if months > self._policy.very_large_prepayment_months:
            return [
                f"Large prepayment detected (over "
                f"{self._policy.very_large_prepayment_months} months). "
                "Ensure tenant intent is confirmed."
            ]
        if months > self._policy.large_prepayment_months:
            return [
                f"Large prepayment detected "
                f"({self._policy.large_prepayment_months}+ months). "
                "Confirm tenant intent."
            ]
        return []
