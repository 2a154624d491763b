"""
CoverageScheduler -- decides which monthly periods a payment covers.

Responsibility:
    Computes the first month a payment may cover for a lease and builds
    the consecutive window of periods (with due dates) that the payment
    is allocated against, capped at the lease end month.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Coverage never starts at or before the month in ``rent_paid_until``.
    - A lease starting after the 1st is first billed the following month.
    - Periods are month-start dates; due dates are clamped to month length.

Failure modes:
    - CoverageExhaustedError from ``require_full_window`` when the lease
      end date leaves no room, or fewer months than requested.
"""

from __future__ import annotations

from datetime import date

from rent_kernel.domain.dtos import CoverageWindow, LeaseState
from rent_kernel.domain.periods import add_months, due_date_for, month_start
from rent_kernel.domain.policy import AllocationPolicy
from rent_kernel.exceptions import CoverageExhaustedError


def eligible_start_month(start_date: date) -> date:
    """First billable month of a lease."""
    first = month_start(start_date)
    if start_date.day > 1:
        return add_months(first, 1)
    return first


class CoverageScheduler:
    """Coverage-start and window computation for one lease at a time."""

    def __init__(self, policy: AllocationPolicy | None = None):
        self._policy = policy or AllocationPolicy.with_defaults()

    def due_day_for(self, lease: LeaseState) -> int:
        return self._policy.due_day_for(lease.rent_due_day)

    def coverage_floor(self, lease: LeaseState) -> date:
        """Earliest month coverage may ever start at."""
        floor = eligible_start_month(lease.start_date)
        if lease.rent_paid_until is not None:
            after_paid = add_months(month_start(lease.rent_paid_until), 1)
            floor = max(floor, after_paid)
        return floor

    def coverage_start(
        self,
        lease: LeaseState,
        oldest_outstanding_period: date | None = None,
        honor_next_due: bool = True,
    ) -> date:
        """
        First month to allocate against.

        The stored ``next_rent_due_date`` pushes the start forward, but an
        outstanding invoice between the floor and that pointer is settled
        first.
        """
        floor = self.coverage_floor(lease)
        candidate = floor
        if honor_next_due and lease.next_rent_due_date is not None:
            candidate = max(candidate, month_start(lease.next_rent_due_date))

        if oldest_outstanding_period is not None:
            outstanding = month_start(oldest_outstanding_period)
            if floor <= outstanding < candidate:
                return outstanding
        return candidate

    def build_window(
        self,
        start: date,
        months: int,
        due_day: int,
        end_date: date | None = None,
    ) -> CoverageWindow:
        """Consecutive periods from ``start``, stopping at the end month."""
        first = month_start(start)
        last_allowed = month_start(end_date) if end_date is not None else None

        periods: list[date] = []
        for offset in range(max(months, 0)):
            period = add_months(first, offset)
            if last_allowed is not None and period > last_allowed:
                break
            periods.append(period)

        return CoverageWindow(
            requested_months=months,
            periods=tuple(periods),
            due_dates=tuple(due_date_for(p, due_day) for p in periods),
        )

    def window_for(
        self,
        lease: LeaseState,
        months: int,
        oldest_outstanding_period: date | None = None,
    ) -> CoverageWindow:
        start = self.coverage_start(lease, oldest_outstanding_period)
        return self.build_window(start, months, self.due_day_for(lease), lease.end_date)

    @staticmethod
    def require_full_window(lease: LeaseState, window: CoverageWindow) -> CoverageWindow:
        if not window.is_complete:
            raise CoverageExhaustedError(
                str(lease.lease_id), window.requested_months, len(window.periods)
            )
        return window
