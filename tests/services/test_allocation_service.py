"""
Tests for RentAllocationService.

Covers the multi-month prepayment path end to end against a real
database session:
- Exact coverage, tolerance band and inferred month counts
- Idempotent replay (flag and sentinel)
- Hard duplicate rejection with zero mutation
- Lease-end truncation, mid-month starts, arrears first
- Single-month settlement, partial payment and already-paid no-op
- Precondition failures and storage failure rollback
- Settlement notifications and the dry-run validator
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from rent_kernel.domain.dtos import AllocationStatus, PrepaymentRequest
from rent_kernel.domain.policy import AllocationPolicy
from rent_kernel.models.invoice import Invoice, InvoiceStatus
from rent_kernel.models.lease import LeaseStatus
from rent_kernel.models.payment import Payment
from rent_kernel.services.allocation_service import (
    EXCEEDS_UNPAID_WARNING,
    RentAllocationService,
)
from rent_kernel.services.prepayment_unit_of_work import PrepaymentUnitOfWork

FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def invoice_count(session) -> int:
    return session.execute(select(func.count()).select_from(Invoice)).scalar_one()


def rent_invoices(session, lease) -> list[Invoice]:
    return list(
        session.execute(
            select(Invoice).where(Invoice.lease_id == lease.id).order_by(Invoice.period_start)
        ).scalars().all()
    )


class TestExactCoverage:

    def test_three_months_from_lease_start(
        self, session, allocation_service, make_lease, make_payment, make_request
    ):
        """30,000 against 10,000 rent covers January to March."""
        lease = make_lease()
        payment = make_payment(Decimal("30000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.APPLIED
        assert result.success
        assert result.months_paid == 3
        assert len(result.applied_invoices) == 3
        assert set(result.created_invoices) == set(result.applied_invoices)
        assert result.paid_up_to_label == "March 2026"
        assert result.next_due_date == date(2026, 4, 5)
        assert result.next_due_amount == Decimal("10000")
        assert EXCEEDS_UNPAID_WARNING in result.warnings

        invoices = rent_invoices(session, lease)
        assert [i.period_start for i in invoices] == [
            date(2026, 1, 1), date(2026, 2, 1), date(2026, 3, 1)
        ]
        assert all(i.status == InvoiceStatus.PAID.value for i in invoices)

        session.refresh(lease)
        assert lease.rent_paid_until == date(2026, 3, 1)
        assert lease.next_rent_due_date == date(2026, 4, 5)

    def test_payment_markers_written(
        self, session, allocation_service, make_lease, make_payment, make_request
    ):
        """Applied flag, batch id, months and sentinel are stored together."""
        lease = make_lease()
        payment = make_payment(Decimal("30000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        session.refresh(payment)
        assert payment.applied_to_prepayment is True
        assert payment.batch_id == result.batch_id
        assert payment.months_paid == 3
        assert payment.invoice_id == result.applied_invoices[0]
        assert "[prepayment_applied]" in payment.notes

    def test_existing_unpaid_invoices_reused(
        self, session, allocation_service, make_lease, make_invoice, make_payment, make_request
    ):
        """Outstanding invoices are settled rather than duplicated."""
        lease = make_lease()
        january = make_invoice(lease, date(2026, 1, 1))
        february = make_invoice(lease, date(2026, 2, 1))
        payment = make_payment(Decimal("20000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.APPLIED
        assert result.applied_invoices == (january.id, february.id)
        assert result.created_invoices == ()
        assert EXCEEDS_UNPAID_WARNING not in result.warnings
        assert result.message == "Rent prepayment applied."
        assert invoice_count(session) == 2


class TestIdempotency:

    def test_second_call_replays(
        self, session, allocation_service, make_lease, make_payment, make_request
    ):
        """A retried request returns the same invoices and creates nothing."""
        lease = make_lease()
        payment = make_payment(Decimal("30000"))
        request = make_request(lease, payment)

        first = allocation_service.process_rent_prepayment(request)
        second = allocation_service.process_rent_prepayment(request)

        assert second.status == AllocationStatus.ALREADY_APPLIED
        assert second.success
        assert second.is_replay
        assert second.message == "Payment already processed."
        assert second.applied_invoices == first.applied_invoices
        assert second.created_invoices == ()
        assert second.batch_id == first.batch_id
        assert invoice_count(session) == 3

    def test_sentinel_alone_short_circuits(
        self, session, allocation_service, make_lease, make_payment, make_request
    ):
        """A payment whose notes carry the sentinel is never re-applied."""
        lease = make_lease()
        payment = make_payment(Decimal("30000"), notes="manual\n[prepayment_applied]")

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.ALREADY_APPLIED
        assert invoice_count(session) == 0

    def test_notification_sent_once(
        self, allocation_service, notifier, make_lease, make_payment, make_request
    ):
        lease = make_lease()
        payment = make_payment(Decimal("30000"), receipt_reference="QAB12CD")
        request = make_request(lease, payment)

        allocation_service.process_rent_prepayment(request)
        allocation_service.process_rent_prepayment(request)

        assert len(notifier.notices) == 1
        notice = notifier.notices[0]
        assert notice.payment_id == payment.id
        assert notice.amount == Decimal("30000")
        assert notice.receipt_reference == "QAB12CD"


class TestToleranceBand:

    def test_overpayment_inside_band_applied_with_warning(
        self, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease()
        payment = make_payment(Decimal("31400"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.APPLIED
        assert result.months_paid == 3
        assert any(w.startswith("Overpayment") for w in result.warnings)
        assert result.message.startswith("Processed with warnings:")

    def test_overpayment_outside_band_rejected(
        self, session, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease()
        payment = make_payment(Decimal("31900"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.VALIDATION_FAILED
        assert not result.success
        assert result.message == "Payment validation failed."
        assert len(result.validation_errors) == 1
        assert invoice_count(session) == 0
        session.refresh(payment)
        assert not payment.applied_to_prepayment

    def test_inferred_months_override_hint(
        self, allocation_service, make_lease, make_payment, make_request
    ):
        """A hint of 2 with a 3-month amount allocates 3 months."""
        lease = make_lease()
        payment = make_payment(Decimal("30000"), months_paid=2)

        result = allocation_service.process_rent_prepayment(
            make_request(lease, payment, months_paid=2)
        )

        assert result.status == AllocationStatus.APPLIED
        assert result.months_paid == 3
        assert any("using 3 instead of the requested 2" in w for w in result.warnings)

    def test_request_amount_must_match_stored_payment(
        self, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease()
        payment = make_payment(Decimal("30000"))

        result = allocation_service.process_rent_prepayment(
            make_request(lease, payment, amount_paid=Decimal("29500"))
        )

        assert result.status == AllocationStatus.VALIDATION_FAILED
        assert any("mismatch" in e for e in result.validation_errors)


class TestRecencyAndDuplicates:

    def test_future_dated_payment_rejected(
        self, session, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease()
        payment = make_payment(Decimal("30000"), payment_date=FIXED_NOW + timedelta(hours=2))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.VALIDATION_FAILED
        assert "Payment date cannot be in the future." in result.validation_errors
        assert invoice_count(session) == 0

    def test_stale_payment_rejected(
        self, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease()
        payment = make_payment(Decimal("30000"), payment_date=FIXED_NOW - timedelta(days=200))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.VALIDATION_FAILED

    def test_hard_duplicate_receipt_rejected_without_mutation(
        self, session, allocation_service, make_lease, make_payment, make_request
    ):
        """A repeated receipt reference blocks the payment entirely."""
        lease = make_lease()
        make_payment(
            Decimal("30000"),
            payment_date=FIXED_NOW - timedelta(hours=10),
            receipt_reference="QFT7XYZ",
        )
        payment = make_payment(Decimal("30000"), receipt_reference="QFT7XYZ")

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.VALIDATION_FAILED
        assert any("receipt_reference" in e for e in result.validation_errors)
        assert invoice_count(session) == 0
        session.refresh(lease)
        assert lease.rent_paid_until is None
        session.refresh(payment)
        assert not payment.applied_to_prepayment
        assert payment.batch_id is None

    def test_soft_duplicate_only_warns(
        self, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease()
        make_payment(Decimal("29500"), payment_date=FIXED_NOW - timedelta(hours=5))
        payment = make_payment(Decimal("30000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.APPLIED
        assert any("similar payment" in w for w in result.warnings)


class TestCoverageWindow:

    def test_lease_end_caps_coverage(
        self, session, allocation_service, make_lease, make_payment, make_request
    ):
        """Three months on a lease ending in February is rejected whole."""
        lease = make_lease(end_date=date(2026, 2, 15))
        payment = make_payment(Decimal("30000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.COVERAGE_EXHAUSTED
        assert result.message == "Lease ends before all prepaid months can be applied."
        assert invoice_count(session) == 0

    def test_six_months_on_three_remaining_rejected(
        self, session, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease(end_date=date(2026, 3, 31))
        payment = make_payment(Decimal("60000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.COVERAGE_EXHAUSTED
        assert result.error_code == "COVERAGE_EXHAUSTED"
        assert invoice_count(session) == 0
        session.refresh(lease)
        assert lease.rent_paid_until is None

    def test_mid_month_lease_starts_next_month(
        self, session, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease(start_date=date(2026, 1, 15))
        payment = make_payment(Decimal("20000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.APPLIED
        periods = [i.period_start for i in rent_invoices(session, lease)]
        assert periods == [date(2026, 2, 1), date(2026, 3, 1)]

    def test_arrears_settled_before_future_months(
        self, session, allocation_service, make_lease, make_invoice, make_payment, make_request
    ):
        """An unpaid March invoice is paid before April is created."""
        lease = make_lease(
            rent_paid_until=date(2026, 2, 1), next_rent_due_date=date(2026, 4, 5)
        )
        march = make_invoice(lease, date(2026, 3, 1))
        payment = make_payment(Decimal("20000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.APPLIED
        assert result.applied_invoices[0] == march.id
        assert len(result.created_invoices) == 1
        april = session.get(Invoice, result.created_invoices[0])
        assert april.period_start == date(2026, 4, 1)

        session.refresh(lease)
        assert lease.rent_paid_until == date(2026, 4, 1)
        assert lease.next_rent_due_date == date(2026, 5, 5)

    def test_lease_due_day_override(
        self, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease(rent_due_day=1)
        payment = make_payment(Decimal("20000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.next_due_date == date(2026, 3, 1)


class TestSingleMonth:

    def test_full_payment_settles_invoice(
        self, session, allocation_service, notifier, make_lease, make_invoice, make_payment, make_request
    ):
        lease = make_lease()
        invoice = make_invoice(lease, date(2026, 3, 1))
        payment = make_payment(Decimal("10000"), invoice=invoice)

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.APPLIED
        assert result.message == "Rent payment applied."
        assert result.applied_invoices == (invoice.id,)
        session.refresh(invoice)
        assert invoice.status == InvoiceStatus.PAID.value
        session.refresh(lease)
        assert lease.rent_paid_until == date(2026, 3, 1)
        assert lease.next_rent_due_date == date(2026, 4, 5)
        assert len(notifier.notices) == 1

    def test_short_payment_leaves_invoice_partially_paid(
        self, session, allocation_service, notifier, make_lease, make_invoice, make_payment, make_request
    ):
        lease = make_lease()
        invoice = make_invoice(lease, date(2026, 3, 1))
        payment = make_payment(Decimal("5000"), invoice=invoice)

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.APPLIED
        assert any("partially paid" in w for w in result.warnings)
        session.refresh(invoice)
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID.value
        session.refresh(lease)
        assert lease.rent_paid_until is None
        assert notifier.notices == []

    def test_already_paid_invoice_is_noop(
        self, session, allocation_service, notifier, make_lease, make_invoice, make_payment, make_request
    ):
        lease = make_lease()
        invoice = make_invoice(lease, date(2026, 3, 1), status=InvoiceStatus.PAID.value)
        payment = make_payment(Decimal("10000"), invoice=invoice)

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.ALREADY_APPLIED
        assert result.message == "Invoice already paid."
        assert notifier.notices == []

    def test_repeat_on_paid_invoice_does_not_move_pointers(
        self, session, allocation_service, make_lease, make_invoice, make_payment, make_request
    ):
        lease = make_lease()
        invoice = make_invoice(lease, date(2026, 3, 1))
        first = make_payment(Decimal("10000"), invoice=invoice)
        allocation_service.process_rent_prepayment(make_request(lease, first))
        session.refresh(lease)
        pointers = (lease.rent_paid_until, lease.next_rent_due_date)

        second = make_payment(Decimal("10000"), invoice=invoice)
        result = allocation_service.process_rent_prepayment(make_request(lease, second))

        assert result.status == AllocationStatus.ALREADY_APPLIED
        session.refresh(lease)
        assert (lease.rent_paid_until, lease.next_rent_due_date) == pointers
        session.refresh(second)
        assert second.months_paid is None

    def test_arrears_payment_never_rewinds_pointer(
        self, session, allocation_service, make_lease, make_invoice, make_payment, make_request
    ):
        """Paying an old January invoice leaves a June paid-until in place."""
        lease = make_lease(
            rent_paid_until=date(2026, 6, 1), next_rent_due_date=date(2026, 7, 5)
        )
        january = make_invoice(lease, date(2026, 1, 1))
        payment = make_payment(Decimal("10000"), invoice=january)

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.APPLIED
        session.refresh(january)
        assert january.status == InvoiceStatus.PAID.value
        session.refresh(lease)
        assert lease.rent_paid_until == date(2026, 6, 1)
        assert lease.next_rent_due_date == date(2026, 7, 5)

    def test_missing_invoice_reference(
        self, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease()
        payment = make_payment(Decimal("10000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.CONSISTENCY_FAILED

    def test_invoice_of_another_lease_rejected(
        self, allocation_service, tenant_id, make_lease, make_invoice, make_payment, make_request
    ):
        lease = make_lease()
        other = make_lease(tenant_user_id=tenant_id)
        invoice = make_invoice(other, date(2026, 3, 1))
        payment = make_payment(Decimal("10000"), invoice=invoice)

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.CONSISTENCY_FAILED

    def test_checks_enforced_when_policy_enables_them(
        self, session, clock, make_lease, make_invoice, make_payment, make_request
    ):
        service = RentAllocationService(
            session, clock=clock, policy=AllocationPolicy(enforce_checks_on_single_month=True)
        )
        lease = make_lease()
        invoice = make_invoice(lease, date(2026, 3, 1))
        payment = make_payment(
            Decimal("10000"), invoice=invoice, payment_date=FIXED_NOW + timedelta(days=1)
        )

        result = service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.VALIDATION_FAILED


class TestPreconditions:

    def test_unknown_lease(self, allocation_service, make_payment, tenant_id):
        payment = make_payment(Decimal("30000"))
        request = PrepaymentRequest(
            payment_id=payment.id,
            lease_id=uuid4(),
            tenant_user_id=tenant_id,
            amount_paid=Decimal("30000"),
            payment_date=payment.payment_date,
        )

        result = allocation_service.process_rent_prepayment(request)

        assert result.status == AllocationStatus.NOT_FOUND
        assert result.error_code == "LEASE_NOT_FOUND"

    def test_unknown_payment(self, allocation_service, make_lease):
        lease = make_lease()
        request = PrepaymentRequest(
            payment_id=uuid4(),
            lease_id=lease.id,
            tenant_user_id=lease.tenant_user_id,
            amount_paid=Decimal("30000"),
            payment_date=FIXED_NOW,
        )

        result = allocation_service.process_rent_prepayment(request)

        assert result.status == AllocationStatus.NOT_FOUND

    def test_inactive_lease(self, session, allocation_service, make_lease, make_payment, make_request):
        lease = make_lease(status=LeaseStatus.ENDED.value)
        payment = make_payment(Decimal("30000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.LEASE_INACTIVE
        assert invoice_count(session) == 0

    def test_pending_lease_accepts_payments(
        self, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease(status=LeaseStatus.PENDING.value)
        payment = make_payment(Decimal("30000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.APPLIED

    def test_payment_tenant_mismatch(
        self, session, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease()
        payment = make_payment(Decimal("30000"), tenant_user_id=uuid4())

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.CONSISTENCY_FAILED
        assert result.validation_errors == ("Payment tenant does not match lease tenant.",)
        assert invoice_count(session) == 0

    def test_request_tenant_mismatch(
        self, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease()
        payment = make_payment(Decimal("30000"))

        result = allocation_service.process_rent_prepayment(
            make_request(lease, payment, tenant_user_id=uuid4())
        )

        assert result.status == AllocationStatus.CONSISTENCY_FAILED


class TestFailureHandling:

    def test_storage_failure_rolls_back_everything(
        self, session, monkeypatch, allocation_service, make_lease, make_payment, make_request
    ):
        """The database error message is surfaced verbatim."""
        lease = make_lease()
        payment = make_payment(Decimal("30000"))

        def broken_upsert(self, *args, **kwargs):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(PrepaymentUnitOfWork, "upsert_invoice", broken_upsert)

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.STORAGE_FAILED
        assert result.message == "disk I/O error"
        assert result.error_code == "STORAGE_TRANSACTION_FAILED"
        assert invoice_count(session) == 0
        stored = session.get(Payment, payment.id)
        assert not stored.applied_to_prepayment
        assert stored.batch_id is None

    def test_failing_notifier_does_not_fail_allocation(
        self, session, clock, policy, make_lease, make_payment, make_request
    ):
        class BrokenNotifier:
            def payment_settled(self, notice):
                raise RuntimeError("smtp down")

        service = RentAllocationService(session, clock, policy, BrokenNotifier())
        lease = make_lease()
        payment = make_payment(Decimal("30000"))

        result = service.process_rent_prepayment(make_request(lease, payment))

        assert result.status == AllocationStatus.APPLIED
        assert invoice_count(session) == 3

    def test_structured_log_emitted(
        self, captured_logs, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease()
        payment = make_payment(Decimal("30000"))

        result = allocation_service.process_rent_prepayment(make_request(lease, payment))

        records = [r for r in captured_logs() if r["message"] == "prepayment_applied"]
        assert len(records) == 1
        assert records[0]["batch_id"] == str(result.batch_id)
        assert records[0]["payment_id"] == str(payment.id)


class TestValidatePrepaymentData:

    def test_dry_run_reports_coverage_without_mutation(
        self, session, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease()
        payment = make_payment(Decimal("30000"))

        report = allocation_service.validate_prepayment_data(make_request(lease, payment))

        assert report.is_valid
        assert report
        assert report.months_paid == 3
        assert report.expected_amount == Decimal("30000")
        assert report.unpaid_invoice_count == 0
        assert report.covers_months == ("2026-01-05", "2026-02-05", "2026-03-05")
        assert invoice_count(session) == 0
        session.refresh(payment)
        assert not payment.applied_to_prepayment

    def test_dry_run_collects_every_error(
        self, allocation_service, make_lease, make_payment, make_request
    ):
        lease = make_lease(end_date=date(2026, 2, 15))
        payment = make_payment(Decimal("31900"), payment_date=FIXED_NOW + timedelta(hours=1))

        report = allocation_service.validate_prepayment_data(make_request(lease, payment))

        assert not report.is_valid
        assert len(report.errors) == 3

    def test_dry_run_unknown_lease(self, allocation_service, make_payment, tenant_id):
        payment = make_payment(Decimal("30000"))
        request = PrepaymentRequest(
            payment_id=payment.id,
            lease_id=uuid4(),
            tenant_user_id=tenant_id,
            amount_paid=Decimal("30000"),
            payment_date=payment.payment_date,
        )

        report = allocation_service.validate_prepayment_data(request)

        assert not report.is_valid
        assert report.errors[0].startswith("Lease not found")
