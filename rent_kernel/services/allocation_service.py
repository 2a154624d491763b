"""
RentAllocationService -- allocates a verified payment across rent months.

Responsibility
--------------
Takes one verified payment covering one or many months of rent, validates
it, allocates it across consecutive monthly invoices (creating missing
future invoices), advances the lease pointers and guarantees the whole
operation happens at most once under retries and duplicate callbacks.

Architecture position
---------------------
Kernel > Services -- orchestrator.  Composes the pure validators
(``PaymentValidator``, ``DuplicateDetector``, ``CoverageScheduler``), the
``PrepaymentUnitOfWork`` storage side and ``LeasePointerService``.

Invariants enforced
-------------------
* Each public method owns the transaction boundary (commit on success,
  rollback on failure or exception).
* All validation completes before any mutation.
* A payment is applied at most once: the applied flag or the notes
  sentinel short-circuits to a replay; the payment row lock resolves
  concurrent first attempts.
* Lease pointers never move backward.

Failure modes
-------------
* Kernel errors -> ``PrepaymentResult`` with ``success == False`` and a
  status naming the failure class; session rolled back.
* Unexpected exception -> session rolled back, exception re-raised.

State machine
-------------
Received -> Validated -> Applied, or Received -> AlreadyApplied.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from rent_kernel.domain.clock import Clock, SystemClock
from rent_kernel.domain.coverage import CoverageScheduler
from rent_kernel.domain.dtos import (
    AllocationStatus,
    LeaseState,
    PrepaymentRequest,
    PrepaymentResult,
    ValidationReport,
)
from rent_kernel.domain.duplicate_detector import DuplicateDetector
from rent_kernel.domain.payment_validator import PaymentValidator
from rent_kernel.domain.periods import add_months, month_label
from rent_kernel.domain.policy import AllocationPolicy
from rent_kernel.exceptions import (
    ConsistencyError,
    CoverageExhaustedError,
    HardDuplicatePaymentError,
    InvoiceLeaseMismatchError,
    InvoiceNotFoundError,
    InvoiceTypeMismatchError,
    LeaseInactiveError,
    LeaseNotFoundError,
    MissingInvoiceReferenceError,
    NotFoundError,
    PaymentAlreadyAppliedError,
    PaymentAmountMismatchError,
    PaymentNotFoundError,
    PrepaymentValidationError,
    RentKernelError,
    StorageError,
    TenantMismatchError,
    ValidationError,
)
from rent_kernel.logging_config import LogContext, get_logger
from rent_kernel.models.invoice import Invoice, InvoiceStatus, InvoiceType
from rent_kernel.models.lease import Lease
from rent_kernel.models.payment import Payment
from rent_kernel.selectors.invoice_selector import InvoiceSelector
from rent_kernel.selectors.next_due_selector import NextDueSelector
from rent_kernel.selectors.payment_selector import PaymentSelector
from rent_kernel.services.base import SYSTEM_ACTOR_ID
from rent_kernel.services.lease_pointer_service import LeasePointerService
from rent_kernel.services.notifications import (
    NullNotifier,
    PaymentNotifier,
    PaymentSettledNotice,
    dispatch_settled,
)
from rent_kernel.services.prepayment_unit_of_work import PrepaymentUnitOfWork

logger = get_logger("services.allocation")

EXCEEDS_UNPAID_WARNING = (
    "Prepayment exceeds current unpaid invoices. "
    "Future invoices will be generated to absorb the payment."
)


class RentAllocationService:
    """
    Public entry point for rent payment allocation.

    Contract:
        ``process_rent_prepayment`` never raises for kernel errors; the
        failure is reported in the result.  ``validate_prepayment_data``
        is a dry run and never mutates.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: AllocationPolicy | None = None,
        notifier: PaymentNotifier | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or AllocationPolicy.with_defaults()
        self._notifier = notifier or NullNotifier()

        self._validator = PaymentValidator(self._policy)
        self._detector = DuplicateDetector(self._policy)
        self._scheduler = CoverageScheduler(self._policy)
        self._invoices = InvoiceSelector(session)
        self._payments = PaymentSelector(session)
        self._uow = PrepaymentUnitOfWork(session, self._clock, self._policy)
        self._pointers = LeasePointerService(session, self._policy)

    # =========================================================================
    # Allocation
    # =========================================================================

    def process_rent_prepayment(self, request: PrepaymentRequest) -> PrepaymentResult:
        """Validate and apply one verified payment."""
        with LogContext.bind(
            payment_id=request.payment_id,
            lease_id=request.lease_id,
            actor_id=request.actor_id,
        ):
            logger.info("prepayment_received", extra={
                "amount_paid": str(request.amount_paid),
                "months_hint": request.months_paid,
            })
            try:
                return self._process(request)
            except RentKernelError as exc:
                self._session.rollback()
                result = self._failure_result(exc)
                logger.warning("prepayment_rejected", extra={
                    "status": result.status.value,
                    "error_code": exc.code,
                    "errors": list(result.validation_errors),
                })
                return result
            except Exception:
                self._session.rollback()
                logger.exception("prepayment_unexpected_error")
                raise

    def _process(self, request: PrepaymentRequest) -> PrepaymentResult:
        lease, payment = self._load_preconditions(request)
        actor_id = request.actor_id or SYSTEM_ACTOR_ID

        months, inferred_warning = self._validator.resolve_months(
            request.amount_paid, lease.monthly_rent, request.months_paid
        )

        if months <= 1:
            return self._apply_single_month(request, lease, payment, actor_id)

        sentinel = self._policy.idempotency_sentinel
        if payment.is_applied(sentinel):
            return self._replay(lease, payment, months)

        # Validation (no mutation beyond this point until the apply)
        errors, warnings = self._collect_checks(request, lease, payment, months)
        if inferred_warning:
            warnings.insert(0, inferred_warning)
        if errors:
            raise PrepaymentValidationError(errors)

        lease_state = LeaseState.from_model(lease)
        floor = self._scheduler.coverage_floor(lease_state)
        outstanding = self._invoices.outstanding_rent(lease.id, floor)
        if months > len(outstanding):
            warnings.append(EXCEEDS_UNPAID_WARNING)

        oldest = outstanding[0].period_start if outstanding else None
        window = self._scheduler.require_full_window(
            lease_state, self._scheduler.window_for(lease_state, months, oldest)
        )

        try:
            outcome = self._uow.apply_rent_prepayment(
                payment_id=payment.id,
                lease_id=lease.id,
                months=months,
                payment_date=request.payment_date,
                window=window,
                actor_id=actor_id,
            )
        except PaymentAlreadyAppliedError as exc:
            # Lost the race: another request committed first.
            self._session.rollback()
            logger.info("prepayment_race_lost", extra={"batch_id": exc.batch_id})
            payment = self._session.get(Payment, payment.id)
            lease = self._session.get(Lease, lease.id)
            return self._replay(lease, payment, months)

        self._pointers.sync_lease_pointers(lease.id, actor_id)
        self._session.commit()

        with LogContext.bind(batch_id=outcome.batch_id):
            logger.info("prepayment_applied", extra={
                "months": months,
                "applied_invoices": [str(i) for i in outcome.touched_invoice_ids],
                "created_invoices": [str(i) for i in outcome.created_invoice_ids],
                "rent_paid_until": outcome.updated_rent_paid_until,
                "warnings": warnings,
            })

        self._notify(payment, request.amount_paid, outcome.touched_invoice_ids[0])

        message = (
            f"Processed with warnings: {' '.join(warnings)}"
            if warnings
            else "Rent prepayment applied."
        )
        return self._success_result(
            AllocationStatus.APPLIED,
            message,
            lease,
            applied=outcome.touched_invoice_ids,
            created=outcome.created_invoice_ids,
            warnings=tuple(warnings),
            months=months,
            batch_id=outcome.batch_id,
        )

    # -------------------------------------------------------------------------
    # Preconditions and checks
    # -------------------------------------------------------------------------

    def _load_preconditions(self, request: PrepaymentRequest) -> tuple[Lease, Payment]:
        lease = self._session.get(Lease, request.lease_id)
        if lease is None:
            raise LeaseNotFoundError(str(request.lease_id))
        if not lease.accepts_payments:
            raise LeaseInactiveError(str(lease.id), lease.status)

        payment = self._session.get(Payment, request.payment_id)
        if payment is None:
            raise PaymentNotFoundError(str(request.payment_id))

        for tenant in (payment.tenant_user_id, request.tenant_user_id):
            if tenant != lease.tenant_user_id:
                raise TenantMismatchError(
                    str(payment.id), str(tenant), str(lease.tenant_user_id)
                )
        return lease, payment

    def _recency_and_duplicates(
        self, request: PrepaymentRequest, payment: Payment
    ) -> tuple[list[str], list[str]]:
        errors = self._validator.validate_recency(
            request.payment_date, self._clock.now_utc()
        )
        warnings: list[str] = []

        window_start, window_end = self._detector.window(request.payment_date)
        candidates = self._payments.duplicate_candidates(
            payment.tenant_user_id,
            payment.id,
            window_start,
            window_end,
        )
        duplicates = self._detector.check(
            payment.id,
            request.amount_paid,
            request.payment_date,
            candidates,
            invoice_id=payment.invoice_id,
            receipt_reference=payment.receipt_reference,
        )
        for duplicate_of, reason in duplicates.hard_matches:
            errors.append(
                str(HardDuplicatePaymentError(str(payment.id), str(duplicate_of), reason))
            )
        if duplicates.is_soft_duplicate:
            warnings.append(self._detector.soft_warning())
            logger.info("soft_duplicate_detected", extra={
                "tenant_user_id": str(payment.tenant_user_id),
                "matches": [str(m) for m in duplicates.soft_matches],
            })
        return errors, warnings

    def _collect_checks(
        self,
        request: PrepaymentRequest,
        lease: Lease,
        payment: Payment,
        months: int,
    ) -> tuple[list[str], list[str]]:
        errors, warnings = self._recency_and_duplicates(request, payment)

        amount = self._validator.validate_amount(
            request.amount_paid, months, lease.monthly_rent
        )
        errors.extend(amount.errors)

        if request.amount_paid != payment.amount_paid:
            errors.append(
                str(PaymentAmountMismatchError(
                    str(payment.id), request.amount_paid, payment.amount_paid
                ))
            )

        warnings = (
            self._validator.prepayment_size_warnings(months)
            + list(amount.warnings)
            + warnings
        )
        return errors, warnings

    # -------------------------------------------------------------------------
    # Single-month path
    # -------------------------------------------------------------------------

    def _apply_single_month(
        self,
        request: PrepaymentRequest,
        lease: Lease,
        payment: Payment,
        actor_id: UUID,
    ) -> PrepaymentResult:
        """
        Settle the one rent invoice the payment references.

        Recency and duplicate checks only run when the policy enables
        them for this path.
        """
        warnings: list[str] = []
        if self._policy.enforce_checks_on_single_month:
            errors, warnings = self._recency_and_duplicates(request, payment)
            if errors:
                raise PrepaymentValidationError(errors)

        if payment.invoice_id is None:
            raise MissingInvoiceReferenceError(str(payment.id))
        invoice = self._session.get(Invoice, payment.invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(payment.invoice_id))
        if invoice.invoice_type != InvoiceType.RENT.value:
            raise InvoiceTypeMismatchError(
                str(invoice.id), InvoiceType.RENT.value, invoice.invoice_type
            )
        if invoice.lease_id != lease.id:
            raise InvoiceLeaseMismatchError(
                str(invoice.id), str(lease.id), str(invoice.lease_id)
            )

        if invoice.is_paid:
            logger.info("single_month_invoice_already_paid", extra={
                "invoice_id": str(invoice.id),
            })
            return self._success_result(
                AllocationStatus.ALREADY_APPLIED,
                "Invoice already paid.",
                lease,
                applied=(invoice.id,),
                months=1,
            )

        threshold = invoice.amount * (Decimal("1") - self._policy.amount_tolerance)
        settled = request.amount_paid >= threshold
        invoice.status = (
            InvoiceStatus.PAID.value if settled else InvoiceStatus.PARTIALLY_PAID.value
        )
        invoice.payment_date = request.payment_date.date()
        invoice.updated_by_id = actor_id
        payment.months_paid = 1
        payment.updated_by_id = actor_id

        if settled:
            self._uow.advance_pointers(lease, invoice.period_start, actor_id)
        else:
            warnings.append(
                f"Underpayment: invoice for {month_label(invoice.period_start)} "
                "remains partially paid."
            )

        self._session.flush()
        self._session.commit()

        logger.info("single_month_payment_applied", extra={
            "invoice_id": str(invoice.id),
            "invoice_status": invoice.status,
        })
        if settled:
            self._notify(payment, request.amount_paid, invoice.id)

        message = (
            f"Processed with warnings: {' '.join(warnings)}"
            if warnings
            else "Rent payment applied."
        )
        return self._success_result(
            AllocationStatus.APPLIED,
            message,
            lease,
            applied=(invoice.id,),
            warnings=tuple(warnings),
            months=1,
        )

    # -------------------------------------------------------------------------
    # Replay
    # -------------------------------------------------------------------------

    def _replay(self, lease: Lease, payment: Payment, months: int) -> PrepaymentResult:
        """Report the chain an earlier attempt produced; create nothing."""
        chain = self._processed_chain(lease.id, payment, payment.months_paid or months)
        logger.info("prepayment_replayed", extra={
            "batch_id": str(payment.batch_id) if payment.batch_id else None,
            "applied_invoices": [str(i) for i in chain],
        })
        return self._success_result(
            AllocationStatus.ALREADY_APPLIED,
            "Payment already processed.",
            lease,
            applied=chain,
            months=payment.months_paid or months,
            batch_id=payment.batch_id,
        )

    def _processed_chain(
        self, lease_id: UUID, payment: Payment, months: int
    ) -> tuple[UUID, ...]:
        if payment.invoice_id is None:
            return ()
        first = self._invoices.get(payment.invoice_id)
        if first is None:
            return (payment.invoice_id,)
        last = add_months(first.period_start, max(months, 1) - 1)
        invoices = self._invoices.in_period_range(lease_id, first.period_start, last)
        return tuple(inv.id for inv in invoices[:months])

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def _success_result(
        self,
        status: AllocationStatus,
        message: str,
        lease: Lease,
        applied: tuple[UUID, ...] = (),
        created: tuple[UUID, ...] = (),
        warnings: tuple[str, ...] = (),
        months: int | None = None,
        batch_id: UUID | None = None,
    ) -> PrepaymentResult:
        next_due = NextDueSelector(self._session).get_next_due_date(lease.id)
        paid_until = lease.rent_paid_until
        return PrepaymentResult(
            status=status,
            message=message,
            warnings=warnings,
            applied_invoices=tuple(applied),
            created_invoices=tuple(created),
            next_due_date=next_due.next_due_date,
            next_due_amount=next_due.next_amount,
            paid_up_to_label=month_label(paid_until) if paid_until else None,
            months_paid=months,
            batch_id=batch_id,
        )

    @staticmethod
    def _failure_result(exc: RentKernelError) -> PrepaymentResult:
        if isinstance(exc, LeaseInactiveError):
            return PrepaymentResult.failure(
                AllocationStatus.LEASE_INACTIVE, str(exc), error_code=exc.code
            )
        if isinstance(exc, CoverageExhaustedError):
            return PrepaymentResult.failure(
                AllocationStatus.COVERAGE_EXHAUSTED,
                "Lease ends before all prepaid months can be applied.",
                errors=[str(exc)],
                error_code=exc.code,
            )
        if isinstance(exc, PrepaymentValidationError):
            return PrepaymentResult.failure(
                AllocationStatus.VALIDATION_FAILED,
                "Payment validation failed.",
                errors=exc.errors,
                error_code=exc.code,
            )
        if isinstance(exc, ValidationError):
            return PrepaymentResult.failure(
                AllocationStatus.VALIDATION_FAILED, str(exc), error_code=exc.code
            )
        if isinstance(exc, NotFoundError):
            return PrepaymentResult.failure(
                AllocationStatus.NOT_FOUND, str(exc), error_code=exc.code
            )
        if isinstance(exc, ConsistencyError):
            return PrepaymentResult.failure(
                AllocationStatus.CONSISTENCY_FAILED, str(exc), error_code=exc.code
            )
        if isinstance(exc, StorageError):
            return PrepaymentResult.failure(
                AllocationStatus.STORAGE_FAILED, str(exc), error_code=exc.code
            )
        return PrepaymentResult.failure(
            AllocationStatus.VALIDATION_FAILED, str(exc), error_code=exc.code
        )

    def _notify(self, payment: Payment, amount: Decimal, invoice_id: UUID) -> None:
        dispatch_settled(
            self._notifier,
            PaymentSettledNotice(
                tenant_user_id=payment.tenant_user_id,
                amount=amount,
                invoice_id=invoice_id,
                receipt_reference=payment.receipt_reference,
                payment_id=payment.id,
            ),
        )

    # =========================================================================
    # Dry run
    # =========================================================================

    def validate_prepayment_data(self, request: PrepaymentRequest) -> ValidationReport:
        """Run every check without mutating; report all problems at once."""
        try:
            lease, payment = self._load_preconditions(request)
        except RentKernelError as exc:
            return ValidationReport(is_valid=False, errors=(str(exc),))

        months, inferred_warning = self._validator.resolve_months(
            request.amount_paid, lease.monthly_rent, request.months_paid
        )
        errors, warnings = self._collect_checks(request, lease, payment, months)
        if inferred_warning:
            warnings.insert(0, inferred_warning)
        if payment.is_applied(self._policy.idempotency_sentinel):
            warnings.append("Payment already processed.")

        lease_state = LeaseState.from_model(lease)
        floor = self._scheduler.coverage_floor(lease_state)
        outstanding = self._invoices.outstanding_rent(lease.id, floor)
        if months > len(outstanding):
            warnings.append(EXCEEDS_UNPAID_WARNING)

        oldest = outstanding[0].period_start if outstanding else None
        window = self._scheduler.window_for(lease_state, months, oldest)
        if not window.is_complete:
            errors.append(
                str(CoverageExhaustedError(str(lease.id), months, len(window.periods)))
            )

        return ValidationReport(
            is_valid=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
            expected_amount=self._validator.expected_amount(lease.monthly_rent, months),
            months_paid=months,
            unpaid_invoice_count=len(outstanding),
            covers_months=window.covers_months,
        )
