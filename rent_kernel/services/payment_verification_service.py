"""
PaymentVerificationService -- manual approval and rejection of payments.

Responsibility:
    Lets a manager approve a pending payment (which routes it through
    rent allocation) or reject it with a reason.

Architecture position:
    Kernel > Services -- orchestrator over RentAllocationService.

Invariants enforced:
    - A verified payment cannot be approved again or rejected.
    - When allocation of an approved rent payment fails, the verification
      is reverted so the payment can be retried.
    - A single-month payment without an invoice reference is linked to
      the oldest outstanding rent invoice of its lease before allocation.
"""

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from rent_kernel.domain.clock import Clock, SystemClock
from rent_kernel.domain.dtos import PaymentMethod, PrepaymentRequest, PrepaymentResult
from rent_kernel.domain.payment_validator import PaymentValidator
from rent_kernel.domain.policy import AllocationPolicy
from rent_kernel.exceptions import (
    PaymentAlreadyVerifiedError,
    PaymentNotFoundError,
    RentKernelError,
)
from rent_kernel.logging_config import LogContext, get_logger
from rent_kernel.models.invoice import Invoice, InvoiceType
from rent_kernel.models.lease import PAYABLE_STATUSES, Lease
from rent_kernel.models.payment import Payment
from rent_kernel.selectors.invoice_selector import InvoiceSelector
from rent_kernel.services.allocation_service import RentAllocationService
from rent_kernel.services.notifications import PaymentNotifier

logger = get_logger("services.payment_verification")


@dataclass(frozen=True)
class VerificationResult:
    payment_id: UUID
    success: bool
    message: str
    verified: bool
    allocation: PrepaymentResult | None = None
    errors: tuple[str, ...] = field(default_factory=tuple)


class PaymentVerificationService:
    """Approve/reject workflow for tenant payments."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: AllocationPolicy | None = None,
        notifier: PaymentNotifier | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._validator = PaymentValidator(policy)
        self._invoices = InvoiceSelector(session)
        self._allocator = RentAllocationService(session, self._clock, policy, notifier)

    def _load_unverified(self, payment_id: UUID) -> Payment:
        payment = self._session.get(Payment, payment_id)
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        if payment.verified:
            raise PaymentAlreadyVerifiedError(str(payment_id))
        return payment

    def _rent_lease(self, payment: Payment) -> Lease | None:
        """Lease the payment settles rent for, if any."""
        if payment.invoice_id is None:
            return self._session.execute(
                select(Lease)
                .where(
                    Lease.tenant_user_id == payment.tenant_user_id,
                    Lease.status.in_(PAYABLE_STATUSES),
                )
                .order_by(Lease.start_date.desc())
                .limit(1)
            ).scalars().first()
        invoice = self._session.get(Invoice, payment.invoice_id)
        if invoice is None or invoice.invoice_type != InvoiceType.RENT.value:
            return None
        return self._session.get(Lease, invoice.lease_id)

    def _link_outstanding_invoice(self, payment: Payment, lease: Lease) -> bool:
        """
        Point an unlinked single-month payment at the lease's oldest
        outstanding rent invoice.  Multi-month payments stay unlinked.
        """
        if payment.invoice_id is not None:
            return False
        months, _ = self._validator.resolve_months(
            payment.amount_paid, lease.monthly_rent, payment.months_paid
        )
        if months > 1:
            return False
        outstanding = self._invoices.outstanding_rent(lease.id)
        if not outstanding:
            return False
        payment.invoice_id = outstanding[0].id
        logger.info("payment_linked_to_invoice", extra={"invoice_id": str(payment.invoice_id)})
        return True

    def approve_payment(
        self,
        payment_id: UUID,
        verified_by_id: UUID,
        notes: str | None = None,
    ) -> VerificationResult:
        with LogContext.bind(payment_id=payment_id, actor_id=verified_by_id):
            try:
                payment = self._load_unverified(payment_id)
            except RentKernelError as exc:
                return VerificationResult(payment_id, False, str(exc), False, errors=(str(exc),))

            lease = self._rent_lease(payment)
            linked = lease is not None and self._link_outstanding_invoice(payment, lease)

            payment.verified = True
            payment.verified_by_id = verified_by_id
            payment.verified_at = self._clock.now_utc()
            payment.updated_by_id = verified_by_id
            if notes:
                payment.append_note(notes)
            try:
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            logger.info("payment_verified")

            if lease is None:
                return VerificationResult(payment_id, True, "Payment verified.", True)

            allocation = self._allocator.process_rent_prepayment(
                PrepaymentRequest(
                    payment_id=payment.id,
                    lease_id=lease.id,
                    tenant_user_id=payment.tenant_user_id,
                    amount_paid=payment.amount_paid,
                    payment_date=payment.payment_date,
                    months_paid=payment.months_paid,
                    payment_method=PaymentMethod(payment.payment_method),
                    actor_id=verified_by_id,
                )
            )
            if allocation.success:
                return VerificationResult(
                    payment_id, True, allocation.message, True, allocation=allocation
                )

            self._revert_verification(payment_id, verified_by_id, unlink=linked)
            logger.warning("payment_verification_reverted", extra={
                "status": allocation.status.value,
                "errors": list(allocation.validation_errors),
            })
            return VerificationResult(
                payment_id,
                False,
                allocation.message,
                False,
                allocation=allocation,
                errors=allocation.validation_errors,
            )

    def _revert_verification(
        self, payment_id: UUID, actor_id: UUID, unlink: bool = False
    ) -> None:
        payment = self._session.get(Payment, payment_id)
        if unlink:
            payment.invoice_id = None
        payment.verified = False
        payment.verified_by_id = None
        payment.verified_at = None
        payment.updated_by_id = actor_id
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def reject_payment(
        self,
        payment_id: UUID,
        rejected_by_id: UUID,
        reason: str,
        notes: str | None = None,
    ) -> VerificationResult:
        with LogContext.bind(payment_id=payment_id, actor_id=rejected_by_id):
            try:
                payment = self._load_unverified(payment_id)
            except RentKernelError as exc:
                return VerificationResult(payment_id, False, str(exc), False, errors=(str(exc),))

            note = f"[REJECTED] Reason: {reason}"
            if notes:
                note = f"{note}\n{notes}"
            payment.append_note(note)
            payment.updated_by_id = rejected_by_id
            try:
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info("payment_rejected", extra={"reason": reason})
            return VerificationResult(payment_id, True, "Payment rejected.", False)

