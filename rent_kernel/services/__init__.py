"""Kernel services: storage side and orchestrators."""

from rent_kernel.services.allocation_service import RentAllocationService
from rent_kernel.services.invoice_lifecycle_service import (
    AutoCreateResult,
    InvoiceLifecycleService,
    LeaseInvoiceError,
)
from rent_kernel.services.lease_pointer_service import LeasePointerService, PointerSyncResult
from rent_kernel.services.notifications import (
    NullNotifier,
    PaymentNotifier,
    PaymentSettledNotice,
    RecordingNotifier,
)
from rent_kernel.services.payment_verification_service import (
    PaymentVerificationService,
    VerificationResult,
)
from rent_kernel.services.prepayment_unit_of_work import (
    ApplyPrepaymentOutcome,
    PrepaymentUnitOfWork,
)

__all__ = [
    "RentAllocationService",
    "InvoiceLifecycleService",
    "AutoCreateResult",
    "LeaseInvoiceError",
    "LeasePointerService",
    "PointerSyncResult",
    "PaymentNotifier",
    "PaymentSettledNotice",
    "NullNotifier",
    "RecordingNotifier",
    "PaymentVerificationService",
    "VerificationResult",
    "PrepaymentUnitOfWork",
    "ApplyPrepaymentOutcome",
]
