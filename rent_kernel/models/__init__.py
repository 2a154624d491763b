"""ORM models for leases, invoices and payments."""

from rent_kernel.models.invoice import (
    OUTSTANDING_STATUSES,
    Invoice,
    InvoiceStatus,
    InvoiceType,
)
from rent_kernel.models.lease import PAYABLE_STATUSES, Lease, LeaseStatus
from rent_kernel.models.payment import Payment

__all__ = [
    "Lease",
    "LeaseStatus",
    "PAYABLE_STATUSES",
    "Invoice",
    "InvoiceStatus",
    "InvoiceType",
    "OUTSTANDING_STATUSES",
    "Payment",
]
