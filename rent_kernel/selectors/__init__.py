"""Read-only query selectors."""

from rent_kernel.selectors.invoice_selector import InvoiceSelector
from rent_kernel.selectors.next_due_selector import NextDueInfo, NextDueSelector
from rent_kernel.selectors.payment_selector import PaymentSelector
from rent_kernel.selectors.prepayment_selector import PrepaidCoverage, PrepaymentSelector

__all__ = [
    "InvoiceSelector",
    "PaymentSelector",
    "NextDueSelector",
    "NextDueInfo",
    "PrepaymentSelector",
    "PrepaidCoverage",
]
