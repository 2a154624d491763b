"""
Typed Exception Hierarchy for the Rent Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from RentKernelError:

    RentKernelError (base)
    |
    +-- ValidationError
    |   +-- PaymentDateInFutureError
    |   +-- PaymentTooOldError
    |   +-- AmountOutOfToleranceError
    |   +-- PaymentAmountMismatchError
    |   +-- HardDuplicatePaymentError
    |   +-- LeaseInactiveError
    |   +-- CoverageExhaustedError
    |   +-- PaymentAlreadyVerifiedError
    |   +-- PrepaymentValidationError
    |
    +-- NotFoundError
    |   +-- LeaseNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- InvoiceNotFoundError
    |
    +-- ConsistencyError
    |   +-- TenantMismatchError
    |   +-- InvoiceTypeMismatchError
    |   +-- InvoiceLeaseMismatchError
    |   +-- MissingInvoiceReferenceError
    |
    +-- ConcurrencyError
    |   +-- PaymentAlreadyAppliedError
    |
    +-- StorageError
        +-- StorageTransactionError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|-----------------------------------
Validation   | PAYMENT_DATE_IN_FUTURE        | Payment dated after today
             | PAYMENT_TOO_OLD               | Payment older than the recency cap
             | AMOUNT_OUT_OF_TOLERANCE       | Amount outside the tolerance band
             | PAYMENT_AMOUNT_MISMATCH       | Request amount != stored amount
             | HARD_DUPLICATE_PAYMENT        | Same receipt / same invoice match
             | LEASE_INACTIVE                | Lease not active or pending
             | COVERAGE_EXHAUSTED            | Lease end cuts the window short
             | PAYMENT_ALREADY_VERIFIED      | Approve/reject of verified payment
             | PREPAYMENT_VALIDATION_FAILED  | One or more validation messages
-------------|-------------------------------|-----------------------------------
Not found    | LEASE_NOT_FOUND               | Lease id doesn't exist
             | PAYMENT_NOT_FOUND             | Payment id doesn't exist
             | INVOICE_NOT_FOUND             | Invoice id doesn't exist
-------------|-------------------------------|-----------------------------------
Consistency  | TENANT_MISMATCH               | Payment tenant != lease tenant
             | INVOICE_TYPE_MISMATCH         | Invoice is not a rent invoice
             | INVOICE_LEASE_MISMATCH        | Invoice belongs to another lease
             | MISSING_INVOICE_REFERENCE     | Single-month payment w/o invoice
-------------|-------------------------------|-----------------------------------
Concurrency  | PAYMENT_ALREADY_APPLIED       | Lost the race to apply a payment
-------------|-------------------------------|-----------------------------------
Storage      | STORAGE_TRANSACTION_FAILED    | Atomic apply transaction failed

===============================================================================
HANDLING PATTERNS
===============================================================================

Catch by type, read structured attributes, never parse messages:

    try:
        uow.apply_rent_prepayment(...)
    except PaymentAlreadyAppliedError as e:
        # Not a failure -- another request won the race.
        return replay(e.payment_id)
    except StorageTransactionError as e:
        return failed(code=e.code, message=str(e))

PaymentAlreadyAppliedError is the only kernel error that orchestration
treats as success (idempotent replay).
"""


class RentKernelError(Exception):
    """
    Base exception for all rent kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "RENT_KERNEL_ERROR"


# Validation errors -- returned to callers, zero mutation


class ValidationError(RentKernelError):
    """Base exception for validation failures."""

    code: str = "VALIDATION_ERROR"


class PaymentDateInFutureError(ValidationError):
    """Payment date lies after the current date."""

    code: str = "PAYMENT_DATE_IN_FUTURE"

    def __init__(self, payment_date, today):
        self.payment_date = payment_date
        self.today = today
        super().__init__("Payment date cannot be in the future.")


class PaymentTooOldError(ValidationError):
    """Payment date is older than the automatic-processing cap."""

    code: str = "PAYMENT_TOO_OLD"

    def __init__(self, payment_date, max_age_days: int):
        self.payment_date = payment_date
        self.max_age_days = max_age_days
        super().__init__(
            f"Payment date is older than {max_age_days} days "
            "and cannot be processed automatically."
        )


class AmountOutOfToleranceError(ValidationError):
    """Paid amount falls outside the tolerance band around expected."""

    code: str = "AMOUNT_OUT_OF_TOLERANCE"

    def __init__(self, amount_paid, expected, months: int):
        self.amount_paid = amount_paid
        self.expected = expected
        self.months = months
        super().__init__(
            f"Payment amount {amount_paid:,.2f} does not match the expected "
            f"{expected:,.2f} for {months} month(s)."
        )


class PaymentAmountMismatchError(ValidationError):
    """Requested amount differs from the stored payment record."""

    code: str = "PAYMENT_AMOUNT_MISMATCH"

    def __init__(self, payment_id: str, requested, stored):
        self.payment_id = payment_id
        self.requested = requested
        self.stored = stored
        super().__init__("Payment amount mismatch with stored payment record.")


class HardDuplicatePaymentError(ValidationError):
    """Payment duplicates another by receipt reference or target invoice."""

    code: str = "HARD_DUPLICATE_PAYMENT"

    def __init__(self, payment_id: str, duplicate_of: str, reason: str):
        self.payment_id = payment_id
        self.duplicate_of = duplicate_of
        self.reason = reason
        super().__init__(
            f"Payment {payment_id} duplicates payment {duplicate_of} ({reason})."
        )


class LeaseInactiveError(ValidationError):
    """Lease is not in a status that accepts payments."""

    code: str = "LEASE_INACTIVE"

    def __init__(self, lease_id: str, status: str):
        self.lease_id = lease_id
        self.status = status
        super().__init__("Lease is not active and cannot accept payments.")


class CoverageExhaustedError(ValidationError):
    """Lease end date prevents covering every requested month."""

    code: str = "COVERAGE_EXHAUSTED"

    def __init__(self, lease_id: str, requested_months: int, available_months: int):
        self.lease_id = lease_id
        self.requested_months = requested_months
        self.available_months = available_months
        super().__init__(
            "Lease end date prevents covering all requested months "
            f"({available_months} of {requested_months} available)."
        )


class PaymentAlreadyVerifiedError(ValidationError):
    """Payment was already verified and cannot be approved or rejected."""

    code: str = "PAYMENT_ALREADY_VERIFIED"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} is already verified")


class PrepaymentValidationError(ValidationError):
    """One or more validation rules rejected the payment."""

    code: str = "PREPAYMENT_VALIDATION_FAILED"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Payment validation failed.")


# Not-found errors


class NotFoundError(RentKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class LeaseNotFoundError(NotFoundError):
    """Lease with given ID was not found."""

    code: str = "LEASE_NOT_FOUND"

    def __init__(self, lease_id: str):
        self.lease_id = lease_id
        super().__init__(f"Lease not found: {lease_id}")


class PaymentNotFoundError(NotFoundError):
    """Payment with given ID was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class InvoiceNotFoundError(NotFoundError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


# Consistency errors -- records exist but do not belong together


class ConsistencyError(RentKernelError):
    """Base exception for cross-record consistency violations."""

    code: str = "CONSISTENCY_ERROR"


class TenantMismatchError(ConsistencyError):
    """Payment tenant does not match the lease tenant."""

    code: str = "TENANT_MISMATCH"

    def __init__(self, payment_id: str, payment_tenant: str, lease_tenant: str):
        self.payment_id = payment_id
        self.payment_tenant = payment_tenant
        self.lease_tenant = lease_tenant
        super().__init__("Payment tenant does not match lease tenant.")


class InvoiceTypeMismatchError(ConsistencyError):
    """Invoice is not of the type the operation requires."""

    code: str = "INVOICE_TYPE_MISMATCH"

    def __init__(self, invoice_id: str, expected: str, actual: str):
        self.invoice_id = invoice_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Invoice {invoice_id} is a {actual} invoice, expected {expected}"
        )


class InvoiceLeaseMismatchError(ConsistencyError):
    """Invoice belongs to a different lease."""

    code: str = "INVOICE_LEASE_MISMATCH"

    def __init__(self, invoice_id: str, lease_id: str, invoice_lease_id: str):
        self.invoice_id = invoice_id
        self.lease_id = lease_id
        self.invoice_lease_id = invoice_lease_id
        super().__init__(
            f"Invoice {invoice_id} belongs to lease {invoice_lease_id}, not {lease_id}"
        )


class MissingInvoiceReferenceError(ConsistencyError):
    """Single-month payment does not reference an invoice."""

    code: str = "MISSING_INVOICE_REFERENCE"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(
            f"Payment {payment_id} must reference exactly one rent invoice"
        )


# Concurrency errors


class ConcurrencyError(RentKernelError):
    """Base exception for concurrency conflicts."""

    code: str = "CONCURRENCY_ERROR"


class PaymentAlreadyAppliedError(ConcurrencyError):
    """
    Payment was applied by a concurrent transaction.

    Raised under the payment row lock. Callers treat this as an
    idempotent replay, not a failure.
    """

    code: str = "PAYMENT_ALREADY_APPLIED"

    def __init__(self, payment_id: str, batch_id: str | None = None):
        self.payment_id = payment_id
        self.batch_id = batch_id
        super().__init__(f"Payment {payment_id} already applied")


# Storage errors


class StorageError(RentKernelError):
    """Base exception for storage failures."""

    code: str = "STORAGE_ERROR"


class StorageTransactionError(StorageError):
    """
    The atomic apply transaction failed and was rolled back.

    The underlying message is preserved verbatim. The transaction
    guarantee means no partial mutation is visible.
    """

    code: str = "STORAGE_TRANSACTION_FAILED"

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(message)
