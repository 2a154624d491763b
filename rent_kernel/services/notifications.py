"""
Payment-settled notifications.

Responsibility:
    Carries the "payment settled" trigger to an outside collaborator
    (SMS, email) once the financial mutation is durable.

Invariants enforced:
    - Dispatch happens strictly after commit.
    - A failing notifier is logged and never propagates; it must not undo
      or mask a committed allocation.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from rent_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class PaymentSettledNotice:
    tenant_user_id: UUID
    amount: Decimal
    invoice_id: UUID | None
    receipt_reference: str | None = None
    payment_id: UUID | None = None


class PaymentNotifier(Protocol):
    def payment_settled(self, notice: PaymentSettledNotice) -> None: ...


class NullNotifier:
    """Notifier that drops every notice."""

    def payment_settled(self, notice: PaymentSettledNotice) -> None:
        return None


class RecordingNotifier:
    """Keeps notices in memory; used by tests and dry runs."""

    def __init__(self):
        self.notices: list[PaymentSettledNotice] = []

    def payment_settled(self, notice: PaymentSettledNotice) -> None:
        self.notices.append(notice)


def dispatch_settled(notifier: PaymentNotifier, notice: PaymentSettledNotice) -> bool:
    """Send ``notice``; returns False if the notifier raised."""
    try:
        notifier.payment_settled(notice)
    except Exception:
        logger.exception(
            "payment_settled_notification_failed",
            extra={
                "tenant_user_id": str(notice.tenant_user_id),
                "invoice_id": str(notice.invoice_id) if notice.invoice_id else None,
            },
        )
        return False
    logger.debug(
        "payment_settled_notification_sent",
        extra={"tenant_user_id": str(notice.tenant_user_id)},
    )
    return True
