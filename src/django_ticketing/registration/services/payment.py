"""Manual payment actions for orders paid outside the card checkout.

All methods are stateless and operate on model instances directly.
"""

import logging

from django.core.exceptions import ValidationError

from django_ticketing.registration.models import Order
from django_ticketing.registration.services.reconciliation import (
    InvoicePaid,
    ReconciliationResult,
    reconcile,
)

logger = logging.getLogger(__name__)


class PaymentService:
    """Stateless service for staff-entered payment operations."""

    @staticmethod
    def mark_invoice_paid(order: Order, reference: str = "") -> ReconciliationResult:
        """Record that a bank transfer for an invoice order has been received.

        Goes through the same reconciliation path as a provider ``invoice.paid``
        event, so marking an already-paid order again is a no-op.

        Args:
            order: An invoice order with an invoice number.
            reference: Optional bank transaction reference, stored as the
                payment reference on the order and its registrations.

        Returns:
            The reconciliation result (``PAID`` or ``ALREADY_PAID``).

        Raises:
            ValidationError: If the order is not an invoice order or has no
                invoice number.
        """
        if order.payment_method != Order.PaymentMethod.INVOICE:
            raise ValidationError("Only invoice orders can be marked as paid manually.")
        if not order.invoice_number:
            raise ValidationError("This order has no invoice number.")

        result = reconcile(InvoicePaid(invoice_id=order.invoice_number, payment_reference=reference))
        logger.info(
            "Manual invoice payment for %s: %s",
            order.invoice_number,
            result.outcome.value,
        )
        return result
