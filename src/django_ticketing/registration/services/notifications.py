"""Outbound emails for orders: receipts, ticket confirmations, and invoices.

Every send is best-effort. A failed email is logged with its traceback and
reported as ``False``; it never rolls back or blocks a payment transition.
"""

import logging

from django.conf import settings
from django.core.mail import EmailMessage
from django.template.loader import render_to_string

from django_ticketing.registration.models import Order, Registration
from django_ticketing.registration.services.invoice import build_invoice_document, render_invoice
from django_ticketing.settings import get_config
from django_ticketing.utils import redact_email

logger = logging.getLogger(__name__)


def _from_email() -> str | None:
    return get_config().from_email or getattr(settings, "DEFAULT_FROM_EMAIL", None)


class Notifier:
    """Sends order emails over Django's configured email backend."""

    def _send(self, message: EmailMessage, kind: str, recipient: str) -> bool:
        try:
            message.send(fail_silently=False)
        except Exception:
            logger.exception("Failed to send %s email to %s", kind, redact_email(recipient))
            return False
        logger.info("Sent %s email to %s", kind, redact_email(recipient))
        return True

    def _base_context(self, order: Order) -> dict[str, object]:
        config = get_config()
        return {
            "order": order,
            "event_name": config.event_name,
            "organisation": config.organisation,
        }

    def send_receipt(self, order: Order) -> bool:
        """Email the purchaser a receipt for a paid order."""
        registrations = list(order.registrations.all())
        subtotal = sum(reg.ticket_price for reg in registrations)
        context = self._base_context(order)
        context.update(
            {
                "registrations": registrations,
                "subtotal": subtotal,
                "total_discount": subtotal - order.total_amount,
                "discount_description": order.coupon_code
                or ("Complimentary tickets" if order.total_amount == 0 else ""),
            }
        )
        message = EmailMessage(
            subject=f"Your receipt for {context['event_name']} ({order.reference})",
            body=render_to_string("django_ticketing/receipt.txt", context),
            from_email=_from_email(),
            to=[order.purchaser_email],
        )
        return self._send(message, "receipt", order.purchaser_email)

    def send_ticket_confirmation(self, registration: Registration) -> bool:
        """Email one attendee their ticket confirmation."""
        order = registration.order
        context = self._base_context(order)
        context["registration"] = registration
        message = EmailMessage(
            subject=f"Your ticket for {context['event_name']}",
            body=render_to_string("django_ticketing/ticket_confirmation.txt", context),
            from_email=_from_email(),
            to=[registration.email],
        )
        return self._send(message, "ticket confirmation", registration.email)

    def send_invoice(self, order: Order, document_text: str | None = None) -> bool:
        """Email the purchaser their tax invoice as a text attachment.

        Args:
            order: An order with an invoice number assigned.
            document_text: The rendered invoice. Rendered from *order* when omitted.
        """
        if document_text is None:
            document_text = render_invoice(build_invoice_document(order))
        context = self._base_context(order)
        message = EmailMessage(
            subject=f"Tax invoice {order.invoice_number} for {context['event_name']}",
            body=render_to_string("django_ticketing/invoice_email.txt", context),
            from_email=_from_email(),
            to=[order.purchaser_email],
        )
        message.attach(f"{order.invoice_number}.txt", document_text, "text/plain")
        return self._send(message, "invoice", order.purchaser_email)


def notify_order_paid(order: Order, notifier: Notifier | None = None) -> None:
    """Send the receipt to the purchaser and a confirmation to every paid attendee.

    Tickets cancelled before payment get no confirmation. A failure for one
    recipient does not stop the others.
    """
    notifier = notifier or Notifier()
    notifier.send_receipt(order)
    for registration in order.registrations.filter(status=Registration.Status.PAID):
        notifier.send_ticket_confirmation(registration)
