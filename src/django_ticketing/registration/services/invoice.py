"""Tax invoices for orders paid by bank transfer.

Invoice numbers are sequential per deployment (``<prefix>-0001``,
``<prefix>-0002`` ...) and unique at the database level; a collision caused
by two concurrent invoice orders is resolved by taking the next number.
"""

import datetime
import logging
from dataclasses import dataclass

from django.db import IntegrityError, transaction
from django.template.loader import render_to_string
from django.utils import timezone

from django_ticketing.registration.models import Order
from django_ticketing.registration.services.pricing import calculate_gst
from django_ticketing.settings import InvoiceConfig, OrganisationConfig, get_config

logger = logging.getLogger(__name__)

_MAX_NUMBER_ATTEMPTS = 10


@dataclass(frozen=True, slots=True)
class InvoiceLineItem:
    """One invoice row: all paid tickets of one type at one price."""

    description: str
    quantity: int
    unit_price: int
    amount: int


@dataclass(frozen=True, slots=True)
class InvoiceAttendee:
    """An attendee listed on the invoice."""

    name: str
    email: str
    ticket_type: str


@dataclass(frozen=True, slots=True)
class InvoiceDocument:
    """Everything needed to render a tax invoice.

    ``subtotal`` is the sum of the line items, ``total`` is what is owed, and
    ``gst_amount`` is the GST included in ``total``.
    """

    invoice_number: str
    invoice_date: datetime.date
    due_date: datetime.date
    event_name: str
    purchaser_name: str
    purchaser_email: str
    org_name: str
    org_abn: str
    po_number: str
    line_items: tuple[InvoiceLineItem, ...]
    attendees: tuple[InvoiceAttendee, ...]
    subtotal: int
    discount_amount: int
    discount_description: str
    gst_amount: int
    total: int
    currency: str
    organisation: OrganisationConfig
    bank: InvoiceConfig


def generate_invoice_number(*, offset: int = 0) -> str:
    """Return the next sequential invoice number, e.g. ``AISF26-0007``.

    Args:
        offset: How many numbers to skip past the next free one; used when
            retrying after a collision.
    """
    prefix = get_config().invoice.number_prefix
    issued = Order.objects.filter(invoice_number__isnull=False).count()
    return f"{prefix}-{issued + 1 + offset:04d}"


def assign_invoice_number(order: Order, *, today: datetime.date | None = None) -> Order:
    """Give *order* an invoice number and due date and save it.

    Raises:
        IntegrityError: If no free number could be claimed after several attempts.
    """
    today = today or timezone.localdate()
    order.invoice_due_date = today + datetime.timedelta(days=get_config().invoice.due_days)
    for attempt in range(_MAX_NUMBER_ATTEMPTS):
        order.invoice_number = generate_invoice_number(offset=attempt)
        try:
            with transaction.atomic():
                order.save(update_fields=["invoice_number", "invoice_due_date", "updated_at"])
        except IntegrityError:
            logger.info("Invoice number %s already taken, retrying", order.invoice_number)
            continue
        logger.info("Assigned invoice number %s to order %s", order.invoice_number, order.pk)
        return order

    order.invoice_number = None
    msg = f"Could not allocate an invoice number for order {order.pk}"
    raise IntegrityError(msg)


def build_invoice_document(order: Order) -> InvoiceDocument:
    """Assemble an :class:`InvoiceDocument` from a persisted invoice order.

    Paid tickets are grouped into one line per ticket type and price.
    Complimentary tickets are listed as attendees but do not appear as
    chargeable lines.
    """
    config = get_config()
    registrations = list(order.registrations.all())

    grouped: dict[tuple[str, int], int] = {}
    for reg in registrations:
        if reg.is_complimentary:
            continue
        key = (reg.ticket_type, reg.ticket_price)
        grouped[key] = grouped.get(key, 0) + 1

    line_items = tuple(
        InvoiceLineItem(
            description=f"{ticket_type} Ticket - {config.event_name}",
            quantity=count,
            unit_price=price,
            amount=price * count,
        )
        for (ticket_type, price), count in grouped.items()
    )

    invoice_date = timezone.localdate(order.created_at) if order.created_at else timezone.localdate()
    due_date = order.invoice_due_date or invoice_date + datetime.timedelta(days=config.invoice.due_days)

    return InvoiceDocument(
        invoice_number=order.invoice_number or order.reference,
        invoice_date=invoice_date,
        due_date=due_date,
        event_name=config.event_name,
        purchaser_name=order.purchaser_name,
        purchaser_email=order.purchaser_email,
        org_name=order.org_name,
        org_abn=order.org_abn,
        po_number=order.po_number,
        line_items=line_items,
        attendees=tuple(
            InvoiceAttendee(name=reg.name, email=reg.email, ticket_type=reg.ticket_type) for reg in registrations
        ),
        subtotal=order.subtotal_amount,
        discount_amount=order.discount_amount,
        discount_description=order.coupon_code,
        gst_amount=calculate_gst(order.total_amount),
        total=order.total_amount,
        currency=config.currency,
        organisation=config.organisation,
        bank=config.invoice,
    )


def render_invoice(document: InvoiceDocument) -> str:
    """Render an invoice document to plain text."""
    return render_to_string("django_ticketing/invoice.txt", {"invoice": document})
