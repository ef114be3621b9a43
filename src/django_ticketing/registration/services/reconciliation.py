"""Payment reconciliation: applying provider events to orders.

Every inbound payment event is expressed as one of the event dataclasses
below and passed to :func:`reconcile`. Each event is applied inside a single
transaction with the Order row locked, so an Order and all of its
Registrations always change status together, and redelivered or concurrent
events for the same Order are serialised by the row lock.

Transitions::

    pending, failed --CheckoutCompleted / InvoicePaid--> paid
    pending --CheckoutExpired-----------------> cancelled
    pending --PaymentFailed / InvoicePaymentFailed--> failed

Receipts, ticket confirmations, and the ``order_paid`` signal are deferred
until the transaction commits and only run on the first transition to paid.
"""

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass

from django.db import models, transaction
from django.utils import timezone

from django_ticketing.registration.models import Order, Registration
from django_ticketing.registration.services.eligibility import increment_coupon_usage
from django_ticketing.registration.services.notifications import Notifier, notify_order_paid
from django_ticketing.registration.signals import order_paid

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CheckoutCompleted:
    """A hosted checkout session was paid."""

    session_id: str
    payment_reference: str = ""


@dataclass(frozen=True, slots=True)
class CheckoutExpired:
    """A hosted checkout session expired without payment."""

    session_id: str


@dataclass(frozen=True, slots=True)
class PaymentFailed:
    """A card payment attempt failed.

    ``order_id`` and ``registration_id`` come from the metadata echoed back
    by the provider; either may be missing.
    """

    order_id: int | None = None
    registration_id: int | None = None
    payment_reference: str = ""
    reason: str = ""


@dataclass(frozen=True, slots=True)
class InvoicePaid:
    """An invoice was paid. ``invoice_id`` may be the external id or the invoice number."""

    invoice_id: str
    payment_reference: str = ""


@dataclass(frozen=True, slots=True)
class InvoicePaymentFailed:
    """Payment of an invoice failed."""

    invoice_id: str


PaymentEvent = CheckoutCompleted | CheckoutExpired | PaymentFailed | InvoicePaid | InvoicePaymentFailed


class ReconciliationOutcome(enum.Enum):
    """What :func:`reconcile` did with an event."""

    PAID = "paid"
    CANCELLED = "cancelled"
    FAILED = "failed"
    ALREADY_PAID = "already_paid"
    IGNORED = "ignored"
    NOT_FOUND = "not_found"


@dataclass(frozen=True, slots=True)
class ReconciliationResult:
    """The outcome of one reconciled event and the order it touched, if any."""

    outcome: ReconciliationOutcome
    order: Order | None = None

    @property
    def changed(self) -> bool:
        """Return ``True`` if the event changed any state."""
        return self.outcome in {
            ReconciliationOutcome.PAID,
            ReconciliationOutcome.CANCELLED,
            ReconciliationOutcome.FAILED,
        }


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def _lock_order(**filters: object) -> Order | None:
    return Order.objects.select_for_update().filter(**filters).first()


def _lock_order_by_session(session_id: str) -> Order | None:
    """Find and lock the order for a checkout session.

    Orders created before sessions were recorded at order level carry the
    session id on their (single) registration only.
    """
    if not session_id:
        return None
    order = _lock_order(stripe_session_id=session_id)
    if order is not None:
        return order
    order_id = (
        Registration.objects.filter(stripe_session_id=session_id).values_list("order_id", flat=True).first()
    )
    if order_id is None:
        return None
    logger.info("Matched session %s to order %s through its registration", session_id, order_id)
    return _lock_order(pk=order_id)


def _lock_order_by_invoice(invoice_id: str) -> Order | None:
    if not invoice_id:
        return None
    return (
        Order.objects.select_for_update()
        .filter(models.Q(external_invoice_id=invoice_id) | models.Q(invoice_number=invoice_id))
        .first()
    )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def _set_registration_status(order: Order, status: str, *, only: list[str] | None = None, **extra: object) -> int:
    registrations = order.registrations.all()
    if only is not None:
        registrations = registrations.filter(status__in=only)
    return registrations.update(status=status, updated_at=timezone.now(), **extra)


def complete_order(order: Order, payment_reference: str = "", *, notifier: Notifier | None = None) -> bool:
    """Mark a locked order and its registrations paid.

    Must be called inside a transaction holding the order's row lock. The
    coupon usage counter is incremented once, and the receipt, ticket
    confirmations, and ``order_paid`` signal are scheduled for after commit.

    Returns:
        ``False`` if the order was already paid and nothing changed.
    """
    if order.payment_status == Order.PaymentStatus.PAID:
        logger.info("Order %s already paid, skipping completion", order.reference)
        return False

    order.payment_status = Order.PaymentStatus.PAID
    update_fields = ["payment_status", "updated_at"]
    if payment_reference:
        order.stripe_payment_id = payment_reference
        update_fields.append("stripe_payment_id")
    order.save(update_fields=update_fields)

    extra: dict[str, object] = {}
    if payment_reference:
        extra["stripe_payment_id"] = payment_reference
    count = _set_registration_status(
        order,
        Registration.Status.PAID,
        only=[Registration.Status.PENDING, Registration.Status.FAILED],
        **extra,
    )

    if order.coupon_code:
        increment_coupon_usage(order.coupon_code)

    logger.info("Order %s marked paid with %s registration(s)", order.reference, count)

    def _after_commit() -> None:
        notify_order_paid(order, notifier)
        order_paid.send(sender=Order, order=order)

    transaction.on_commit(_after_commit)
    return True


def _handle_paid(order: Order | None, payment_reference: str, reference: str) -> ReconciliationResult:
    if order is None:
        logger.warning("Payment received for unknown reference %s", reference)
        return ReconciliationResult(ReconciliationOutcome.NOT_FOUND)
    if order.payment_status == Order.PaymentStatus.PAID:
        logger.info("Order %s already paid, acknowledging duplicate event", order.reference)
        return ReconciliationResult(ReconciliationOutcome.ALREADY_PAID, order)
    if order.payment_status == Order.PaymentStatus.CANCELLED:
        logger.warning("Payment received for cancelled order %s; needs manual review", order.reference)
        return ReconciliationResult(ReconciliationOutcome.IGNORED, order)
    complete_order(order, payment_reference)
    return ReconciliationResult(ReconciliationOutcome.PAID, order)


def _checkout_completed(event: CheckoutCompleted) -> ReconciliationResult:
    order = _lock_order_by_session(event.session_id)
    return _handle_paid(order, event.payment_reference, event.session_id)


def _invoice_paid(event: InvoicePaid) -> ReconciliationResult:
    order = _lock_order_by_invoice(event.invoice_id)
    return _handle_paid(order, event.payment_reference, event.invoice_id)


def _checkout_expired(event: CheckoutExpired) -> ReconciliationResult:
    order = _lock_order_by_session(event.session_id)
    if order is None:
        logger.warning("Checkout expired for unknown session %s", event.session_id)
        return ReconciliationResult(ReconciliationOutcome.NOT_FOUND)
    if order.payment_status == Order.PaymentStatus.PAID:
        return ReconciliationResult(ReconciliationOutcome.ALREADY_PAID, order)
    if order.payment_status != Order.PaymentStatus.PENDING:
        return ReconciliationResult(ReconciliationOutcome.IGNORED, order)

    order.payment_status = Order.PaymentStatus.CANCELLED
    order.save(update_fields=["payment_status", "updated_at"])
    _set_registration_status(
        order,
        Registration.Status.CANCELLED,
        only=[Registration.Status.PENDING, Registration.Status.FAILED],
    )
    logger.info("Order %s cancelled after its checkout session expired", order.reference)
    return ReconciliationResult(ReconciliationOutcome.CANCELLED, order)


def _payment_failed(event: PaymentFailed) -> ReconciliationResult:
    registration = None
    if event.registration_id is not None:
        registration = Registration.objects.select_for_update().filter(pk=event.registration_id).first()

    order_id = event.order_id if event.order_id is not None else getattr(registration, "order_id", None)
    order = _lock_order(pk=order_id) if order_id is not None else None
    if order is None and event.payment_reference:
        order = _lock_order(stripe_payment_id=event.payment_reference)

    if order is None and registration is None:
        logger.warning(
            "Payment failure for unknown order %s / registration %s",
            event.order_id,
            event.registration_id,
        )
        return ReconciliationResult(ReconciliationOutcome.NOT_FOUND)

    changed = False
    if registration is not None and registration.status == Registration.Status.PENDING:
        registration.status = Registration.Status.FAILED
        registration.save(update_fields=["status", "updated_at"])
        changed = True

    if order is not None:
        if order.payment_status == Order.PaymentStatus.PAID:
            return ReconciliationResult(ReconciliationOutcome.ALREADY_PAID, order)
        if order.payment_status == Order.PaymentStatus.PENDING:
            order.payment_status = Order.PaymentStatus.FAILED
            order.save(update_fields=["payment_status", "updated_at"])
            _set_registration_status(order, Registration.Status.FAILED, only=[Registration.Status.PENDING])
            changed = True

    if not changed:
        return ReconciliationResult(ReconciliationOutcome.IGNORED, order)
    logger.info(
        "Payment failed for order %s: %s",
        order.reference if order is not None else f"(registration {event.registration_id})",
        event.reason or "no reason given",
    )
    return ReconciliationResult(ReconciliationOutcome.FAILED, order)


def _invoice_payment_failed(event: InvoicePaymentFailed) -> ReconciliationResult:
    order = _lock_order_by_invoice(event.invoice_id)
    if order is None:
        logger.warning("Invoice payment failure for unknown invoice %s", event.invoice_id)
        return ReconciliationResult(ReconciliationOutcome.NOT_FOUND)
    if order.payment_status == Order.PaymentStatus.PAID:
        return ReconciliationResult(ReconciliationOutcome.ALREADY_PAID, order)
    if order.payment_status != Order.PaymentStatus.PENDING:
        return ReconciliationResult(ReconciliationOutcome.IGNORED, order)

    order.payment_status = Order.PaymentStatus.FAILED
    order.save(update_fields=["payment_status", "updated_at"])
    logger.info("Invoice payment failed for order %s", order.reference)
    return ReconciliationResult(ReconciliationOutcome.FAILED, order)


_HANDLERS: dict[type, Callable[..., ReconciliationResult]] = {
    CheckoutCompleted: _checkout_completed,
    CheckoutExpired: _checkout_expired,
    PaymentFailed: _payment_failed,
    InvoicePaid: _invoice_paid,
    InvoicePaymentFailed: _invoice_payment_failed,
}


@transaction.atomic
def reconcile(event: PaymentEvent) -> ReconciliationResult:
    """Apply one payment event to local state.

    Safe to call repeatedly with the same event: a second delivery finds the
    order already transitioned and reports ``ALREADY_PAID`` or ``IGNORED``.
    Events that match no order are logged and reported as ``NOT_FOUND``.

    Raises:
        TypeError: If *event* is not a known event type.
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        msg = f"Unsupported payment event: {type(event).__name__}"
        raise TypeError(msg)
    return handler(event)
