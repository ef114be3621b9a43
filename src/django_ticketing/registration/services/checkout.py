"""Order builder: turns a purchaser and a list of attendees into an order.

The order and its registrations are always persisted together in one
transaction. What happens next depends on the total and payment method:

* a zero total completes the order immediately, without contacting Stripe;
* card orders get a hosted Stripe Checkout Session;
* invoice orders get a sequential invoice number and an emailed tax invoice.

All methods are stateless and operate on model instances directly.
"""

import datetime
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from django_ticketing.registration.access import ANONYMOUS, AccessContext
from django_ticketing.registration.catalog import EARLY_BIRD_SUFFIX, TicketTier, get_tier, stripe_price_id
from django_ticketing.registration.exceptions import PaymentProviderError
from django_ticketing.registration.models import Order, Registration
from django_ticketing.registration.services.invoice import (
    assign_invoice_number,
    build_invoice_document,
    render_invoice,
)
from django_ticketing.registration.services.notifications import Notifier
from django_ticketing.registration.services.pricing import (
    Attendee,
    OrderQuote,
    Purchaser,
    price_order,
)
from django_ticketing.registration.services.reconciliation import complete_order
from django_ticketing.registration.stripe_client import StripeClient
from django_ticketing.utils import redact_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OrderResult:
    """The outcome of building an order.

    ``checkout_url`` is set for card orders that need payment;
    ``invoice_number`` for invoice orders. ``quote`` is ``None`` when an
    existing order was returned for a repeated idempotency key.
    """

    order: Order
    registrations: tuple[Registration, ...]
    quote: OrderQuote | None = None
    checkout_url: str = ""
    invoice_number: str = ""
    replayed: bool = False

    @property
    def free(self) -> bool:
        """Return ``True`` if nothing had to be paid."""
        return self.order.total_amount == 0


def _line_items(tickets: Iterable[tuple[TicketTier, bool]]) -> list[dict[str, object]]:
    """Build Stripe line items from paid (tier, early_bird) pairs, one per tier.

    Raises:
        ProviderMisconfigured: If a paid tier has no Stripe price id.
    """
    counts: dict[str, int] = {}
    prices: dict[str, str] = {}
    for tier, early_bird in tickets:
        counts[tier.id] = counts.get(tier.id, 0) + 1
        prices[tier.id] = stripe_price_id(tier, early_bird=early_bird)
    return [{"price": prices[tier_id], "quantity": quantity} for tier_id, quantity in counts.items()]


def _needs_checkout_retry(order: Order) -> bool:
    return (
        order.payment_method == Order.PaymentMethod.CARD
        and order.payment_status == Order.PaymentStatus.PENDING
        and order.total_amount > 0
        and not order.stripe_session_id
    )


def _existing_result(order: Order) -> OrderResult:
    """Return a replayed result, retrying the checkout session if the last attempt failed.

    Stripe calls are keyed on the order id, so a retry never creates a
    second coupon or session for the same order.
    """
    if _needs_checkout_retry(order):
        registrations = list(order.registrations.all())
        line_items = _line_items(
            (get_tier(reg.ticket_tier), reg.ticket_type.endswith(EARLY_BIRD_SUFFIX))
            for reg in registrations
            if not reg.is_complimentary
        )
        logger.info("Retrying checkout session for order %s", order.reference)
        checkout_url = _start_card_checkout(StripeClient(), order, registrations, line_items)
        return OrderResult(
            order=order,
            registrations=tuple(order.registrations.all()),
            checkout_url=checkout_url,
            replayed=True,
        )
    return OrderResult(
        order=order,
        registrations=tuple(order.registrations.all()),
        checkout_url=order.checkout_url,
        invoice_number=order.invoice_number or "",
        replayed=True,
    )


def _persist(
    purchaser: Purchaser,
    quote: OrderQuote,
    payment_method: str,
    idempotency_key: str | None,
) -> tuple[Order, list[Registration]]:
    coupon_id = quote.discount.coupon_id if quote.discount is not None else None
    order = Order.objects.create(
        purchaser=purchaser.user,
        purchaser_email=purchaser.email.strip(),
        purchaser_name=purchaser.name.strip(),
        org_name=purchaser.org_name.strip(),
        org_abn=purchaser.org_abn.strip(),
        po_number=purchaser.po_number.strip(),
        payment_method=payment_method,
        payment_status=Order.PaymentStatus.PENDING,
        subtotal_amount=quote.subtotal,
        discount_amount=quote.discount_amount,
        total_amount=quote.total_amount,
        coupon_id=coupon_id,
        coupon_code=quote.discount.code if quote.discount is not None else "",
        idempotency_key=idempotency_key or None,
    )
    registrations = [
        Registration.objects.create(
            order=order,
            email=line.attendee.email.strip(),
            name=line.attendee.name.strip(),
            ticket_tier=line.tier.id,
            ticket_type=line.label,
            ticket_price=line.ticket_price,
            discount_amount=line.discount_amount,
            amount_paid=line.amount_paid,
            is_complimentary=line.is_free,
            coupon_id=None if line.is_free else coupon_id,
            profile=line.attendee.profile,
        )
        for line in quote.lines
    ]
    return order, registrations


class CheckoutService:
    """Stateless service that builds and submits orders."""

    @staticmethod
    def build_order(
        purchaser: Purchaser,
        attendees: Sequence[Attendee],
        payment_method: str,
        coupon_code: str | None = None,
        *,
        context: AccessContext | None = None,
        idempotency_key: str | None = None,
        now: datetime.datetime | None = None,
        notifier: Notifier | None = None,
    ) -> OrderResult:
        """Price, persist, and submit an order for payment.

        Args:
            purchaser: Who is paying.
            attendees: One entry per ticket; must not be empty.
            payment_method: ``"card"`` or ``"invoice"``.
            coupon_code: Optional coupon applied to the whole order.
            context: The caller's access context (registration gating).
            idempotency_key: When given and an order with this key already
                exists, that order is returned and nothing new is created.
                A pending card order whose checkout session could not be
                created gets another attempt.
            now: Override for the current time.
            notifier: Email sender; defaults to :class:`Notifier`.

        Returns:
            An :class:`OrderResult`.

        Raises:
            ValidationError: For an empty attendee list or unknown payment method.
            InvalidTicketType: If an attendee references an unknown tier.
            CouponRejected: If the coupon fails validation, or registration
                is gated and no access code was given.
            ProviderMisconfigured: If Stripe keys or price ids are missing.
            PaymentProviderError: If Stripe fails; the order stays ``pending``
                with no session attached.
        """
        if payment_method not in Order.PaymentMethod.values:
            raise ValidationError(f"Unknown payment method '{payment_method}'.", code="invalid_payment_method")

        if idempotency_key:
            existing = Order.objects.filter(idempotency_key=idempotency_key).first()
            if existing is not None:
                logger.info("Returning existing order %s for idempotency key", existing.reference)
                return _existing_result(existing)

        context = context or ANONYMOUS
        now = now or timezone.now()
        notifier = notifier or Notifier()
        quote = price_order(purchaser, list(attendees), coupon_code, context=context, now=now)

        needs_card_checkout = payment_method == Order.PaymentMethod.CARD and not quote.is_free
        line_items: list[dict[str, object]] = []
        stripe_client = None
        if needs_card_checkout:
            line_items = _line_items((line.tier, quote.early_bird) for line in quote.paid_lines)
            stripe_client = StripeClient()

        try:
            with transaction.atomic():
                order, registrations = _persist(purchaser, quote, payment_method, idempotency_key)
                if quote.is_free:
                    order = Order.objects.select_for_update().get(pk=order.pk)
                    complete_order(order, notifier=notifier)
                elif payment_method == Order.PaymentMethod.INVOICE:
                    assign_invoice_number(order, today=timezone.localdate(now))
                    transaction.on_commit(lambda: _send_invoice(order, notifier))
        except IntegrityError:
            if idempotency_key:
                existing = Order.objects.filter(idempotency_key=idempotency_key).first()
                if existing is not None:
                    return _existing_result(existing)
            raise

        logger.info(
            "Created %s order %s for %s with %s ticket(s), total %s",
            payment_method,
            order.reference,
            redact_email(order.purchaser_email),
            len(registrations),
            order.total_amount,
        )

        if quote.is_free:
            order.refresh_from_db()
            return OrderResult(order=order, registrations=tuple(order.registrations.all()), quote=quote)

        if payment_method == Order.PaymentMethod.INVOICE:
            return OrderResult(
                order=order,
                registrations=tuple(registrations),
                quote=quote,
                invoice_number=order.invoice_number or "",
            )

        checkout_url = _start_card_checkout(stripe_client, order, registrations, line_items)
        return OrderResult(
            order=order,
            registrations=tuple(order.registrations.all()),
            quote=quote,
            checkout_url=checkout_url,
        )


def _send_invoice(order: Order, notifier: Notifier) -> None:
    document_text = render_invoice(build_invoice_document(order))
    notifier.send_invoice(order, document_text)


def _start_card_checkout(
    stripe_client: StripeClient,
    order: Order,
    registrations: list[Registration],
    line_items: list[dict[str, object]],
) -> str:
    """Create the Stripe coupon and checkout session and attach them to the order."""
    try:
        coupon_id = stripe_client.create_order_coupon(order) if order.discount_amount > 0 else None
        session = stripe_client.create_checkout_session(order, registrations, line_items, coupon_id=coupon_id)
    except PaymentProviderError:
        logger.exception("Checkout session could not be created for order %s", order.reference)
        raise

    with transaction.atomic():
        order.stripe_session_id = session.id
        order.checkout_url = session.url or ""
        order.save(update_fields=["stripe_session_id", "checkout_url", "updated_at"])
        order.registrations.update(stripe_session_id=session.id)

    logger.info("Checkout session %s created for order %s", session.id, order.reference)
    return order.checkout_url
