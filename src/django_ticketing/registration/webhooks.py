"""Stripe webhook handling for the registration app.

Provides a registry-based dispatch system for processing Stripe webhook events.
Each event kind (e.g. ``checkout.session.completed``) maps to a handler class
that translates the Stripe payload into a payment event and hands it to
:func:`~django_ticketing.registration.services.reconciliation.reconcile`.

The ``stripe_webhook`` view verifies event signatures, deduplicates by Stripe
event ID, and delegates to the appropriate handler.

Usage in URL configuration::

    from django_ticketing.registration.webhooks import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook),
    ]
"""

import json
import logging
import traceback
from typing import TYPE_CHECKING

import stripe
from django.db import IntegrityError, transaction
from django.http import HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from django_ticketing.registration.exceptions import ProviderMisconfigured
from django_ticketing.registration.models import EventProcessingException, StripeEvent
from django_ticketing.registration.services.reconciliation import (
    CheckoutCompleted,
    CheckoutExpired,
    InvoicePaid,
    InvoicePaymentFailed,
    PaymentEvent,
    PaymentFailed,
    ReconciliationOutcome,
    ReconciliationResult,
    reconcile,
)
from django_ticketing.registration.stripe_client import construct_event
from django_ticketing.registration.stripe_utils import metadata_value, stripe_id

if TYPE_CHECKING:
    from django.http import HttpRequest

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class WebhookRegistry:
    """Singleton registry mapping Stripe event kinds to handler classes.

    Handlers are registered at module load time and looked up by the webhook
    view when an event arrives.
    """

    def __init__(self) -> None:
        """Initialize an empty handler registry."""
        self._registry: dict[str, type[Webhook]] = {}

    def register(self, kind: str, handler_class: "type[Webhook]") -> None:
        """Register a handler class for a Stripe event kind.

        Args:
            kind: The Stripe event type string (e.g. ``"checkout.session.completed"``).
            handler_class: A ``Webhook`` subclass that handles this event kind.
        """
        self._registry[kind] = handler_class

    def get(self, kind: str) -> "type[Webhook] | None":
        """Return the handler class for a given event kind, or ``None``."""
        return self._registry.get(kind)

    def keys(self) -> list[str]:
        """Return all registered event kinds."""
        return list(self._registry.keys())


registry = WebhookRegistry()


# ---------------------------------------------------------------------------
# Base handler
# ---------------------------------------------------------------------------


class Webhook:
    """Base class for Stripe webhook event handlers.

    Subclasses set ``name`` to the Stripe event kind they handle and implement
    ``to_payment_event()``, returning the payment event to reconcile (or
    ``None`` to acknowledge the event without acting on it). The base
    ``process()`` method wraps execution in idempotency checks and exception
    capture.

    Attributes:
        name: The Stripe event kind this handler processes.
        event: The ``StripeEvent`` model instance being handled.
        result: The reconciliation result once processed.
    """

    name: str = ""

    def __init__(self, event: StripeEvent) -> None:
        """Bind the handler to a specific Stripe event record."""
        self.event = event
        self.result: ReconciliationResult | None = None

    def process(self) -> None:
        """Run the handler with idempotency and error capture.

        Skips events that have already been processed. On success, marks the
        event as processed. On failure, captures the traceback to
        ``EventProcessingException`` and re-raises.
        """
        if self.event.processed:
            logger.info("Event %s already processed, skipping", self.event.stripe_id)
            return

        try:
            self.process_webhook()
            self.event.processed = True
            self.event.save(update_fields=["processed"])
        except Exception:
            self.log_exception()
            raise

    def process_webhook(self) -> None:
        """Reconcile the payment event carried by this webhook."""
        payment_event = self.to_payment_event(_event_data_object(self.event))
        if payment_event is None:
            return
        self.result = reconcile(payment_event)
        logger.info(
            "Stripe event %s (%s) reconciled: %s",
            self.event.stripe_id,
            self.name,
            self.result.outcome.value,
        )

    def to_payment_event(self, obj: dict[str, object]) -> PaymentEvent | None:
        """Translate the Stripe ``data.object`` into a payment event.

        Raises:
            NotImplementedError: Subclasses must override this method.
        """
        raise NotImplementedError

    def log_exception(self) -> None:
        """Capture the current exception to ``EventProcessingException``."""
        tb = traceback.format_exc()
        logger.error(
            "Error processing webhook %s (event %s): %s",
            self.name,
            self.event.stripe_id,
            tb,
        )
        EventProcessingException.objects.create(
            event=self.event,
            data=str(self.event.payload),
            message=str(tb)[:500],
            traceback=tb,
        )


def _event_data_object(event: StripeEvent) -> dict[str, object]:
    """Extract the ``data.object`` dict from a StripeEvent payload."""
    payload = event.payload
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict):
            obj = data.get("object")
            if isinstance(obj, dict):
                return obj
    return {}


def _int_or_none(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Concrete handlers
# ---------------------------------------------------------------------------


class CheckoutSessionCompletedWebhook(Webhook):
    """Handles ``checkout.session.completed`` events.

    Sessions completed with a delayed payment method report
    ``payment_status == "unpaid"``; those are acknowledged and left pending
    until ``checkout.session.async_payment_succeeded`` arrives.
    """

    name = "checkout.session.completed"

    def to_payment_event(self, obj: dict[str, object]) -> PaymentEvent | None:
        """Build a ``CheckoutCompleted`` event for a paid session."""
        if obj.get("payment_status") == "unpaid":
            logger.info("Checkout session %s completed but not yet paid", obj.get("id"))
            return None
        return CheckoutCompleted(
            session_id=stripe_id(obj),
            payment_reference=stripe_id(obj.get("payment_intent")),
        )


class CheckoutSessionAsyncPaymentSucceededWebhook(Webhook):
    """Handles ``checkout.session.async_payment_succeeded`` events."""

    name = "checkout.session.async_payment_succeeded"

    def to_payment_event(self, obj: dict[str, object]) -> PaymentEvent | None:
        """Build a ``CheckoutCompleted`` event."""
        return CheckoutCompleted(
            session_id=stripe_id(obj),
            payment_reference=stripe_id(obj.get("payment_intent")),
        )


class CheckoutSessionExpiredWebhook(Webhook):
    """Handles ``checkout.session.expired`` events."""

    name = "checkout.session.expired"

    def to_payment_event(self, obj: dict[str, object]) -> PaymentEvent | None:
        """Build a ``CheckoutExpired`` event."""
        return CheckoutExpired(session_id=stripe_id(obj))


class PaymentIntentPaymentFailedWebhook(Webhook):
    """Handles ``payment_intent.payment_failed`` events.

    The order and (for legacy single-ticket orders) registration ids are read
    from the PaymentIntent metadata set at checkout.
    """

    name = "payment_intent.payment_failed"

    def to_payment_event(self, obj: dict[str, object]) -> PaymentEvent | None:
        """Build a ``PaymentFailed`` event with the error reason from Stripe."""
        error = obj.get("last_payment_error")
        reason = "No error details"
        if isinstance(error, dict):
            msg = error.get("message")
            reason = str(msg) if isinstance(msg, str) else "Unknown error"
        return PaymentFailed(
            order_id=_int_or_none(metadata_value(obj, "order_id")),
            registration_id=_int_or_none(metadata_value(obj, "registration_id")),
            payment_reference=stripe_id(obj),
            reason=reason,
        )


class InvoicePaidWebhook(Webhook):
    """Handles ``invoice.paid`` events.

    The invoice is matched on its Stripe id first and then on the
    ``invoice_number`` echoed in its metadata.
    """

    name = "invoice.paid"

    def process_webhook(self) -> None:
        """Reconcile, retrying with the metadata invoice number when the id is unknown."""
        super().process_webhook()
        obj = _event_data_object(self.event)
        number = metadata_value(obj, "invoice_number")
        if self.result is not None and self.result.outcome == ReconciliationOutcome.NOT_FOUND and number:
            self.result = reconcile(
                InvoicePaid(invoice_id=number, payment_reference=stripe_id(obj.get("payment_intent")))
            )

    def to_payment_event(self, obj: dict[str, object]) -> PaymentEvent | None:
        """Build an ``InvoicePaid`` event."""
        return InvoicePaid(
            invoice_id=stripe_id(obj),
            payment_reference=stripe_id(obj.get("payment_intent")) or stripe_id(obj.get("charge")),
        )


class InvoicePaymentFailedWebhook(Webhook):
    """Handles ``invoice.payment_failed`` events."""

    name = "invoice.payment_failed"

    def to_payment_event(self, obj: dict[str, object]) -> PaymentEvent | None:
        """Build an ``InvoicePaymentFailed`` event."""
        return InvoicePaymentFailed(invoice_id=metadata_value(obj, "invoice_number") or stripe_id(obj))


# ---------------------------------------------------------------------------
# Handler registration
# ---------------------------------------------------------------------------

registry.register("checkout.session.completed", CheckoutSessionCompletedWebhook)
registry.register("checkout.session.async_payment_succeeded", CheckoutSessionAsyncPaymentSucceededWebhook)
registry.register("checkout.session.expired", CheckoutSessionExpiredWebhook)
registry.register("payment_intent.payment_failed", PaymentIntentPaymentFailedWebhook)
registry.register("invoice.paid", InvoicePaidWebhook)
registry.register("invoice.payment_failed", InvoicePaymentFailedWebhook)


# ---------------------------------------------------------------------------
# Webhook endpoint view
# ---------------------------------------------------------------------------


@csrf_exempt
@require_POST
def stripe_webhook(request: "HttpRequest") -> HttpResponse:
    """Receive and process Stripe webhook events.

    Verifies the event signature against the configured webhook secret,
    deduplicates by Stripe event ID, persists the raw event, and dispatches
    to the registered handler.

    Always returns HTTP 200 to acknowledge receipt, even when processing
    fails. Errors are logged and captured to ``EventProcessingException``.
    """
    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")

    try:
        event = construct_event(payload, sig_header)
    except ProviderMisconfigured:
        logger.error("Stripe webhook received but no webhook secret is configured")
        return HttpResponse(status=200)
    except (stripe.SignatureVerificationError, ValueError):
        logger.warning("Invalid Stripe webhook payload or signature")
        return HttpResponse(status=200)

    event_id = event["id"]
    kind = event["type"]

    if StripeEvent.objects.filter(stripe_id=event_id).exists():
        logger.info("Duplicate Stripe event %s, returning 200", event_id)
        return HttpResponse(status=200)

    try:
        with transaction.atomic():
            stripe_event = StripeEvent.objects.create(
                stripe_id=event_id,
                kind=kind,
                livemode=bool(event.get("livemode", False)),
                payload=json.loads(payload),
                api_version=event.get("api_version") or "",
            )
    except IntegrityError:
        logger.info("Stripe event %s is being processed by another request, returning 200", event_id)
        return HttpResponse(status=200)

    handler_class = registry.get(kind)
    if handler_class is None:
        logger.info("No handler registered for event kind '%s'", kind)
        return HttpResponse(status=200)

    try:
        handler = handler_class(stripe_event)
        handler.process()
    except Exception:
        logger.exception(
            "Error processing Stripe event %s (kind=%s)",
            event_id,
            kind,
        )

    return HttpResponse(status=200)
