"""Stripe client wrapper for checkout, coupon, refund, and webhook operations.

The client is configured from ``DJANGO_TICKETING["stripe"]`` and uses the
modern ``stripe.StripeClient`` pattern (v1 namespace) for all API calls.
Every Stripe failure is re-raised as :class:`PaymentProviderError` so the
services never leak provider exception types to their callers.
"""

import logging
from collections.abc import Callable, Sequence
from typing import TypeVar

import stripe

from django_ticketing.registration.exceptions import PaymentProviderError, ProviderMisconfigured
from django_ticketing.registration.models import Order, Registration
from django_ticketing.registration.stripe_utils import obfuscate_key
from django_ticketing.settings import get_config

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Stripe rejects metadata values longer than this.
METADATA_VALUE_LIMIT = 500


def _call(description: str, func: Callable[[], T]) -> T:
    """Run a Stripe API call, translating Stripe errors."""
    try:
        return func()
    except stripe.StripeError as exc:
        logger.warning("Stripe call failed (%s): %s", description, exc)
        msg = f"Payment provider error while trying to {description}: {exc.user_message or exc}"
        raise PaymentProviderError(msg) from exc


class StripeClient:
    """Stripe API client bound to the configured account.

    Wraps ``stripe.StripeClient`` (v1 namespace) with the configured secret
    key, API version, and network retry budget.

    Raises:
        ProviderMisconfigured: If no Stripe secret key is configured.
    """

    def __init__(self) -> None:
        """Initialize the client from the ticketing configuration.

        Raises:
            ProviderMisconfigured: If ``stripe.secret_key`` is not set.
        """
        config = get_config()
        secret_key = config.stripe.secret_key
        if not secret_key:
            msg = (
                "No Stripe secret key configured. Set DJANGO_TICKETING['stripe']['secret_key'] "
                "before taking card payments."
            )
            raise ProviderMisconfigured(msg)

        self.currency = config.currency.lower()
        self.client = stripe.StripeClient(
            secret_key,
            stripe_version=config.stripe.api_version,
            max_network_retries=config.stripe.max_network_retries,
        )
        logger.debug("Initialized StripeClient with key %s", obfuscate_key(secret_key))

    def create_order_coupon(self, order: Order) -> str:
        """Create a one-time Stripe coupon worth the order's discount.

        The coupon is scoped to a single redemption so it cannot be reused
        outside this order's checkout session.

        Returns:
            The Stripe coupon id.
        """
        coupon = _call(
            "create a discount",
            lambda: self.client.v1.coupons.create(
                params={
                    "duration": "once",
                    "amount_off": order.discount_amount,
                    "currency": self.currency,
                    "max_redemptions": 1,
                    "name": f"{order.coupon_code or 'Discount'} ({order.reference})"[:40],
                    "metadata": {"order_id": str(order.pk)},
                },
                options={"idempotency_key": f"order-coupon-{order.pk}"},
            ),
        )
        return coupon.id

    def create_checkout_session(
        self,
        order: Order,
        registrations: Sequence[Registration],
        line_items: list[dict[str, object]],
        *,
        coupon_id: str | None = None,
    ) -> stripe.checkout.Session:
        """Create a hosted Checkout Session for an order.

        Args:
            order: The pending order being paid for.
            registrations: The order's registrations; their ids are echoed back
                in the session metadata unless the list is too long for a
                Stripe metadata value, in which case only the order id is sent.
            line_items: Stripe line items, one per paid ticket tier.
            coupon_id: Optional one-time coupon applied to the session.

        Returns:
            The created ``stripe.checkout.Session``.
        """
        config = get_config()
        base_url = config.base_url.rstrip("/")
        metadata = {"order_id": str(order.pk), "coupon_code": order.coupon_code}
        registration_ids = ",".join(str(r.pk) for r in registrations)
        if len(registration_ids) <= METADATA_VALUE_LIMIT:
            metadata["registration_ids"] = registration_ids
        params: dict[str, object] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "customer_email": order.purchaser_email,
            "client_reference_id": str(order.pk),
            "metadata": metadata,
            "payment_intent_data": {
                "metadata": {"order_id": str(order.pk)},
                "description": f"Order {order.reference} for {config.event_name}",
            },
            "success_url": f"{base_url}{config.success_path}?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{base_url}{config.cancel_path}",
        }
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]

        return _call(
            "create a checkout session",
            lambda: self.client.v1.checkout.sessions.create(
                params=params,
                options={"idempotency_key": f"order-checkout-{order.pk}"},
            ),
        )

    def create_refund(
        self,
        payment_intent_id: str,
        amount: int | None = None,
        reason: str = "requested_by_customer",
    ) -> stripe.Refund:
        """Create a full or partial refund for a PaymentIntent.

        Args:
            payment_intent_id: The Stripe PaymentIntent ID to refund.
            amount: Optional partial refund amount in cents. When ``None``
                the full PaymentIntent amount is refunded.
            reason: The Stripe refund reason string (e.g.
                ``"requested_by_customer"``, ``"duplicate"``, ``"fraudulent"``).

        Returns:
            The created ``stripe.Refund`` object.
        """
        params: dict[str, object] = {
            "payment_intent": payment_intent_id,
            "reason": reason,
        }
        if amount is not None:
            params["amount"] = amount

        return _call("issue a refund", lambda: self.client.v1.refunds.create(params=params))


def construct_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify a webhook signature and parse the event.

    Raises:
        ProviderMisconfigured: If no webhook secret is configured.
        stripe.SignatureVerificationError: If the signature does not match.
        ValueError: If the payload is not valid JSON.
    """
    stripe_config = get_config().stripe
    if not stripe_config.webhook_secret:
        msg = "No Stripe webhook secret configured"
        raise ProviderMisconfigured(msg)
    return stripe.Webhook.construct_event(
        payload,
        sig_header,
        stripe_config.webhook_secret,
        tolerance=stripe_config.webhook_tolerance,
    )
