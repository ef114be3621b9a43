"""Cancellation and refund policy for orders and individual tickets.

Automatic refunds go back through Stripe and are only possible for paid card
orders with a recorded payment reference and a non-zero amount. Invoice
orders are refunded manually by bank transfer, so they can be cancelled but
never auto-refunded.
"""

import logging
from dataclasses import dataclass

from django.core.exceptions import PermissionDenied, ValidationError
from django.db import models, transaction
from django.utils import timezone

from django_ticketing.registration.access import ANONYMOUS, AccessContext
from django_ticketing.registration.exceptions import RefundNotAllowed
from django_ticketing.registration.models import Order, Registration
from django_ticketing.registration.signals import order_cancelled
from django_ticketing.registration.stripe_client import StripeClient
from django_ticketing.utils import format_amount

logger = logging.getLogger(__name__)

MANUAL_REFUND_MESSAGE = "Invoice payments require a manual refund. Please contact us for refund processing."
NO_PAYMENT_RECORD_MESSAGE = "No payment record found for automatic refund."
NO_PAYMENT_TAKEN_MESSAGE = "No payment was taken, so there is nothing to refund."


@dataclass(frozen=True, slots=True)
class CancellationInfo:
    """What cancelling an order or ticket would involve.

    ``amount`` is what an automatic refund would return: the order total
    (less tickets already refunded) or the ticket's amount paid.
    """

    can_cancel: bool
    can_auto_refund: bool
    amount: int
    payment_method: str
    message: str = ""


@dataclass(frozen=True, slots=True)
class CancellationResult:
    """The result of a completed cancellation."""

    target: Order | Registration
    refunded: bool
    amount_refunded: int = 0
    refund_id: str = ""


def _already_refunded(order: Order) -> int:
    return (
        order.registrations.filter(status=Registration.Status.REFUNDED).aggregate(total=models.Sum("amount_paid"))[
            "total"
        ]
        or 0
    )


def _describe_order(order: Order) -> CancellationInfo:
    is_paid = order.payment_status == Order.PaymentStatus.PAID
    amount = max(0, order.total_amount - _already_refunded(order))
    return _build_info(
        can_cancel=order.payment_status != Order.PaymentStatus.CANCELLED,
        is_paid=is_paid,
        payment_method=order.payment_method,
        payment_reference=order.stripe_payment_id,
        amount=amount,
        unpaid_message="This order has not been paid yet.",
    )


def _describe_registration(registration: Registration) -> CancellationInfo:
    order = registration.order
    return _build_info(
        can_cancel=registration.status not in {Registration.Status.CANCELLED, Registration.Status.REFUNDED},
        is_paid=registration.status == Registration.Status.PAID,
        payment_method=order.payment_method,
        payment_reference=registration.stripe_payment_id or order.stripe_payment_id,
        amount=registration.amount_paid,
        unpaid_message="This ticket has not been paid yet.",
    )


def _build_info(
    *,
    can_cancel: bool,
    is_paid: bool,
    payment_method: str,
    payment_reference: str,
    amount: int,
    unpaid_message: str,
) -> CancellationInfo:
    is_card = payment_method == Order.PaymentMethod.CARD
    if not is_paid:
        message = unpaid_message
    elif not is_card:
        message = MANUAL_REFUND_MESSAGE
    elif amount <= 0:
        message = NO_PAYMENT_TAKEN_MESSAGE
    elif not payment_reference:
        message = NO_PAYMENT_RECORD_MESSAGE
    else:
        message = f"{format_amount(amount)} will be refunded to the original card."
    return CancellationInfo(
        can_cancel=can_cancel,
        can_auto_refund=is_paid and is_card and amount > 0 and bool(payment_reference),
        amount=amount,
        payment_method=payment_method,
        message=message,
    )


class CancellationService:
    """Stateless service for cancelling orders and tickets."""

    @staticmethod
    def describe_cancellation(target: Order | Registration) -> CancellationInfo:
        """Describe whether *target* can be cancelled and auto-refunded."""
        if isinstance(target, Order):
            return _describe_order(target)
        return _describe_registration(target)

    @staticmethod
    @transaction.atomic
    def cancel(
        target: Order | Registration,
        *,
        issue_refund: bool = False,
        context: AccessContext = ANONYMOUS,
    ) -> CancellationResult:
        """Cancel an order (and all of its tickets) or a single ticket.

        Cancelling an order cascades to every ticket that is not already
        cancelled; cancelling one ticket leaves its siblings and its order
        untouched. When *issue_refund* is set, the refund is issued through
        Stripe before any status changes and the affected rows become
        ``refunded`` instead of ``cancelled``.

        Args:
            target: The ``Order`` or ``Registration`` to cancel.
            issue_refund: Whether to refund the card payment.
            context: Who is cancelling. Admins may cancel anything; others
                must own the order or ticket.

        Returns:
            A :class:`CancellationResult`.

        Raises:
            PermissionDenied: If the actor may not cancel *target*.
            ValidationError: If *target* is already cancelled.
            RefundNotAllowed: If a refund was requested but the policy does
                not allow an automatic refund.
            PaymentProviderError: If Stripe rejected the refund; nothing is
                changed.
        """
        if isinstance(target, Order):
            return _cancel_order(target, issue_refund=issue_refund, context=context)
        return _cancel_registration(target, issue_refund=issue_refund, context=context)


def _refund(payment_reference: str, amount: int | None) -> str:
    refund = StripeClient().create_refund(payment_reference, amount)
    return refund.id


def _cancel_order(order: Order, *, issue_refund: bool, context: AccessContext) -> CancellationResult:
    order = Order.objects.select_for_update().get(pk=order.pk)

    if not (context.is_admin or context.owns(order.purchaser_email)):
        raise PermissionDenied("Not authorized to cancel this order.")
    if order.payment_status == Order.PaymentStatus.CANCELLED:
        raise ValidationError("Order is already cancelled.")

    info = _describe_order(order)
    refund_id = ""
    if issue_refund:
        if not info.can_auto_refund:
            raise RefundNotAllowed(info.message)
        full_refund = info.amount == order.total_amount
        refund_id = _refund(order.stripe_payment_id, None if full_refund else info.amount)

    new_status = Registration.Status.REFUNDED if issue_refund else Registration.Status.CANCELLED
    order.registrations.exclude(
        status__in=[Registration.Status.CANCELLED, Registration.Status.REFUNDED],
    ).update(status=new_status, updated_at=timezone.now())

    order.payment_status = Order.PaymentStatus.CANCELLED
    order.save(update_fields=["payment_status", "updated_at"])

    logger.info(
        "Order %s cancelled (refund: %s)",
        order.reference,
        format_amount(info.amount) if issue_refund else "none",
    )
    transaction.on_commit(lambda: order_cancelled.send(sender=Order, order=order, refunded=issue_refund))
    return CancellationResult(
        target=order,
        refunded=issue_refund,
        amount_refunded=info.amount if issue_refund else 0,
        refund_id=refund_id,
    )


def _cancel_registration(
    registration: Registration,
    *,
    issue_refund: bool,
    context: AccessContext,
) -> CancellationResult:
    registration = Registration.objects.select_for_update().select_related("order", "profile").get(pk=registration.pk)
    order = registration.order

    owner_emails = [order.purchaser_email, registration.email]
    if registration.profile is not None:
        owner_emails.append(getattr(registration.profile, "email", "") or "")
    if not (context.is_admin or context.owns(*owner_emails)):
        raise PermissionDenied("Not authorized to cancel this ticket.")
    if registration.status in {Registration.Status.CANCELLED, Registration.Status.REFUNDED}:
        raise ValidationError("Ticket is already cancelled.")

    info = _describe_registration(registration)
    refund_id = ""
    if issue_refund:
        if not info.can_auto_refund:
            raise RefundNotAllowed(info.message)
        refund_id = _refund(registration.stripe_payment_id or order.stripe_payment_id, info.amount)

    registration.status = Registration.Status.REFUNDED if issue_refund else Registration.Status.CANCELLED
    registration.save(update_fields=["status", "updated_at"])

    logger.info(
        "Registration %s on order %s cancelled (refund: %s)",
        registration.pk,
        order.reference,
        format_amount(info.amount) if issue_refund else "none",
    )
    return CancellationResult(
        target=registration,
        refunded=issue_refund,
        amount_refunded=info.amount if issue_refund else 0,
        refund_id=refund_id,
    )
