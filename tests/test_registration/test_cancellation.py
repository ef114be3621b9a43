"""Tests for the CancellationService in django_ticketing.registration.services.cancellation."""

from unittest.mock import MagicMock, patch

import pytest
import stripe
from django.core.exceptions import PermissionDenied, ValidationError
from django.db import DatabaseError

from django_ticketing.registration.access import SYSTEM, AccessContext
from django_ticketing.registration.exceptions import PaymentProviderError, RefundNotAllowed
from django_ticketing.registration.models import Order, Registration
from django_ticketing.registration.services.cancellation import (
    MANUAL_REFUND_MESSAGE,
    NO_PAYMENT_RECORD_MESSAGE,
    NO_PAYMENT_TAKEN_MESSAGE,
    CancellationService,
)
from django_ticketing.registration.signals import order_cancelled

BUYER = AccessContext(actor_email="Buyer@Example.com")
STRANGER = AccessContext(actor_email="stranger@example.com")


def _make_order(*, method=Order.PaymentMethod.CARD, status=Order.PaymentStatus.PAID, prices=(24500, 59500), **kw):
    order = Order.objects.create(
        purchaser_email="buyer@example.com",
        purchaser_name="Buyer",
        payment_method=method,
        payment_status=status,
        subtotal_amount=sum(prices),
        total_amount=sum(prices),
        stripe_payment_id="pi_paid_1" if method == Order.PaymentMethod.CARD else "",
        **kw,
    )
    reg_status = Registration.Status.PAID if status == Order.PaymentStatus.PAID else Registration.Status.PENDING
    for n, price in enumerate(prices):
        Registration.objects.create(
            order=order,
            email=f"attendee{n}@example.com",
            name=f"Attendee {n}",
            ticket_tier="academic",
            ticket_type="Academic / Non-Profit / Government",
            ticket_price=price,
            amount_paid=price,
            status=reg_status,
        )
    return order


@pytest.fixture
def mock_stripe():
    with patch("django_ticketing.registration.stripe_client.stripe.StripeClient") as mock_cls:
        mock_instance = MagicMock()
        mock_cls.return_value = mock_instance
        mock_instance.v1.refunds.create.return_value = MagicMock(id="re_test_1")
        yield mock_instance.v1


# =============================================================================
# describe_cancellation
# =============================================================================


@pytest.mark.django_db
class TestDescribeCancellation:
    def test_paid_card_order(self):
        info = CancellationService.describe_cancellation(_make_order())
        assert info.can_cancel is True
        assert info.can_auto_refund is True
        assert info.amount == 84000
        assert info.message == "$840.00 will be refunded to the original card."

    def test_invoice_order_needs_manual_refund(self):
        info = CancellationService.describe_cancellation(_make_order(method=Order.PaymentMethod.INVOICE))
        assert info.can_auto_refund is False
        assert info.message == MANUAL_REFUND_MESSAGE

    def test_unpaid_order(self):
        info = CancellationService.describe_cancellation(_make_order(status=Order.PaymentStatus.PENDING))
        assert info.can_cancel is True
        assert info.can_auto_refund is False
        assert info.message == "This order has not been paid yet."

    def test_free_order(self):
        info = CancellationService.describe_cancellation(_make_order(prices=(0,)))
        assert info.can_auto_refund is False
        assert info.message == NO_PAYMENT_TAKEN_MESSAGE

    def test_missing_payment_reference(self):
        order = _make_order()
        order.stripe_payment_id = ""
        info = CancellationService.describe_cancellation(order)
        assert info.can_auto_refund is False
        assert info.message == NO_PAYMENT_RECORD_MESSAGE

    def test_cancelled_order(self):
        assert (
            CancellationService.describe_cancellation(_make_order(status=Order.PaymentStatus.CANCELLED)).can_cancel
            is False
        )

    def test_order_amount_excludes_refunded_tickets(self):
        order = _make_order()
        order.registrations.filter(ticket_price=24500).update(status=Registration.Status.REFUNDED)
        assert CancellationService.describe_cancellation(order).amount == 59500

    def test_registration_uses_amount_paid(self):
        registration = _make_order().registrations.get(ticket_price=24500)
        info = CancellationService.describe_cancellation(registration)
        assert info.can_auto_refund is True
        assert info.amount == 24500


# =============================================================================
# cancel: orders
# =============================================================================


@pytest.mark.django_db
class TestCancelOrder:
    def test_cancel_without_refund_cascades(self, django_capture_on_commit_callbacks):
        order = _make_order()
        received = []

        def handler(sender, order, refunded, **kwargs):
            received.append((order.pk, refunded))

        order_cancelled.connect(handler)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                result = CancellationService.cancel(order, context=BUYER)
        finally:
            order_cancelled.disconnect(handler)

        assert result.refunded is False
        assert result.amount_refunded == 0
        order.refresh_from_db()
        assert order.payment_status == Order.PaymentStatus.CANCELLED
        assert set(order.registrations.values_list("status", flat=True)) == {Registration.Status.CANCELLED}
        assert received == [(order.pk, False)]

    def test_full_refund(self, mock_stripe):
        order = _make_order()

        result = CancellationService.cancel(order, issue_refund=True, context=BUYER)

        assert result.refunded is True
        assert result.amount_refunded == 84000
        assert result.refund_id == "re_test_1"
        params = mock_stripe.refunds.create.call_args.kwargs["params"]
        assert params == {"payment_intent": "pi_paid_1", "reason": "requested_by_customer"}
        assert set(order.registrations.values_list("status", flat=True)) == {Registration.Status.REFUNDED}

    def test_partial_refund_after_ticket_refund(self, mock_stripe):
        order = _make_order()
        order.registrations.filter(ticket_price=24500).update(status=Registration.Status.REFUNDED)

        result = CancellationService.cancel(order, issue_refund=True, context=SYSTEM)

        assert result.amount_refunded == 59500
        assert mock_stripe.refunds.create.call_args.kwargs["params"]["amount"] == 59500

    def test_already_cancelled_tickets_keep_their_status(self):
        order = _make_order()
        first = order.registrations.first()
        first.status = Registration.Status.REFUNDED
        first.save()

        CancellationService.cancel(order, context=SYSTEM)

        first.refresh_from_db()
        assert first.status == Registration.Status.REFUNDED

    def test_invoice_refund_not_allowed(self, mock_stripe):
        order = _make_order(method=Order.PaymentMethod.INVOICE)

        with pytest.raises(RefundNotAllowed) as exc_info:
            CancellationService.cancel(order, issue_refund=True, context=SYSTEM)

        assert exc_info.value.messages == [MANUAL_REFUND_MESSAGE]
        mock_stripe.refunds.create.assert_not_called()
        order.refresh_from_db()
        assert order.payment_status == Order.PaymentStatus.PAID

    def test_pending_order_refund_not_allowed(self, mock_stripe):
        order = _make_order(status=Order.PaymentStatus.PENDING)
        with pytest.raises(RefundNotAllowed):
            CancellationService.cancel(order, issue_refund=True, context=SYSTEM)
        mock_stripe.refunds.create.assert_not_called()

    def test_provider_failure_changes_nothing(self, mock_stripe):
        mock_stripe.refunds.create.side_effect = stripe.InvalidRequestError("charge already refunded", "charge")
        order = _make_order()

        with pytest.raises(PaymentProviderError):
            CancellationService.cancel(order, issue_refund=True, context=SYSTEM)

        order.refresh_from_db()
        assert order.payment_status == Order.PaymentStatus.PAID
        assert set(order.registrations.values_list("status", flat=True)) == {Registration.Status.PAID}

    def test_order_write_failure_rolls_back_ticket_updates(self):
        order = _make_order()

        with (
            patch.object(Order, "save", side_effect=DatabaseError("write failed")),
            pytest.raises(DatabaseError),
        ):
            CancellationService.cancel(order, context=SYSTEM)

        order.refresh_from_db()
        assert order.payment_status == Order.PaymentStatus.PAID
        assert set(order.registrations.values_list("status", flat=True)) == {Registration.Status.PAID}

    def test_already_cancelled(self):
        order = _make_order(status=Order.PaymentStatus.CANCELLED)
        with pytest.raises(ValidationError, match="already cancelled"):
            CancellationService.cancel(order, context=SYSTEM)

    def test_stranger_cannot_cancel(self):
        with pytest.raises(PermissionDenied):
            CancellationService.cancel(_make_order(), context=STRANGER)

    def test_anonymous_cannot_cancel(self):
        with pytest.raises(PermissionDenied):
            CancellationService.cancel(_make_order())


# =============================================================================
# cancel: single tickets
# =============================================================================


@pytest.mark.django_db
class TestCancelRegistration:
    def test_refund_paid_card_ticket(self, mock_stripe):
        order = _make_order()
        registration = order.registrations.get(ticket_price=24500)

        result = CancellationService.cancel(registration, issue_refund=True, context=BUYER)

        assert result.refunded is True
        assert result.amount_refunded == 24500
        registration.refresh_from_db()
        assert registration.status == Registration.Status.REFUNDED
        params = mock_stripe.refunds.create.call_args.kwargs["params"]
        assert params["amount"] == 24500
        assert params["payment_intent"] == "pi_paid_1"

    def test_siblings_and_order_untouched(self, mock_stripe):
        order = _make_order()
        registration = order.registrations.get(ticket_price=24500)

        CancellationService.cancel(registration, issue_refund=True, context=SYSTEM)

        order.refresh_from_db()
        assert order.payment_status == Order.PaymentStatus.PAID
        sibling = order.registrations.get(ticket_price=59500)
        assert sibling.status == Registration.Status.PAID

    def test_invoice_ticket_refund_not_allowed(self, mock_stripe):
        registration = _make_order(method=Order.PaymentMethod.INVOICE).registrations.get(ticket_price=24500)

        with pytest.raises(RefundNotAllowed):
            CancellationService.cancel(registration, issue_refund=True, context=SYSTEM)

        registration.refresh_from_db()
        assert registration.status == Registration.Status.PAID
        mock_stripe.refunds.create.assert_not_called()

    def test_cancel_without_refund(self):
        registration = _make_order().registrations.first()
        result = CancellationService.cancel(registration, context=SYSTEM)
        assert result.refunded is False
        registration.refresh_from_db()
        assert registration.status == Registration.Status.CANCELLED

    def test_attendee_may_cancel_own_ticket(self):
        registration = _make_order().registrations.get(email="attendee0@example.com")
        CancellationService.cancel(registration, context=AccessContext(actor_email="attendee0@example.com"))
        registration.refresh_from_db()
        assert registration.status == Registration.Status.CANCELLED

    def test_other_attendee_may_not(self):
        registration = _make_order().registrations.get(email="attendee0@example.com")
        with pytest.raises(PermissionDenied):
            CancellationService.cancel(registration, context=AccessContext(actor_email="attendee1@example.com"))

    def test_already_refunded(self):
        registration = _make_order().registrations.first()
        registration.status = Registration.Status.REFUNDED
        registration.save()
        with pytest.raises(ValidationError, match="already cancelled"):
            CancellationService.cancel(registration, context=SYSTEM)
