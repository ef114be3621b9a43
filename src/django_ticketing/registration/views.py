"""JSON views for checkout, coupon and access-code checks, and cancellation.

Request bodies are JSON objects. Validation failures return HTTP 400 with an
``error`` message and a machine-readable ``code``; payment provider failures
return HTTP 502 and may be retried by the client.
"""

import json
import logging

from django import forms
from django.core.exceptions import PermissionDenied, ValidationError
from django.http import HttpRequest, JsonResponse
from django.shortcuts import get_object_or_404
from django.views import View

from django_ticketing.registration.access import AccessContext
from django_ticketing.registration.exceptions import PaymentProviderError
from django_ticketing.registration.forms import (
    AccessCodeForm,
    AttendeeForm,
    CheckoutForm,
    CouponPreviewForm,
    PurchaserForm,
)
from django_ticketing.registration.models import Order, Registration
from django_ticketing.registration.services.cancellation import CancellationInfo, CancellationService
from django_ticketing.registration.services.checkout import CheckoutService, OrderResult
from django_ticketing.registration.services.eligibility import validate_access_code
from django_ticketing.registration.services.pricing import Attendee, OrderQuote, Purchaser, preview_order
from django_ticketing.settings import get_config

logger = logging.getLogger(__name__)


class BadRequest(Exception):
    """Raised while parsing a request body that cannot be used."""

    def __init__(self, message: str, code: str = "invalid", errors: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.errors = errors or {}


def access_context_for(request: HttpRequest) -> AccessContext:
    """Build the service access context for the current user."""
    user = request.user
    authenticated = bool(user and user.is_authenticated)
    return AccessContext(
        actor_email=(getattr(user, "email", "") or "") if authenticated else "",
        is_admin=authenticated and bool(user.is_staff),
        registration_gated=get_config().registration_gated,
    )


def _error(message: str, code: str, status: int, errors: dict | None = None) -> JsonResponse:
    body: dict[str, object] = {"error": message, "code": code}
    if errors:
        body["errors"] = errors
    return JsonResponse(body, status=status)


def _validation_error_response(exc: ValidationError) -> JsonResponse:
    code = getattr(exc, "code", None) or "invalid"
    return _error(" ".join(exc.messages), code, 400)


def _json_body(request: HttpRequest) -> dict:
    try:
        data = json.loads(request.body or b"{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise BadRequest("Request body must be valid JSON.", "invalid_json") from exc
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object.", "invalid_json")
    return data


def _clean(form: forms.Form, prefix: str) -> dict:
    if not form.is_valid():
        raise BadRequest(f"Invalid {prefix} details.", "invalid_form", {prefix: form.errors.get_json_data()})
    return form.cleaned_data


def _parse_attendees(raw: object, *, require_names: bool = True) -> list[Attendee]:
    if not isinstance(raw, list) or not raw:
        raise BadRequest("At least one attendee is required.", "no_attendees")
    attendees = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise BadRequest("Each attendee must be a JSON object.", "invalid_form")
        data = dict(item)
        if not require_names and not data.get("name"):
            data["name"] = data.get("email", "")
        cleaned = _clean(AttendeeForm(data=data), f"attendees[{index}]")
        attendees.append(Attendee(email=cleaned["email"], name=cleaned["name"], tier_id=cleaned["tier"]))
    return attendees


def _quote_json(quote: OrderQuote) -> dict[str, object]:
    return {
        "subtotal": quote.subtotal,
        "discount_amount": quote.discount_amount,
        "total_amount": quote.total_amount,
        "gst_amount": quote.gst_amount,
        "early_bird": quote.early_bird,
        "coupon": (
            {
                "code": quote.discount.code,
                "type": quote.discount.type,
                "value": quote.discount.value,
                "description": quote.discount.description,
            }
            if quote.discount is not None
            else None
        ),
        "lines": [
            {
                "email": line.attendee.email,
                "tier": line.tier.id,
                "ticket_type": line.label,
                "ticket_price": line.ticket_price,
                "discount_amount": line.discount_amount,
                "amount_paid": line.amount_paid,
                "complimentary": line.is_free,
            }
            for line in quote.lines
        ],
        "notes": list(quote.notes),
    }


def _order_result_json(result: OrderResult) -> dict[str, object]:
    order = result.order
    return {
        "order_id": order.pk,
        "reference": order.reference,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "total_amount": order.total_amount,
        "free": result.free,
        "checkout_url": result.checkout_url,
        "invoice_number": result.invoice_number,
        "registration_ids": [reg.pk for reg in result.registrations],
        "replayed": result.replayed,
    }


class CheckoutView(View):
    """Create an order.

    Body::

        {
            "purchaser": {"email": ..., "name": ..., "org_name": ..., "org_abn": ..., "po_number": ...},
            "attendees": [{"email": ..., "name": ..., "tier": "standard"}, ...],
            "payment_method": "card" | "invoice",
            "coupon_code": "OPTIONAL"
        }

    An ``Idempotency-Key`` header makes retries return the original order.
    """

    http_method_names = ["post"]

    def post(self, request: HttpRequest, **kwargs: str) -> JsonResponse:  # noqa: ARG002
        """Validate the body, build the order, and describe the next step."""
        try:
            data = _json_body(request)
            purchaser_data = data.get("purchaser")
            if not isinstance(purchaser_data, dict):
                raise BadRequest("Purchaser details are required.", "invalid_form")
            purchaser_clean = _clean(PurchaserForm(data=purchaser_data), "purchaser")
            options = _clean(CheckoutForm(data=data), "checkout")
            attendees = _parse_attendees(data.get("attendees"))
        except BadRequest as exc:
            return _error(exc.message, exc.code, 400, exc.errors)

        user = request.user if request.user.is_authenticated else None
        purchaser = Purchaser(user=user, **purchaser_clean)
        idempotency_key = request.headers.get("Idempotency-Key") or None

        try:
            result = CheckoutService.build_order(
                purchaser,
                attendees,
                options["payment_method"],
                options["coupon_code"] or None,
                context=access_context_for(request),
                idempotency_key=idempotency_key,
            )
        except ValidationError as exc:
            return _validation_error_response(exc)
        except PaymentProviderError as exc:
            logger.warning("Checkout failed at the payment provider: %s", exc)
            return _error("Payment provider unavailable. Please try again.", "payment_provider_error", 502)

        status = 200 if result.replayed else 201
        return JsonResponse(_order_result_json(result), status=status)


class CouponPreviewView(View):
    """Preview what a coupon does to the current selection without creating an order.

    Body::

        {"coupon_code": "SAVE20", "email": ..., "attendees": [{"email": ..., "tier": ...}, ...]}
    """

    http_method_names = ["post"]

    def post(self, request: HttpRequest, **kwargs: str) -> JsonResponse:  # noqa: ARG002
        """Return the priced quote with the coupon applied."""
        try:
            data = _json_body(request)
            cleaned = _clean(CouponPreviewForm(data=data), "coupon")
            attendees = _parse_attendees(data.get("attendees"), require_names=False)
        except BadRequest as exc:
            return _error(exc.message, exc.code, 400, exc.errors)

        purchaser = Purchaser(email=cleaned["email"], name="")
        try:
            quote = preview_order(
                purchaser,
                attendees,
                cleaned["coupon_code"],
                context=access_context_for(request),
            )
        except ValidationError as exc:
            return _validation_error_response(exc)
        return JsonResponse(_quote_json(quote))


class AccessCodeView(View):
    """Check an access code before showing the gated registration form.

    Body: ``{"code": "EARLY", "email": "optional@example.com"}``. The code is
    only checked here; it must be submitted again with the order.
    """

    http_method_names = ["post"]

    def post(self, request: HttpRequest, **kwargs: str) -> JsonResponse:  # noqa: ARG002
        """Return the access grant or a 400 with the rejection reason."""
        try:
            cleaned = _clean(AccessCodeForm(data=_json_body(request)), "access_code")
        except BadRequest as exc:
            return _error(exc.message, exc.code, 400, exc.errors)

        try:
            grant = validate_access_code(cleaned["code"], cleaned["email"] or None)
        except ValidationError as exc:
            return _validation_error_response(exc)
        return JsonResponse(
            {
                "valid": True,
                "code": grant.code,
                "description": grant.description,
                "has_discount": grant.has_discount,
                "registration_gated": get_config().registration_gated,
            }
        )


def _cancellation_info_json(info: CancellationInfo) -> dict[str, object]:
    return {
        "can_cancel": info.can_cancel,
        "can_auto_refund": info.can_auto_refund,
        "amount": info.amount,
        "payment_method": info.payment_method,
        "message": info.message,
    }


class CancellationView(View):
    """Describe (GET) or perform (POST) the cancellation of an order or a single ticket.

    POST body: ``{"issue_refund": true | false}``.
    """

    http_method_names = ["get", "post"]
    model: type[Order] | type[Registration] = Order

    def get_target(self, pk: int) -> Order | Registration:
        """Return the order or registration being cancelled."""
        if self.model is Registration:
            return get_object_or_404(Registration.objects.select_related("order", "profile"), pk=pk)
        return get_object_or_404(Order, pk=pk)

    def _check_owner(self, request: HttpRequest, target: Order | Registration) -> None:
        context = access_context_for(request)
        if context.is_admin:
            return
        if isinstance(target, Order):
            emails = [target.purchaser_email]
        else:
            emails = [target.order.purchaser_email, target.email]
            if target.profile is not None:
                emails.append(getattr(target.profile, "email", "") or "")
        if not context.owns(*emails):
            raise PermissionDenied

    def get(self, request: HttpRequest, pk: int, **kwargs: str) -> JsonResponse:  # noqa: ARG002
        """Return what cancelling would involve."""
        target = self.get_target(pk)
        try:
            self._check_owner(request, target)
        except PermissionDenied:
            return _error("Not authorized.", "permission_denied", 403)
        return JsonResponse(_cancellation_info_json(CancellationService.describe_cancellation(target)))

    def post(self, request: HttpRequest, pk: int, **kwargs: str) -> JsonResponse:  # noqa: ARG002
        """Cancel, optionally refunding the card payment."""
        target = self.get_target(pk)
        try:
            data = _json_body(request)
        except BadRequest as exc:
            return _error(exc.message, exc.code, 400)

        try:
            result = CancellationService.cancel(
                target,
                issue_refund=bool(data.get("issue_refund", False)),
                context=access_context_for(request),
            )
        except PermissionDenied as exc:
            return _error(str(exc) or "Not authorized.", "permission_denied", 403)
        except ValidationError as exc:
            return _validation_error_response(exc)
        except PaymentProviderError as exc:
            logger.warning("Refund failed at the payment provider: %s", exc)
            return _error("Failed to process refund. Please contact support.", "payment_provider_error", 502)

        return JsonResponse(
            {
                "refunded": result.refunded,
                "amount_refunded": result.amount_refunded,
                "status": result.target.payment_status
                if isinstance(result.target, Order)
                else result.target.status,
            }
        )
