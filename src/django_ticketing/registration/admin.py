"""Django admin configuration for the registration app."""

from django.contrib import admin, messages
from django.core.exceptions import ValidationError
from django.db.models import QuerySet
from django.http import HttpRequest

from django_ticketing.registration.access import SYSTEM
from django_ticketing.registration.models import (
    DiscountCode,
    EventProcessingException,
    FreeTicketEmail,
    Order,
    Registration,
    StripeEvent,
)
from django_ticketing.registration.services.cancellation import CancellationService
from django_ticketing.registration.services.notifications import Notifier
from django_ticketing.registration.services.payment import PaymentService
from django_ticketing.registration.services.reconciliation import ReconciliationOutcome


@admin.register(DiscountCode)
class DiscountCodeAdmin(admin.ModelAdmin):
    """Admin interface for managing discount and access codes.

    Displays usage counts alongside the code configuration and allows
    filtering by type, active status, and whether the code grants access.
    """

    list_display = (
        "code",
        "type",
        "value",
        "current_uses",
        "max_uses",
        "remaining_uses",
        "active",
        "grants_access",
        "valid_until",
    )
    list_filter = ("type", "active", "grants_access")
    search_fields = ("code", "description")
    readonly_fields = ("current_uses", "created_at", "updated_at")


@admin.register(FreeTicketEmail)
class FreeTicketEmailAdmin(admin.ModelAdmin):
    """Admin interface for the free-ticket allowlist."""

    list_display = ("email", "reason", "active", "created_at")
    list_filter = ("active",)
    search_fields = ("email", "reason")
    actions = ("deactivate",)

    @admin.action(description="Deactivate selected emails")
    def deactivate(self, request: HttpRequest, queryset: QuerySet[FreeTicketEmail]) -> None:
        """Soft-delete the selected allowlist entries."""
        updated = queryset.update(active=False)
        self.message_user(request, f"Deactivated {updated} email(s).", messages.SUCCESS)


class RegistrationInline(admin.TabularInline):
    """Inline display of registrations within the order admin.

    Prices are snapshots from checkout and are shown read-only.
    """

    model = Registration
    extra = 0
    fields = ("name", "email", "ticket_type", "ticket_price", "discount_amount", "amount_paid", "status")
    readonly_fields = ("ticket_type", "ticket_price", "discount_amount", "amount_paid", "status")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """Admin interface for managing orders.

    Money fields and payment status are read-only; changes flow through the
    admin actions, which use the same services as the public endpoints.
    """

    list_display = (
        "__str__",
        "purchaser_email",
        "payment_method",
        "payment_status",
        "total_amount",
        "invoice_number",
        "created_at",
    )
    list_filter = ("payment_method", "payment_status")
    search_fields = ("purchaser_email", "purchaser_name", "org_name", "invoice_number", "stripe_session_id")
    readonly_fields = (
        "payment_status",
        "subtotal_amount",
        "discount_amount",
        "total_amount",
        "coupon_code",
        "stripe_session_id",
        "stripe_payment_id",
        "invoice_number",
        "idempotency_key",
        "created_at",
        "updated_at",
    )
    inlines = (RegistrationInline,)
    actions = ("mark_invoice_paid", "cancel_without_refund", "resend_invoice")

    @admin.action(description="Mark invoice paid (bank transfer received)")
    def mark_invoice_paid(self, request: HttpRequest, queryset: QuerySet[Order]) -> None:
        """Complete the selected invoice orders."""
        paid = 0
        for order in queryset:
            try:
                result = PaymentService.mark_invoice_paid(order)
            except ValidationError as exc:
                self.message_user(request, f"{order.reference}: {' '.join(exc.messages)}", messages.ERROR)
                continue
            if result.outcome == ReconciliationOutcome.PAID:
                paid += 1
        self.message_user(request, f"Marked {paid} order(s) as paid.", messages.SUCCESS)

    @admin.action(description="Cancel without refund")
    def cancel_without_refund(self, request: HttpRequest, queryset: QuerySet[Order]) -> None:
        """Cancel the selected orders and all of their tickets."""
        cancelled = 0
        for order in queryset:
            try:
                CancellationService.cancel(order, issue_refund=False, context=SYSTEM)
            except ValidationError as exc:
                self.message_user(request, f"{order.reference}: {' '.join(exc.messages)}", messages.WARNING)
                continue
            cancelled += 1
        self.message_user(request, f"Cancelled {cancelled} order(s).", messages.SUCCESS)

    @admin.action(description="Resend invoice email")
    def resend_invoice(self, request: HttpRequest, queryset: QuerySet[Order]) -> None:
        """Email the tax invoice again for the selected invoice orders."""
        notifier = Notifier()
        sent = 0
        for order in queryset.filter(payment_method=Order.PaymentMethod.INVOICE, invoice_number__isnull=False):
            if notifier.send_invoice(order):
                sent += 1
        self.message_user(request, f"Sent {sent} invoice(s).", messages.SUCCESS)


@admin.register(StripeEvent)
class StripeEventAdmin(admin.ModelAdmin):
    """Read-only admin for Stripe webhook events."""

    list_display = ("stripe_id", "kind", "processed", "livemode", "created_at")
    list_filter = ("kind", "processed", "livemode")
    search_fields = ("stripe_id",)
    readonly_fields = (
        "stripe_id",
        "kind",
        "livemode",
        "payload",
        "processed",
        "api_version",
        "created_at",
    )

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: HttpRequest, obj: StripeEvent | None = None) -> bool:  # noqa: ARG002, D102
        return False

    def has_delete_permission(self, request: HttpRequest, obj: StripeEvent | None = None) -> bool:  # noqa: ARG002, D102
        return False


@admin.register(EventProcessingException)
class EventProcessingExceptionAdmin(admin.ModelAdmin):
    """Read-only admin for webhook processing errors."""

    list_display = ("message", "event", "created_at")
    list_filter = ("created_at",)
    search_fields = ("message",)
    readonly_fields = ("event", "data", "message", "traceback", "created_at")

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: HttpRequest, obj: EventProcessingException | None = None) -> bool:  # noqa: ARG002, D102
        return False

    def has_delete_permission(self, request: HttpRequest, obj: EventProcessingException | None = None) -> bool:  # noqa: ARG002, D102
        return False
