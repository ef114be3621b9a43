"""Order, registration, discount, and payment-event models for django-ticketing.

All monetary amounts are stored as integers in the smallest currency unit
(cents), matching what the payment provider sends and expects.
"""

from django.conf import settings
from django.db import models

from django_ticketing.settings import get_config


class DiscountCode(models.Model):
    """A reusable coupon for ticket purchases.

    Discount codes provide a percentage discount, a fixed amount off, or full
    complimentary access. They may be restricted to specific ticket tiers or
    specific email addresses, capped by a usage limit, and bounded by a
    validity window. Codes flagged with ``grants_access`` also unlock gated
    registration.
    """

    class DiscountType(models.TextChoices):
        """The type of discount a code provides."""

        PERCENTAGE = "percentage", "Percentage discount"
        FIXED = "fixed", "Fixed amount discount"
        FREE = "free", "Complimentary (100% off)"

    code = models.CharField(max_length=100, unique=True)
    description = models.CharField(max_length=300, blank=True, default="")
    type = models.CharField(
        max_length=20,
        choices=DiscountType.choices,
        default=DiscountType.PERCENTAGE,
    )
    value = models.PositiveIntegerField(
        default=0,
        help_text="Percentage (0-100) or fixed amount in cents depending on type.",
    )
    valid_for = models.JSONField(
        default=list,
        blank=True,
        help_text="Ticket tier ids this code applies to. Empty means all.",
    )
    allowed_emails = models.JSONField(
        default=list,
        blank=True,
        help_text="Email addresses allowed to use this code. Empty means anyone.",
    )
    max_uses = models.PositiveIntegerField(null=True, blank=True)
    current_uses = models.PositiveIntegerField(default=0)
    valid_from = models.DateTimeField(null=True, blank=True)
    valid_until = models.DateTimeField(null=True, blank=True)
    active = models.BooleanField(default=True)
    grants_access = models.BooleanField(
        default=False,
        help_text="When True, the code also unlocks gated registration.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return self.code

    def save(self, *args: object, **kwargs: object) -> None:
        """Store codes upper-cased so lookups are case-insensitive."""
        self.code = self.code.strip().upper()
        if self.type == self.DiscountType.FREE:
            self.value = 100
        super().save(*args, **kwargs)

    @property
    def remaining_uses(self) -> int | None:
        """Return how many redemptions are left, or ``None`` when uncapped."""
        if self.max_uses is None:
            return None
        return max(0, self.max_uses - self.current_uses)


class FreeTicketEmail(models.Model):
    """An allowlisted email address that receives complimentary tickets."""

    email = models.EmailField(unique=True)
    reason = models.CharField(max_length=300, blank=True, default="")
    active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return self.email

    def save(self, *args: object, **kwargs: object) -> None:
        """Normalise the email before saving."""
        self.email = self.email.strip().lower()
        super().save(*args, **kwargs)


class Order(models.Model):
    """One purchase transaction covering one or more attendee registrations.

    Orders snapshot the pricing and discount at the time of purchase. Payment
    status only moves forward from ``PENDING``; the Order exclusively owns its
    registrations and status changes cascade from the Order down, never up.
    """

    class PaymentMethod(models.TextChoices):
        """How the purchaser pays."""

        CARD = "card", "Card"
        INVOICE = "invoice", "Invoice (bank transfer)"

    class PaymentStatus(models.TextChoices):
        """Lifecycle states for an order."""

        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        CANCELLED = "cancelled", "Cancelled"
        FAILED = "failed", "Failed"

    purchaser = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="ticket_orders",
    )
    purchaser_email = models.EmailField()
    purchaser_name = models.CharField(max_length=200)
    org_name = models.CharField(max_length=200, blank=True, default="")
    org_abn = models.CharField(max_length=50, blank=True, default="")
    po_number = models.CharField(max_length=100, blank=True, default="")
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.CARD,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    subtotal_amount = models.PositiveIntegerField(default=0)
    discount_amount = models.PositiveIntegerField(default=0)
    total_amount = models.PositiveIntegerField(default=0)
    coupon = models.ForeignKey(
        DiscountCode,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )
    coupon_code = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Snapshot of the coupon code applied at checkout.",
    )
    stripe_session_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    checkout_url = models.URLField(max_length=2000, blank=True, default="")
    stripe_payment_id = models.CharField(max_length=255, blank=True, default="")
    invoice_number = models.CharField(max_length=50, unique=True, null=True, blank=True)
    external_invoice_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    invoice_due_date = models.DateField(null=True, blank=True)
    idempotency_key = models.CharField(max_length=255, unique=True, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(discount_amount__lte=models.F("subtotal_amount")),
                name="ticketing_order_discount_lte_subtotal",
            ),
            models.CheckConstraint(
                condition=models.Q(
                    total_amount=models.F("subtotal_amount") - models.F("discount_amount"),
                ),
                name="ticketing_order_total_matches",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.reference} ({self.payment_status})"

    @property
    def reference(self) -> str:
        """Return the human-readable order number shown on receipts."""
        if self.invoice_number:
            return self.invoice_number
        return f"{get_config().order_reference_prefix}-{self.pk:06d}" if self.pk else ""

    @property
    def is_paid(self) -> bool:
        """Return ``True`` when payment has been confirmed."""
        return self.payment_status == self.PaymentStatus.PAID


class Registration(models.Model):
    """One ticket for one attendee, owned by exactly one Order.

    ``amount_paid`` is always ``ticket_price - discount_amount``. A
    registration may be cancelled on its own without touching its siblings
    or its Order.
    """

    class Status(models.TextChoices):
        """Lifecycle states for a single ticket."""

        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        CANCELLED = "cancelled", "Cancelled"
        REFUNDED = "refunded", "Refunded"
        FAILED = "failed", "Failed"

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="registrations",
    )
    email = models.EmailField()
    name = models.CharField(max_length=200)
    ticket_tier = models.CharField(max_length=50)
    ticket_type = models.CharField(
        max_length=200,
        help_text='Tier label at purchase time, e.g. "Concession (Early Bird)".',
    )
    ticket_price = models.PositiveIntegerField(default=0)
    discount_amount = models.PositiveIntegerField(default=0)
    amount_paid = models.PositiveIntegerField(default=0)
    is_complimentary = models.BooleanField(
        default=False,
        help_text="Issued free because the attendee is on the free-ticket list.",
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
    )
    coupon = models.ForeignKey(
        DiscountCode,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="registrations",
    )
    stripe_session_id = models.CharField(max_length=255, blank=True, default="", db_index=True)
    stripe_payment_id = models.CharField(max_length=255, blank=True, default="")
    profile = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="ticket_registrations",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(discount_amount__lte=models.F("ticket_price")),
                name="ticketing_registration_discount_lte_price",
            ),
            models.CheckConstraint(
                condition=models.Q(
                    amount_paid=models.F("ticket_price") - models.F("discount_amount"),
                ),
                name="ticketing_registration_amount_paid_matches",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.name} - {self.ticket_type} ({self.status})"

    @property
    def original_amount(self) -> int:
        """Return the tier price at the time of purchase."""
        return self.ticket_price


class StripeEvent(models.Model):
    """A raw Stripe webhook delivery, stored for deduplication and audit."""

    stripe_id = models.CharField(max_length=255, unique=True)
    kind = models.CharField(max_length=255)
    livemode = models.BooleanField(default=False)
    payload = models.JSONField(default=dict)
    api_version = models.CharField(max_length=50, blank=True, default="")
    processed = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.kind} ({self.stripe_id})"


class EventProcessingException(models.Model):
    """A captured failure while processing a Stripe webhook event."""

    event = models.ForeignKey(
        StripeEvent,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="exceptions",
    )
    data = models.TextField(blank=True, default="")
    message = models.CharField(max_length=500)
    traceback = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"<{self.message}, pk={self.pk}, Event={self.event}>"
