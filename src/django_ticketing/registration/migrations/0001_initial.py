import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="DiscountCode",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=100, unique=True)),
                ("description", models.CharField(blank=True, default="", max_length=300)),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("percentage", "Percentage discount"),
                            ("fixed", "Fixed amount discount"),
                            ("free", "Complimentary (100% off)"),
                        ],
                        default="percentage",
                        max_length=20,
                    ),
                ),
                (
                    "value",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Percentage (0-100) or fixed amount in cents depending on type.",
                    ),
                ),
                (
                    "valid_for",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Ticket tier ids this code applies to. Empty means all.",
                    ),
                ),
                (
                    "allowed_emails",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Email addresses allowed to use this code. Empty means anyone.",
                    ),
                ),
                ("max_uses", models.PositiveIntegerField(blank=True, null=True)),
                ("current_uses", models.PositiveIntegerField(default=0)),
                ("valid_from", models.DateTimeField(blank=True, null=True)),
                ("valid_until", models.DateTimeField(blank=True, null=True)),
                ("active", models.BooleanField(default=True)),
                (
                    "grants_access",
                    models.BooleanField(
                        default=False,
                        help_text="When True, the code also unlocks gated registration.",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="FreeTicketEmail",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("reason", models.CharField(blank=True, default="", max_length=300)),
                ("active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="StripeEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("stripe_id", models.CharField(max_length=255, unique=True)),
                ("kind", models.CharField(max_length=255)),
                ("livemode", models.BooleanField(default=False)),
                ("payload", models.JSONField(default=dict)),
                ("api_version", models.CharField(blank=True, default="", max_length=50)),
                ("processed", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="EventProcessingException",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("data", models.TextField(blank=True, default="")),
                ("message", models.CharField(max_length=500)),
                ("traceback", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "event",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="exceptions",
                        to="ticketing_registration.stripeevent",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("purchaser_email", models.EmailField(max_length=254)),
                ("purchaser_name", models.CharField(max_length=200)),
                ("org_name", models.CharField(blank=True, default="", max_length=200)),
                ("org_abn", models.CharField(blank=True, default="", max_length=50)),
                ("po_number", models.CharField(blank=True, default="", max_length=100)),
                (
                    "payment_method",
                    models.CharField(
                        choices=[("card", "Card"), ("invoice", "Invoice (bank transfer)")],
                        default="card",
                        max_length=20,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("paid", "Paid"),
                            ("cancelled", "Cancelled"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("subtotal_amount", models.PositiveIntegerField(default=0)),
                ("discount_amount", models.PositiveIntegerField(default=0)),
                ("total_amount", models.PositiveIntegerField(default=0)),
                (
                    "coupon_code",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Snapshot of the coupon code applied at checkout.",
                        max_length=100,
                    ),
                ),
                ("stripe_session_id", models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ("checkout_url", models.URLField(blank=True, default="", max_length=2000)),
                ("stripe_payment_id", models.CharField(blank=True, default="", max_length=255)),
                ("invoice_number", models.CharField(blank=True, max_length=50, null=True, unique=True)),
                ("external_invoice_id", models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ("invoice_due_date", models.DateField(blank=True, null=True)),
                ("idempotency_key", models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "coupon",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="orders",
                        to="ticketing_registration.discountcode",
                    ),
                ),
                (
                    "purchaser",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="ticket_orders",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(discount_amount__lte=models.F("subtotal_amount")),
                        name="ticketing_order_discount_lte_subtotal",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(total_amount=models.F("subtotal_amount") - models.F("discount_amount")),
                        name="ticketing_order_total_matches",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Registration",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("email", models.EmailField(max_length=254)),
                ("name", models.CharField(max_length=200)),
                ("ticket_tier", models.CharField(max_length=50)),
                (
                    "ticket_type",
                    models.CharField(
                        help_text='Tier label at purchase time, e.g. "Concession (Early Bird)".',
                        max_length=200,
                    ),
                ),
                ("ticket_price", models.PositiveIntegerField(default=0)),
                ("discount_amount", models.PositiveIntegerField(default=0)),
                ("amount_paid", models.PositiveIntegerField(default=0)),
                (
                    "is_complimentary",
                    models.BooleanField(
                        default=False,
                        help_text="Issued free because the attendee is on the free-ticket list.",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("paid", "Paid"),
                            ("cancelled", "Cancelled"),
                            ("refunded", "Refunded"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("stripe_session_id", models.CharField(blank=True, db_index=True, default="", max_length=255)),
                ("stripe_payment_id", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "coupon",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="registrations",
                        to="ticketing_registration.discountcode",
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="registrations",
                        to="ticketing_registration.order",
                    ),
                ),
                (
                    "profile",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="ticket_registrations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(discount_amount__lte=models.F("ticket_price")),
                        name="ticketing_registration_discount_lte_price",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(amount_paid=models.F("ticket_price") - models.F("discount_amount")),
                        name="ticketing_registration_amount_paid_matches",
                    ),
                ],
            },
        ),
    ]
