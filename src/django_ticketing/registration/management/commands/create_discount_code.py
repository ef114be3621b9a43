"""Management command to create a discount or access code.

Usage::

    # 100% off for accepted speakers
    manage.py create_discount_code SPEAKER2026 --type free --description "Speaker ticket"

    # 50% off standard and academic tickets, 100 uses, until end of March
    manage.py create_discount_code EARLY50 --type percentage --value 50 \
        --tier standard --tier academic --max-uses 100 --valid-until 2026-03-31

    # $50 off for named organisers only
    manage.py create_discount_code ORG50 --type fixed --value 5000 --email organiser@example.com
"""

import argparse
import datetime

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from django_ticketing.registration.catalog import list_tiers
from django_ticketing.registration.models import DiscountCode
from django_ticketing.registration.services.eligibility import normalise_code, normalise_email


def _parse_date(value: str) -> datetime.datetime:
    try:
        day = datetime.date.fromisoformat(value)
    except ValueError as exc:
        msg = f"'{value}' is not an ISO date (YYYY-MM-DD)"
        raise argparse.ArgumentTypeError(msg) from exc
    return datetime.datetime.combine(day, datetime.time.min, tzinfo=datetime.UTC)


class Command(BaseCommand):
    """Create a discount code."""

    help = "Create a discount code (percentage, fixed amount in cents, or free ticket)"

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        """Register command-line arguments.

        Args:
            parser: The argument parser to add arguments to.
        """
        parser.add_argument("code", help="The code attendees will enter (stored upper-case).")
        parser.add_argument(
            "--type",
            choices=DiscountCode.DiscountType.values,
            default=DiscountCode.DiscountType.PERCENTAGE,
            help="Discount type.",
        )
        parser.add_argument(
            "--value",
            type=int,
            default=0,
            help="Percentage (0-100) or fixed amount in cents. Ignored for free codes.",
        )
        parser.add_argument("--description", default="", help="Shown to the attendee.")
        parser.add_argument(
            "--tier",
            action="append",
            default=[],
            choices=[tier.id for tier in list_tiers()],
            help="Restrict to a ticket tier. Repeat for several tiers.",
        )
        parser.add_argument(
            "--email",
            action="append",
            default=[],
            help="Restrict to an email address. Repeat for several addresses.",
        )
        parser.add_argument("--max-uses", type=int, default=None, help="Usage cap; unlimited when omitted.")
        parser.add_argument("--valid-from", type=_parse_date, default=None, help="First valid day (YYYY-MM-DD).")
        parser.add_argument("--valid-until", type=_parse_date, default=None, help="Expiry (YYYY-MM-DD).")
        parser.add_argument(
            "--grants-access",
            action="store_true",
            help="Also unlock registration while it is gated.",
        )

    def handle(self, **options: object) -> None:
        """Validate the options and create the code."""
        discount_type = str(options["type"])
        value = int(options["value"])
        if discount_type == DiscountCode.DiscountType.PERCENTAGE and not 0 <= value <= 100:
            msg = "Percentage discounts must be between 0 and 100"
            raise CommandError(msg)
        if value < 0:
            msg = "Discount value must not be negative"
            raise CommandError(msg)

        coupon = DiscountCode(
            code=normalise_code(str(options["code"])),
            description=str(options["description"]),
            type=discount_type,
            value=value,
            valid_for=list(options["tier"]),
            allowed_emails=[normalise_email(str(e)) for e in options["email"]],
            max_uses=options["max_uses"],
            valid_from=options["valid_from"],
            valid_until=options["valid_until"],
            grants_access=bool(options["grants_access"]),
        )
        if DiscountCode.objects.filter(code=coupon.code).exists():
            msg = f"A discount code '{coupon.code}' already exists"
            raise CommandError(msg)
        try:
            coupon.full_clean(exclude=["code"])
        except ValidationError as exc:
            raise CommandError("; ".join(exc.messages)) from None
        coupon.save()

        self.stdout.write(self.style.SUCCESS(f"Created discount code {coupon.code} ({coupon.type}, {coupon.value})"))
