"""Free-ticket eligibility and discount-code resolution.

Read-mostly helpers shared by the order builder and the interactive
"apply coupon" preview. Lookups against the free-ticket allowlist fail safe
toward charging; access-code checks for gated registration fail toward
denial.
"""

import datetime
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from django.db import DatabaseError, IntegrityError, models, transaction
from django.utils import timezone

from django_ticketing.registration.access import ANONYMOUS, AccessContext
from django_ticketing.registration.catalog import get_tier, is_early_bird_active, tier_price
from django_ticketing.registration.exceptions import CouponRejected, CouponRejection
from django_ticketing.registration.models import DiscountCode, FreeTicketEmail
from django_ticketing.utils import redact_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FreeTicketCheck:
    """Result of an allowlist lookup."""

    is_free: bool
    reason: str = ""


@dataclass(frozen=True, slots=True)
class Discount:
    """A validated coupon and the discount it yields for one ticket tier.

    ``original_amount``, ``discount_amount`` and ``final_amount`` are computed
    against the tier the coupon was validated for. Use :meth:`amount_off` to
    apply the same coupon to an arbitrary amount such as an order subtotal.
    """

    code: str
    type: str
    value: int
    original_amount: int
    discount_amount: int
    final_amount: int
    description: str = ""
    grants_access: bool = False
    coupon_id: int | None = None

    def amount_off(self, amount: int) -> int:
        """Return the discount this coupon gives on *amount*, never exceeding it."""
        return _compute_discount(self.type, self.value, amount)


@dataclass(frozen=True, slots=True)
class AccessGrant:
    """A validated registration-gating access code."""

    code: str
    description: str
    has_discount: bool
    coupon_id: int


@dataclass(frozen=True, slots=True)
class BulkAddResult:
    """Outcome of adding several emails to the free-ticket allowlist."""

    added: int
    skipped: int
    total: int


def normalise_email(email: str) -> str:
    """Trim and lower-case an email for lookups."""
    return email.strip().lower()


def normalise_code(code: str) -> str:
    """Trim and upper-case a coupon code for lookups."""
    return code.strip().upper()


def _compute_discount(discount_type: str, value: int, amount: int) -> int:
    """Compute the discount in cents for *amount* under the given coupon rule."""
    if amount <= 0:
        return 0
    if discount_type == DiscountCode.DiscountType.FREE:
        return amount
    if discount_type == DiscountCode.DiscountType.PERCENTAGE:
        percent = max(0, min(value, 100))
        return (amount * percent + 50) // 100
    if discount_type == DiscountCode.DiscountType.FIXED:
        return min(value, amount)
    return 0


def check_free_ticket(email: str) -> FreeTicketCheck:
    """Check whether *email* is on the active free-ticket allowlist.

    Any database error is logged and treated as "not free" so a broken lookup
    never hands out complimentary tickets.
    """
    try:
        entry = FreeTicketEmail.objects.filter(email=normalise_email(email), active=True).first()
    except DatabaseError:
        logger.exception("Free-ticket lookup failed for %s", redact_email(email))
        return FreeTicketCheck(is_free=False)
    if entry is None:
        return FreeTicketCheck(is_free=False)
    return FreeTicketCheck(is_free=True, reason=entry.reason)


def _check_window_and_usage(coupon: DiscountCode, now: datetime.datetime) -> None:
    if coupon.valid_from and now < coupon.valid_from:
        raise CouponRejected(CouponRejection.NOT_YET_VALID, coupon.code)
    if coupon.valid_until and now > coupon.valid_until:
        raise CouponRejected(CouponRejection.EXPIRED, coupon.code)
    if coupon.max_uses is not None and coupon.current_uses >= coupon.max_uses:
        raise CouponRejected(CouponRejection.USAGE_LIMIT_REACHED, coupon.code)


def _email_allowed(coupon: DiscountCode, email: str) -> bool:
    if not coupon.allowed_emails:
        return True
    wanted = normalise_email(email)
    return any(normalise_email(str(allowed)) == wanted for allowed in coupon.allowed_emails)


def _lookup(code: str) -> DiscountCode:
    try:
        coupon = DiscountCode.objects.filter(code=code).first()
    except DatabaseError as exc:
        logger.exception("Coupon lookup failed for code %s", code)
        raise CouponRejected(CouponRejection.LOOKUP_FAILED, code) from exc
    if coupon is None:
        raise CouponRejected(CouponRejection.NOT_FOUND, code)
    return coupon


def validate_coupon(
    code: str,
    email: str,
    tier_id: str,
    *,
    context: AccessContext = ANONYMOUS,
    now: datetime.datetime | None = None,
) -> Discount:
    """Validate a coupon code for one attendee email and ticket tier.

    Checks run in a fixed order: existence, active flag, validity window,
    usage cap, email allowlist, tier restriction. The discount is computed
    against the tier price that applies at *now* (early-bird aware).

    Args:
        code: The coupon code as typed by the user (case-insensitive).
        email: The email the coupon is being redeemed for.
        tier_id: The ticket tier id the coupon is checked against.
        context: The caller's access context. Access-only codes that give no
            discount are rejected unless registration is gated.
        now: Override for the current time.

    Returns:
        The :class:`Discount` descriptor.

    Raises:
        CouponRejected: If any check fails; ``reason`` says which.
        InvalidTicketType: If *tier_id* is unknown.
    """
    now = now or timezone.now()
    normalised = normalise_code(code)
    coupon = _lookup(normalised)

    if not coupon.active:
        raise CouponRejected(CouponRejection.INACTIVE, normalised)
    _check_window_and_usage(coupon, now)
    if not _email_allowed(coupon, email):
        raise CouponRejected(CouponRejection.EMAIL_NOT_ALLOWED, normalised)
    if coupon.valid_for and tier_id not in coupon.valid_for:
        raise CouponRejected(CouponRejection.TIER_NOT_ALLOWED, normalised)

    tier = get_tier(tier_id)
    original_amount = tier_price(tier, early_bird=is_early_bird_active(now))
    discount_amount = _compute_discount(coupon.type, coupon.value, original_amount)

    if discount_amount == 0 and coupon.grants_access and not context.registration_gated:
        raise CouponRejected(CouponRejection.ACCESS_ONLY, normalised)

    return Discount(
        code=coupon.code,
        type=coupon.type,
        value=coupon.value,
        original_amount=original_amount,
        discount_amount=discount_amount,
        final_amount=original_amount - discount_amount,
        description=coupon.description,
        grants_access=coupon.grants_access,
        coupon_id=coupon.pk,
    )


def validate_access_code(
    code: str,
    email: str | None = None,
    *,
    now: datetime.datetime | None = None,
) -> AccessGrant:
    """Validate a code that unlocks gated registration.

    Unlike :func:`validate_coupon` no ticket tier is needed; the discount is
    calculated later at checkout. Lookup failures deny access.

    Raises:
        CouponRejected: If the code is unknown, inactive, not an access code,
            outside its window, exhausted, or restricted to other emails.
    """
    now = now or timezone.now()
    normalised = normalise_code(code)
    coupon = _lookup(normalised)

    if not coupon.active:
        raise CouponRejected(CouponRejection.INACTIVE, normalised)
    if not coupon.grants_access:
        raise CouponRejected(CouponRejection.NOT_AN_ACCESS_CODE, normalised)
    _check_window_and_usage(coupon, now)
    if email and not _email_allowed(coupon, email):
        raise CouponRejected(CouponRejection.EMAIL_NOT_ALLOWED, normalised)

    has_discount = coupon.type != DiscountCode.DiscountType.PERCENTAGE or coupon.value > 0
    return AccessGrant(
        code=coupon.code,
        description=coupon.description,
        has_discount=has_discount,
        coupon_id=coupon.pk,
    )


def increment_coupon_usage(code: str) -> bool:
    """Atomically add one redemption to a coupon's usage counter.

    Uses a single ``UPDATE ... SET current_uses = current_uses + 1`` so
    concurrent redemptions near the cap are never lost.

    Returns:
        ``True`` if a coupon row was updated.
    """
    updated = DiscountCode.objects.filter(code=normalise_code(code)).update(
        current_uses=models.F("current_uses") + 1,
        updated_at=timezone.now(),
    )
    if updated != 1:
        logger.warning("Coupon usage not incremented: no coupon with code %s", normalise_code(code))
        return False
    logger.info("Incremented usage for coupon %s", normalise_code(code))
    return True


def add_free_ticket_emails(emails: Iterable[str], reason: str) -> BulkAddResult:
    """Add several emails to the free-ticket allowlist.

    Existing entries are left untouched and counted as skipped.
    """
    normalised = [normalise_email(e) for e in emails if e and e.strip()]
    added = 0
    for email in dict.fromkeys(normalised):
        try:
            with transaction.atomic():
                _, created = FreeTicketEmail.objects.get_or_create(
                    email=email,
                    defaults={"reason": reason, "active": True},
                )
        except IntegrityError:
            created = False
        if created:
            added += 1
    logger.info("Added %s of %s emails to the free-ticket list", added, len(normalised))
    return BulkAddResult(added=added, skipped=len(normalised) - added, total=len(normalised))


def deactivate_free_ticket_email(email: str) -> bool:
    """Soft-delete an allowlist entry. Returns ``True`` if one was found."""
    return FreeTicketEmail.objects.filter(email=normalise_email(email)).update(active=False) == 1
