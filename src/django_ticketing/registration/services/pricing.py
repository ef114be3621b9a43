"""Order pricing: per-attendee prices, free tickets, and order-level coupons.

Pricing is pure apart from the allowlist and coupon lookups, so the same
quote backs both the persisted order and the interactive coupon preview.
"""

import datetime
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.core.exceptions import ValidationError
from django.utils import timezone

from django_ticketing.registration.access import ANONYMOUS, AccessContext
from django_ticketing.registration.catalog import (
    TicketTier,
    get_tier,
    is_early_bird_active,
    tier_label,
    tier_price,
)
from django_ticketing.registration.exceptions import CouponRejected, CouponRejection
from django_ticketing.registration.services.eligibility import (
    Discount,
    check_free_ticket,
    normalise_email,
    validate_coupon,
)

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser


@dataclass(frozen=True, slots=True)
class Purchaser:
    """The person paying for an order."""

    email: str
    name: str
    org_name: str = ""
    org_abn: str = ""
    po_number: str = ""
    user: "AbstractBaseUser | None" = None


@dataclass(frozen=True, slots=True)
class Attendee:
    """One ticket holder in an order."""

    email: str
    name: str
    tier_id: str
    profile: "AbstractBaseUser | None" = None


@dataclass(frozen=True, slots=True)
class QuoteLine:
    """The priced ticket for one attendee."""

    attendee: Attendee
    tier: TicketTier
    label: str
    ticket_price: int
    is_free: bool
    free_reason: str = ""
    discount_amount: int = 0

    @property
    def amount_paid(self) -> int:
        """Return what this ticket costs after discounts."""
        return self.ticket_price - self.discount_amount


@dataclass(frozen=True, slots=True)
class OrderQuote:
    """A fully priced order.

    ``subtotal`` only counts tickets that are not on the free-ticket
    allowlist; ``discount_amount`` is the coupon discount applied to that
    subtotal, and ``total_amount == subtotal - discount_amount``.
    """

    lines: tuple[QuoteLine, ...]
    subtotal: int
    discount_amount: int
    total_amount: int
    early_bird: bool
    discount: Discount | None = None
    notes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def gst_amount(self) -> int:
        """Return the GST component included in the total."""
        return calculate_gst(self.total_amount)

    @property
    def paid_lines(self) -> tuple[QuoteLine, ...]:
        """Return lines that contribute to the subtotal."""
        return tuple(line for line in self.lines if not line.is_free)

    @property
    def is_free(self) -> bool:
        """Return ``True`` when nothing needs to be collected."""
        return self.total_amount == 0


def calculate_gst(total: int) -> int:
    """Return the GST included in a tax-inclusive total (10% GST, i.e. total / 11).

    Rounds half up, so the result matches ``round(total / 11)`` for
    non-negative totals.
    """
    if total <= 0:
        return 0
    return (total * 2 + 11) // 22


def apportion_discount(prices: list[int], discount: int) -> list[int]:
    """Split an order-level *discount* across tickets priced *prices*.

    Shares are proportional to price, never exceed a ticket's price, and sum
    exactly to *discount* (which must not exceed ``sum(prices)``).
    """
    total = sum(prices)
    if discount <= 0 or total <= 0:
        return [0] * len(prices)
    if discount > total:
        msg = f"Discount {discount} exceeds the amount it applies to ({total})."
        raise ValueError(msg)
    shares = [price * discount // total for price in prices]
    remainder = discount - sum(shares)
    idx = 0
    while remainder > 0:
        if shares[idx] < prices[idx]:
            shares[idx] += 1
            remainder -= 1
        idx = (idx + 1) % len(prices)
    return shares


def price_order(
    purchaser: Purchaser,
    attendees: list[Attendee],
    coupon_code: str | None = None,
    *,
    context: AccessContext = ANONYMOUS,
    now: datetime.datetime | None = None,
) -> OrderQuote:
    """Price a multi-attendee order.

    Each attendee's tier is resolved and checked against the free-ticket
    allowlist; the prices of the remaining tickets make up the subtotal. A
    coupon, when supplied, is validated once against the *first* attendee's
    tier and the purchaser's email and then applied to the whole subtotal.

    While registration is gated, non-admin callers must supply a code that
    grants access.

    Raises:
        ValidationError: If *attendees* is empty.
        InvalidTicketType: If any attendee references an unknown tier.
        CouponRejected: If the coupon fails validation, or registration is
            gated and no access code was given.
    """
    if not attendees:
        raise ValidationError("An order needs at least one attendee.")

    gated = context.registration_gated and not context.is_admin
    has_code = bool(coupon_code and coupon_code.strip())
    if gated and not has_code:
        raise CouponRejected(CouponRejection.ACCESS_CODE_REQUIRED)

    now = now or timezone.now()
    early_bird = is_early_bird_active(now)

    pending: list[tuple[Attendee, TicketTier, int, str | None]] = []
    for attendee in attendees:
        tier = get_tier(attendee.tier_id)
        price = tier_price(tier, early_bird=early_bird)
        free = check_free_ticket(attendee.email)
        pending.append((attendee, tier, price, free.reason if free.is_free else None))

    subtotal = sum(price for _, _, price, free_reason in pending if free_reason is None)

    discount: Discount | None = None
    discount_amount = 0
    if has_code:
        discount = validate_coupon(
            coupon_code,
            normalise_email(purchaser.email),
            attendees[0].tier_id,
            context=context,
            now=now,
        )
        if gated and not discount.grants_access:
            raise CouponRejected(CouponRejection.NOT_AN_ACCESS_CODE, discount.code)
        discount_amount = discount.amount_off(subtotal)

    paid_prices = [price for _, _, price, free_reason in pending if free_reason is None]
    shares = iter(apportion_discount(paid_prices, discount_amount))

    lines: list[QuoteLine] = []
    for attendee, tier, price, free_reason in pending:
        is_free = free_reason is not None
        lines.append(
            QuoteLine(
                attendee=attendee,
                tier=tier,
                label=tier_label(tier, early_bird=early_bird),
                ticket_price=price,
                is_free=is_free,
                free_reason=free_reason or "",
                discount_amount=price if is_free else next(shares),
            )
        )

    notes: list[str] = []
    if discount is not None and len({a.tier_id for a in attendees}) > 1:
        notes.append(f"Coupon {discount.code} was validated against the first attendee's ticket type only.")

    return OrderQuote(
        lines=tuple(lines),
        subtotal=subtotal,
        discount_amount=discount_amount,
        total_amount=max(0, subtotal - discount_amount),
        early_bird=early_bird,
        discount=discount,
        notes=tuple(notes),
    )


def preview_order(
    purchaser: Purchaser,
    attendees: list[Attendee],
    coupon_code: str | None = None,
    *,
    context: AccessContext = ANONYMOUS,
    now: datetime.datetime | None = None,
) -> OrderQuote:
    """Price an order for display without persisting anything."""
    return price_order(purchaser, attendees, coupon_code, context=context, now=now)
