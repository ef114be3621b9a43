"""Tests for order pricing in django_ticketing.registration.services.pricing."""

import datetime

import pytest
from django.core.exceptions import ValidationError

from django_ticketing.registration.access import AccessContext
from django_ticketing.registration.exceptions import CouponRejected, CouponRejection, InvalidTicketType
from django_ticketing.registration.models import DiscountCode, FreeTicketEmail
from django_ticketing.registration.services.pricing import (
    Attendee,
    Purchaser,
    apportion_discount,
    calculate_gst,
    preview_order,
    price_order,
)

PURCHASER = Purchaser(email="buyer@example.com", name="Buyer")
EARLY = datetime.datetime(2019, 6, 1, tzinfo=datetime.UTC)


def _attendee(email, tier_id="standard"):
    return Attendee(email=email, name=email.split("@")[0].title(), tier_id=tier_id)


@pytest.mark.unit
class TestCalculateGst:
    @pytest.mark.parametrize(
        ("total", "gst"),
        [(84000, 7636), (59500, 5409), (11, 1), (0, 0), (-100, 0), (5, 0), (6, 1)],
    )
    def test_one_eleventh_rounded(self, total, gst):
        assert calculate_gst(total) == gst


@pytest.mark.unit
class TestApportionDiscount:
    def test_shares_sum_to_discount(self):
        shares = apportion_discount([59500, 24500], 16800)
        assert sum(shares) == 16800
        assert shares == [11900, 4900]

    def test_remainder_is_distributed(self):
        shares = apportion_discount([100, 100, 100], 100)
        assert sum(shares) == 100
        assert all(0 <= share <= 100 for share in shares)

    def test_full_discount(self):
        assert apportion_discount([7500, 4500], 12000) == [7500, 4500]

    def test_no_discount(self):
        assert apportion_discount([7500], 0) == [0]

    def test_discount_larger_than_total_raises(self):
        with pytest.raises(ValueError, match="exceeds"):
            apportion_discount([100], 200)


@pytest.mark.django_db
class TestPriceOrder:
    def test_two_attendees_without_coupon(self):
        quote = price_order(
            PURCHASER,
            [_attendee("a@example.com", "standard"), _attendee("b@example.com", "academic")],
        )
        assert quote.subtotal == 84000
        assert quote.discount_amount == 0
        assert quote.total_amount == 84000
        assert quote.gst_amount == 7636
        assert quote.early_bird is False
        assert [line.label for line in quote.lines] == ["Standard (Industry/Professional)", "Academic / Non-Profit / Government"]

    def test_early_bird_prices(self):
        quote = price_order(PURCHASER, [_attendee("a@example.com", "concession")], now=EARLY)
        assert quote.early_bird is True
        assert quote.total_amount == 4500
        assert quote.lines[0].label == "Concession (Early Bird)"

    def test_free_attendee_excluded_from_subtotal(self):
        FreeTicketEmail.objects.create(email="speaker@example.com", reason="Speaker")
        quote = price_order(
            PURCHASER,
            [_attendee("speaker@example.com"), _attendee("b@example.com", "academic")],
        )
        assert quote.subtotal == 24500
        speaker, other = quote.lines
        assert speaker.is_free is True
        assert speaker.free_reason == "Speaker"
        assert speaker.amount_paid == 0
        assert other.amount_paid == 24500
        assert quote.paid_lines == (other,)

    def test_all_free_order(self):
        FreeTicketEmail.objects.create(email="speaker@example.com")
        quote = price_order(PURCHASER, [_attendee("speaker@example.com")])
        assert quote.is_free is True
        assert quote.total_amount == 0

    def test_coupon_applies_to_subtotal(self):
        DiscountCode.objects.create(code="SAVE20", type=DiscountCode.DiscountType.PERCENTAGE, value=20)
        quote = price_order(
            PURCHASER,
            [_attendee("a@example.com", "standard"), _attendee("b@example.com", "academic")],
            "save20",
        )
        assert quote.discount.code == "SAVE20"
        assert quote.discount_amount == 16800
        assert quote.total_amount == 67200
        assert sum(line.discount_amount for line in quote.lines) == 16800
        assert all(line.amount_paid == line.ticket_price - line.discount_amount for line in quote.lines)

    def test_fixed_coupon_never_goes_negative(self):
        DiscountCode.objects.create(code="BIG", type=DiscountCode.DiscountType.FIXED, value=100000)
        quote = price_order(PURCHASER, [_attendee("a@example.com", "concession")], "BIG")
        assert quote.discount_amount == 7500
        assert quote.total_amount == 0
        assert quote.is_free is True

    def test_coupon_checked_against_first_attendee_tier_only(self):
        DiscountCode.objects.create(code="ACAD", value=10, valid_for=["academic"])
        quote = price_order(
            PURCHASER,
            [_attendee("a@example.com", "academic"), _attendee("b@example.com", "standard")],
            "ACAD",
        )
        assert quote.discount_amount == 8400
        assert len(quote.notes) == 1

        with pytest.raises(CouponRejected) as exc_info:
            price_order(
                PURCHASER,
                [_attendee("b@example.com", "standard"), _attendee("a@example.com", "academic")],
                "ACAD",
            )
        assert exc_info.value.reason == CouponRejection.TIER_NOT_ALLOWED

    def test_coupon_checked_against_purchaser_email(self):
        DiscountCode.objects.create(code="VIP", value=50, allowed_emails=["buyer@example.com"])
        quote = price_order(PURCHASER, [_attendee("someone@example.com")], "VIP")
        assert quote.discount_amount == 29750

    def test_blank_coupon_is_ignored(self):
        quote = price_order(PURCHASER, [_attendee("a@example.com")], "   ")
        assert quote.discount is None

    def test_unknown_tier(self):
        with pytest.raises(InvalidTicketType):
            price_order(PURCHASER, [_attendee("a@example.com", "vip")])

    def test_no_attendees(self):
        with pytest.raises(ValidationError):
            price_order(PURCHASER, [])

    def test_preview_persists_nothing(self):
        DiscountCode.objects.create(code="SAVE20", value=20)
        quote = preview_order(PURCHASER, [_attendee("a@example.com")], "SAVE20")
        assert quote.total_amount == 47600
        assert DiscountCode.objects.get(code="SAVE20").current_uses == 0


@pytest.mark.django_db
class TestGatedPricing:
    gated = AccessContext(registration_gated=True)

    def test_preview_without_code_is_denied(self):
        with pytest.raises(CouponRejected) as exc_info:
            preview_order(PURCHASER, [_attendee("a@example.com")], context=self.gated)
        assert exc_info.value.reason == CouponRejection.ACCESS_CODE_REQUIRED

    def test_discount_only_code_is_denied(self):
        DiscountCode.objects.create(code="SAVE20", value=20)
        with pytest.raises(CouponRejected) as exc_info:
            price_order(PURCHASER, [_attendee("a@example.com")], "SAVE20", context=self.gated)
        assert exc_info.value.reason == CouponRejection.NOT_AN_ACCESS_CODE

    def test_access_only_code_prices_normally(self):
        DiscountCode.objects.create(code="EARLY", value=0, grants_access=True)
        quote = price_order(PURCHASER, [_attendee("a@example.com")], "EARLY", context=self.gated)
        assert quote.total_amount == 59500
        assert quote.discount.grants_access is True

    def test_open_registration_needs_no_code(self):
        quote = price_order(PURCHASER, [_attendee("a@example.com")], context=AccessContext())
        assert quote.total_amount == 59500
