"""Tests for free-ticket and coupon checks in django_ticketing.registration.services.eligibility."""

import datetime
from unittest.mock import patch

import pytest
from django.db import DatabaseError
from django.utils import timezone

from django_ticketing.registration.access import AccessContext
from django_ticketing.registration.exceptions import CouponRejected, CouponRejection, InvalidTicketType
from django_ticketing.registration.models import DiscountCode, FreeTicketEmail
from django_ticketing.registration.services.eligibility import (
    add_free_ticket_emails,
    check_free_ticket,
    deactivate_free_ticket_email,
    increment_coupon_usage,
    validate_access_code,
    validate_coupon,
)

GATED = AccessContext(registration_gated=True)


def _coupon(**kwargs):
    defaults = {"code": "SAVE20", "type": DiscountCode.DiscountType.PERCENTAGE, "value": 20}
    defaults.update(kwargs)
    return DiscountCode.objects.create(**defaults)


# =============================================================================
# Free tickets
# =============================================================================


@pytest.mark.django_db
class TestCheckFreeTicket:
    def test_listed_email_is_free(self):
        FreeTicketEmail.objects.create(email="speaker@example.com", reason="Speaker")
        result = check_free_ticket("  Speaker@Example.COM ")
        assert result.is_free is True
        assert result.reason == "Speaker"

    def test_unlisted_email_is_not_free(self):
        assert check_free_ticket("nobody@example.com").is_free is False

    def test_inactive_entry_is_not_free(self):
        FreeTicketEmail.objects.create(email="old@example.com", active=False)
        assert check_free_ticket("old@example.com").is_free is False

    def test_lookup_failure_charges(self):
        with patch.object(FreeTicketEmail.objects, "filter", side_effect=DatabaseError("down")):
            assert check_free_ticket("speaker@example.com").is_free is False

    def test_bulk_add_skips_existing(self):
        FreeTicketEmail.objects.create(email="a@example.com")
        result = add_free_ticket_emails(["A@example.com", "b@example.com", "b@example.com", " "], "Volunteer")
        assert result.added == 1
        assert result.skipped == 2
        assert result.total == 3
        assert FreeTicketEmail.objects.get(email="b@example.com").reason == "Volunteer"

    def test_deactivate(self):
        FreeTicketEmail.objects.create(email="a@example.com")
        assert deactivate_free_ticket_email("A@Example.com") is True
        assert check_free_ticket("a@example.com").is_free is False
        assert deactivate_free_ticket_email("missing@example.com") is False


# =============================================================================
# Coupons
# =============================================================================


@pytest.mark.django_db
class TestValidateCoupon:
    def test_percentage_discount_on_tier_price(self):
        _coupon()
        discount = validate_coupon("save20", "a@example.com", "standard")
        assert discount.code == "SAVE20"
        assert discount.original_amount == 59500
        assert discount.discount_amount == 11900
        assert discount.final_amount == 47600

    def test_fixed_discount_is_capped_at_price(self):
        _coupon(code="BIG", type=DiscountCode.DiscountType.FIXED, value=10000)
        discount = validate_coupon("BIG", "a@example.com", "concession")
        assert discount.discount_amount == 7500
        assert discount.final_amount == 0

    def test_free_coupon(self):
        _coupon(code="SPEAKER", type=DiscountCode.DiscountType.FREE)
        discount = validate_coupon("SPEAKER", "a@example.com", "academic")
        assert discount.final_amount == 0

    def test_percentage_rounds_half_up(self):
        _coupon(code="THIRD", value=33)
        # 7500 * 33 / 100 = 2475
        assert validate_coupon("THIRD", "a@example.com", "concession").discount_amount == 2475

    def test_unknown_code(self):
        with pytest.raises(CouponRejected) as exc_info:
            validate_coupon("NOPE", "a@example.com", "standard")
        assert exc_info.value.reason == CouponRejection.NOT_FOUND

    def test_inactive(self):
        _coupon(active=False)
        with pytest.raises(CouponRejected) as exc_info:
            validate_coupon("SAVE20", "a@example.com", "standard")
        assert exc_info.value.reason == CouponRejection.INACTIVE

    def test_not_yet_valid(self):
        _coupon(valid_from=timezone.now() + datetime.timedelta(days=1))
        with pytest.raises(CouponRejected) as exc_info:
            validate_coupon("SAVE20", "a@example.com", "standard")
        assert exc_info.value.reason == CouponRejection.NOT_YET_VALID

    def test_expired(self):
        _coupon(valid_until=timezone.now() - datetime.timedelta(days=1))
        with pytest.raises(CouponRejected) as exc_info:
            validate_coupon("SAVE20", "a@example.com", "standard")
        assert exc_info.value.reason == CouponRejection.EXPIRED
        assert exc_info.value.messages == ["This coupon has expired"]

    def test_usage_limit(self):
        _coupon(max_uses=2, current_uses=2)
        with pytest.raises(CouponRejected) as exc_info:
            validate_coupon("SAVE20", "a@example.com", "standard")
        assert exc_info.value.reason == CouponRejection.USAGE_LIMIT_REACHED

    def test_email_restriction_is_case_insensitive(self):
        _coupon(allowed_emails=["VIP@example.com"])
        assert validate_coupon("SAVE20", "vip@EXAMPLE.com", "standard").discount_amount == 11900
        with pytest.raises(CouponRejected) as exc_info:
            validate_coupon("SAVE20", "other@example.com", "standard")
        assert exc_info.value.reason == CouponRejection.EMAIL_NOT_ALLOWED

    def test_tier_restriction(self):
        _coupon(valid_for=["academic"])
        with pytest.raises(CouponRejected) as exc_info:
            validate_coupon("SAVE20", "a@example.com", "standard")
        assert exc_info.value.reason == CouponRejection.TIER_NOT_ALLOWED

    def test_checks_run_before_tier_lookup(self):
        _coupon(active=False)
        with pytest.raises(CouponRejected):
            validate_coupon("SAVE20", "a@example.com", "vip")

    def test_unknown_tier(self):
        _coupon()
        with pytest.raises(InvalidTicketType):
            validate_coupon("SAVE20", "a@example.com", "vip")

    def test_access_only_code_rejected_when_open(self):
        _coupon(code="EARLY", value=0, grants_access=True)
        with pytest.raises(CouponRejected) as exc_info:
            validate_coupon("EARLY", "a@example.com", "standard")
        assert exc_info.value.reason == CouponRejection.ACCESS_ONLY

    def test_access_only_code_accepted_when_gated(self):
        _coupon(code="EARLY", value=0, grants_access=True)
        discount = validate_coupon("EARLY", "a@example.com", "standard", context=GATED)
        assert discount.discount_amount == 0
        assert discount.grants_access is True

    def test_amount_off_applies_rule_to_any_amount(self):
        _coupon(code="FIFTY", type=DiscountCode.DiscountType.FIXED, value=5000)
        discount = validate_coupon("FIFTY", "a@example.com", "concession")
        assert discount.amount_off(100000) == 5000
        assert discount.amount_off(3000) == 3000


@pytest.mark.django_db
class TestValidateAccessCode:
    def test_valid_access_code(self):
        _coupon(code="EARLY", value=0, grants_access=True, description="Early access")
        grant = validate_access_code("early")
        assert grant.code == "EARLY"
        assert grant.has_discount is False
        assert grant.description == "Early access"

    def test_access_code_with_discount(self):
        _coupon(code="EARLY10", value=10, grants_access=True)
        assert validate_access_code("EARLY10").has_discount is True

    def test_plain_coupon_is_not_access_code(self):
        _coupon()
        with pytest.raises(CouponRejected) as exc_info:
            validate_access_code("SAVE20")
        assert exc_info.value.reason == CouponRejection.NOT_AN_ACCESS_CODE

    def test_email_restricted(self):
        _coupon(code="EARLY", value=0, grants_access=True, allowed_emails=["a@example.com"])
        with pytest.raises(CouponRejected) as exc_info:
            validate_access_code("EARLY", "b@example.com")
        assert exc_info.value.reason == CouponRejection.EMAIL_NOT_ALLOWED

    def test_lookup_failure_denies(self):
        with patch.object(DiscountCode.objects, "filter", side_effect=DatabaseError("down")):
            with pytest.raises(CouponRejected) as exc_info:
                validate_access_code("EARLY")
        assert exc_info.value.reason == CouponRejection.LOOKUP_FAILED


@pytest.mark.django_db
class TestIncrementCouponUsage:
    def test_increments(self):
        coupon = _coupon(current_uses=3)
        assert increment_coupon_usage("save20") is True
        coupon.refresh_from_db()
        assert coupon.current_uses == 4

    def test_unknown_code(self):
        assert increment_coupon_usage("MISSING") is False
