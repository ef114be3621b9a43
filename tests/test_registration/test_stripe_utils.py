import pytest

from django_ticketing.registration.stripe_utils import metadata_value, obfuscate_key, stripe_id
from django_ticketing.utils import format_amount, redact_email


class _StripeObject:
    def __init__(self, obj_id):
        self.id = obj_id


# ---------------------------------------------------------------------------
# stripe_id
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("pi_123", "pi_123"),
        ({"id": "pi_456", "object": "payment_intent"}, "pi_456"),
        (_StripeObject("cs_789"), "cs_789"),
        (None, ""),
        ({"object": "payment_intent"}, ""),
        ({"id": 42}, ""),
    ],
)
def test_stripe_id(value, expected):
    assert stripe_id(value) == expected


# ---------------------------------------------------------------------------
# metadata_value
# ---------------------------------------------------------------------------


def test_metadata_value_present():
    assert metadata_value({"metadata": {"order_id": 12}}, "order_id") == "12"


def test_metadata_value_missing_or_empty():
    assert metadata_value({"metadata": {"order_id": ""}}, "order_id") == ""
    assert metadata_value({"metadata": {}}, "order_id") == ""
    assert metadata_value({"metadata": None}, "order_id") == ""
    assert metadata_value({}, "order_id") == ""


# ---------------------------------------------------------------------------
# obfuscate_key
# ---------------------------------------------------------------------------


def test_obfuscate_key_normal():
    assert obfuscate_key("sk_test_abcdefghijklmnop") == "****mnop"


def test_obfuscate_key_short():
    assert obfuscate_key("abc") == "****"


def test_obfuscate_key_exactly_four():
    assert obfuscate_key("abcd") == "****abcd"


# ---------------------------------------------------------------------------
# formatting helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("amount", "expected"),
    [(59500, "$595.00"), (0, "$0.00"), (123456789, "$1,234,567.89"), (-4500, "-$45.00")],
)
def test_format_amount(amount, expected):
    assert format_amount(amount) == expected


def test_redact_email():
    assert redact_email("user@example.com") == "us***@example.com"
    assert redact_email("not-an-email") == "***@***"
