"""Forms for the registration app.

The JSON endpoints validate each part of the request body with these forms
before handing clean values to the services.
"""

from django import forms

from django_ticketing.registration.catalog import list_tiers
from django_ticketing.registration.models import Order


def _tier_choices() -> list[tuple[str, str]]:
    return [(tier.id, tier.name) for tier in list_tiers()]


class PurchaserForm(forms.Form):
    """Details of the person paying for the order."""

    email = forms.EmailField()
    name = forms.CharField(max_length=200, strip=True)
    org_name = forms.CharField(max_length=200, required=False, strip=True)
    org_abn = forms.CharField(max_length=50, required=False, strip=True)
    po_number = forms.CharField(max_length=100, required=False, strip=True)


class AttendeeForm(forms.Form):
    """One ticket holder."""

    email = forms.EmailField()
    name = forms.CharField(max_length=200, strip=True)
    tier = forms.ChoiceField(choices=_tier_choices)


class CheckoutForm(forms.Form):
    """Order-level options submitted at checkout."""

    payment_method = forms.ChoiceField(choices=Order.PaymentMethod.choices)
    coupon_code = forms.CharField(max_length=100, required=False, strip=True)


class CouponPreviewForm(forms.Form):
    """A coupon code to preview against the current attendee selection."""

    coupon_code = forms.CharField(max_length=100, strip=True)
    email = forms.EmailField()


class AccessCodeForm(forms.Form):
    """An access code for gated registration, optionally tied to an email."""

    code = forms.CharField(max_length=100, strip=True)
    email = forms.EmailField(required=False)
