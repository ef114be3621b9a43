"""Template tags and filters for ticketing documents and emails."""

from django import template

from django_ticketing.registration.services.pricing import calculate_gst
from django_ticketing.utils import format_amount

register = template.Library()


@register.filter
def format_cents(amount: int | None) -> str:
    """Format an amount in cents as a currency string.

    Handles ``None`` gracefully by treating it as zero.

    Usage in templates::

        {% load ticketing_tags %}
        {{ order.total_amount|format_cents }}

    Args:
        amount: The monetary amount in cents, or ``None``.

    Returns:
        A formatted string such as ``"$595.00"``.
    """
    return format_amount(amount or 0)


@register.filter
def gst_included(amount: int | None) -> str:
    """Format the GST component included in a tax-inclusive amount.

    Usage in templates::

        {% load ticketing_tags %}
        GST included: {{ order.total_amount|gst_included }}
    """
    return format_amount(calculate_gst(amount or 0))
