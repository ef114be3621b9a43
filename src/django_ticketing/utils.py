"""Formatting helpers shared across the ticketing apps."""

from django_ticketing.settings import get_config

_REDACT_VISIBLE_CHARS = 2


def format_amount(amount: int) -> str:
    """Format an amount in cents for display, e.g. ``59500`` -> ``"$595.00"``."""
    symbol = get_config().currency_symbol
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount) / 100:,.2f}"


def redact_email(email: str) -> str:
    """Redact an email address for log output.

    Keeps the first two characters of the local part and the full domain, so
    ``"user@example.com"`` becomes ``"us***@example.com"``.
    """
    local, sep, domain = email.partition("@")
    if not sep or not domain:
        return "***@***"
    return f"{local[:_REDACT_VISIBLE_CHARS]}***@{domain}"
