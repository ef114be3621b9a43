"""Typed configuration for django-ticketing.

Reads a single ``DJANGO_TICKETING`` dict from Django settings and exposes it as
composed, frozen dataclasses with sensible defaults.

Usage::

    from django_ticketing.settings import get_config

    config = get_config()
    config.stripe.secret_key
    config.invoice.due_days
    config.currency
"""

import datetime
import functools
from collections.abc import Mapping
from dataclasses import dataclass, field

from django.conf import settings
from django.test.signals import setting_changed


@dataclass(frozen=True, slots=True)
class StripeConfig:
    """Stripe payment gateway configuration.

    ``price_ids`` and ``early_bird_price_ids`` map ticket tier ids to the
    Stripe Price objects used for hosted checkout line items.
    """

    secret_key: str | None = None
    publishable_key: str | None = None
    webhook_secret: str | None = None
    api_version: str = "2024-12-18"
    webhook_tolerance: int = 300
    max_network_retries: int = 2
    price_ids: Mapping[str, str] = field(default_factory=dict)
    early_bird_price_ids: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class InvoiceConfig:
    """Bank-transfer invoice configuration."""

    number_prefix: str = "AISF26"
    due_days: int = 14
    account_name: str = ""
    bsb: str = ""
    account_number: str = ""
    bank_name: str = ""


@dataclass(frozen=True, slots=True)
class OrganisationConfig:
    """Details of the organisation issuing receipts and tax invoices."""

    name: str = ""
    abn: str = ""
    email: str = ""


@dataclass(frozen=True, slots=True)
class TicketingConfig:
    """Top-level django-ticketing configuration."""

    stripe: StripeConfig = field(default_factory=StripeConfig)
    invoice: InvoiceConfig = field(default_factory=InvoiceConfig)
    organisation: OrganisationConfig = field(default_factory=OrganisationConfig)
    event_name: str = "Event"
    base_url: str = "http://localhost:8000"
    success_path: str = "/register/success"
    cancel_path: str = "/register"
    order_reference_prefix: str = "AISF"
    early_bird_deadline: str = "2026-04-01"
    currency: str = "AUD"
    currency_symbol: str = "$"
    from_email: str | None = None
    registration_gated: bool = False

    @property
    def early_bird_deadline_at(self) -> datetime.datetime:
        """Return the early-bird cutoff as an aware datetime at midnight UTC."""
        day = datetime.date.fromisoformat(self.early_bird_deadline)
        return datetime.datetime.combine(day, datetime.time.min, tzinfo=datetime.UTC)


_SECTIONS = ("stripe", "invoice", "organisation")


@functools.lru_cache(maxsize=1)
def get_config() -> TicketingConfig:
    """Build and return the ticketing configuration.

    Reads ``settings.DJANGO_TICKETING`` (a plain dict) and returns a frozen
    :class:`TicketingConfig`.  The result is cached; the cache is cleared
    automatically when Django's ``setting_changed`` signal fires (e.g. inside
    ``override_settings``).
    """
    raw = getattr(settings, "DJANGO_TICKETING", {})
    if not isinstance(raw, Mapping):
        msg = "DJANGO_TICKETING must be a mapping (dict-like object)"
        raise TypeError(msg)
    raw_data = dict(raw)

    sections: dict[str, dict[str, object]] = {}
    for name in _SECTIONS:
        data = raw_data.pop(name, {})
        if not isinstance(data, Mapping):
            msg = f"DJANGO_TICKETING['{name}'] must be a mapping (dict-like object)"
            raise TypeError(msg)
        sections[name] = dict(data)

    config = TicketingConfig(
        stripe=StripeConfig(**sections["stripe"]),
        invoice=InvoiceConfig(**sections["invoice"]),
        organisation=OrganisationConfig(**sections["organisation"]),
        **raw_data,
    )
    _validate_ticketing_config(config)
    return config


def _validate_ticketing_config(config: TicketingConfig) -> None:
    """Validate high-impact configuration values with clear error messages."""
    if not isinstance(config.currency, str) or not config.currency.strip():
        msg = "DJANGO_TICKETING['currency'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.currency_symbol, str) or not config.currency_symbol.strip():
        msg = "DJANGO_TICKETING['currency_symbol'] must be a non-empty string"
        raise ValueError(msg)
    try:
        datetime.date.fromisoformat(str(config.early_bird_deadline))
    except ValueError as exc:
        msg = "DJANGO_TICKETING['early_bird_deadline'] must be an ISO date (YYYY-MM-DD)"
        raise ValueError(msg) from exc
    if not isinstance(config.invoice.due_days, int) or config.invoice.due_days <= 0:
        msg = "DJANGO_TICKETING['invoice']['due_days'] must be a positive integer"
        raise ValueError(msg)
    if not isinstance(config.invoice.number_prefix, str) or not config.invoice.number_prefix.strip():
        msg = "DJANGO_TICKETING['invoice']['number_prefix'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.stripe.price_ids, Mapping):
        msg = "DJANGO_TICKETING['stripe']['price_ids'] must be a mapping of tier id to Stripe price id"
        raise TypeError(msg)
    if not isinstance(config.stripe.early_bird_price_ids, Mapping):
        msg = "DJANGO_TICKETING['stripe']['early_bird_price_ids'] must be a mapping of tier id to Stripe price id"
        raise TypeError(msg)
    if not isinstance(config.stripe.max_network_retries, int) or config.stripe.max_network_retries < 0:
        msg = "DJANGO_TICKETING['stripe']['max_network_retries'] must be a non-negative integer"
        raise ValueError(msg)


def _clear_config_cache(*, setting: str, **kwargs: object) -> None:  # noqa: ARG001
    """Clear the cached config when Django settings change during tests."""
    if setting == "DJANGO_TICKETING":
        get_config.cache_clear()


setting_changed.connect(_clear_config_cache, dispatch_uid="django_ticketing.settings.clear_config_cache")
