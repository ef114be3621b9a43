"""Static catalogue of ticket tiers and early-bird pricing.

Prices are GST-inclusive and expressed in cents. Stripe price ids are not
part of the catalogue; they are read from ``DJANGO_TICKETING["stripe"]`` so
test and live accounts can be swapped without code changes.
"""

import datetime
from dataclasses import dataclass

from django.utils import timezone

from django_ticketing.registration.exceptions import InvalidTicketType, ProviderMisconfigured
from django_ticketing.settings import get_config

EARLY_BIRD_SUFFIX = " (Early Bird)"


@dataclass(frozen=True, slots=True)
class TicketTier:
    """A ticket category with a standard and an early-bird price."""

    id: str
    name: str
    description: str
    price: int
    early_bird_price: int


TICKET_TIERS: tuple[TicketTier, ...] = (
    TicketTier(
        id="standard",
        name="Standard (Industry/Professional)",
        description="For industry professionals and corporate attendees",
        price=59500,
        early_bird_price=35700,
    ),
    TicketTier(
        id="academic",
        name="Academic / Non-Profit / Government",
        description="For academics, non-profit organizations, and government employees",
        price=24500,
        early_bird_price=14700,
    ),
    TicketTier(
        id="concession",
        name="Concession",
        description="Students, unwaged, or independent researchers",
        price=7500,
        early_bird_price=4500,
    ),
)


def list_tiers() -> tuple[TicketTier, ...]:
    """Return every ticket tier in display order."""
    return TICKET_TIERS


def get_tier(tier_id: str) -> TicketTier:
    """Return the tier with the given id.

    Raises:
        InvalidTicketType: If no tier has that id.
    """
    for tier in TICKET_TIERS:
        if tier.id == tier_id:
            return tier
    raise InvalidTicketType(tier_id)


def is_early_bird_active(now: datetime.datetime | None = None) -> bool:
    """Return ``True`` when *now* is before the configured early-bird deadline."""
    now = now or timezone.now()
    return now < get_config().early_bird_deadline_at


def tier_price(tier: TicketTier, *, early_bird: bool) -> int:
    """Return the price that applies to *tier* in cents."""
    return tier.early_bird_price if early_bird else tier.price


def tier_label(tier: TicketTier, *, early_bird: bool) -> str:
    """Return the ticket label stored on a registration."""
    return f"{tier.name}{EARLY_BIRD_SUFFIX}" if early_bird else tier.name


def stripe_price_id(tier: TicketTier, *, early_bird: bool) -> str:
    """Return the configured Stripe price id for *tier*.

    Raises:
        ProviderMisconfigured: If no price id is configured for the tier.
    """
    stripe_config = get_config().stripe
    mapping = stripe_config.early_bird_price_ids if early_bird else stripe_config.price_ids
    price_id = mapping.get(tier.id, "")
    if not price_id:
        kind = "early-bird " if early_bird else ""
        msg = f"No Stripe {kind}price id configured for ticket tier '{tier.id}'"
        raise ProviderMisconfigured(msg)
    return price_id
