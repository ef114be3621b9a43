"""Error types raised by the registration services.

Caller mistakes (unknown tiers, rejected coupons, refunds the policy does not
allow) are ``ValidationError`` subclasses so views and forms can treat them
like any other Django validation failure. Payment provider failures are kept
separate because the caller may safely retry the whole operation.
"""

import enum

from django.core.exceptions import ValidationError


class CouponRejection(enum.Enum):
    """Why a coupon code could not be applied."""

    NOT_FOUND = "Invalid coupon code"
    INACTIVE = "This coupon is no longer active"
    NOT_YET_VALID = "This coupon is not yet valid"
    EXPIRED = "This coupon has expired"
    USAGE_LIMIT_REACHED = "This coupon has reached its usage limit"
    EMAIL_NOT_ALLOWED = "This coupon is not valid for your email address"
    TIER_NOT_ALLOWED = "This coupon is not valid for the selected ticket type"
    ACCESS_ONLY = "This code is for early access only and registration is now open"
    NOT_AN_ACCESS_CODE = "This code does not grant early access"
    ACCESS_CODE_REQUIRED = "An access code is required to register"
    LOOKUP_FAILED = "Failed to validate coupon code"


class InvalidTicketType(ValidationError):
    """Raised when an attendee references a ticket tier that does not exist."""

    def __init__(self, tier_id: str) -> None:
        super().__init__(f"Invalid ticket type '{tier_id}'.", code="invalid_ticket_type")
        self.tier_id = tier_id


class CouponRejected(ValidationError):
    """Raised when a coupon fails validation.

    Attributes:
        reason: The :class:`CouponRejection` explaining the failure.
        code_value: The normalised coupon code that was checked.
    """

    def __init__(self, reason: CouponRejection, code_value: str = "") -> None:
        super().__init__(reason.value, code=reason.name.lower())
        self.reason = reason
        self.code_value = code_value


class RefundNotAllowed(ValidationError):
    """Raised when a refund is requested but the refund policy forbids it."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="refund_not_allowed")


class PaymentProviderError(Exception):
    """Raised when the payment provider cannot fulfil a request.

    Any order created before the failure stays ``PENDING`` with no external
    reference attached.
    """


class ProviderMisconfigured(PaymentProviderError):
    """Raised when required provider configuration (keys, price ids) is missing."""
