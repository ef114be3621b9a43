"""Authorization context passed explicitly into registration services."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AccessContext:
    """Who is acting and under which registration mode.

    Attributes:
        actor_email: Email of the authenticated user invoking the operation.
        is_admin: Whether the actor is an organiser with full access.
        registration_gated: Whether registration currently requires an
            access code.
    """

    actor_email: str = ""
    is_admin: bool = False
    registration_gated: bool = False

    def owns(self, *emails: str) -> bool:
        """Return ``True`` if the actor's email matches any of *emails*."""
        actor = self.actor_email.strip().lower()
        if not actor:
            return False
        return any(email and email.strip().lower() == actor for email in emails)


ANONYMOUS = AccessContext()
SYSTEM = AccessContext(is_admin=True)
