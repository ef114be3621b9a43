"""Helpers for reading Stripe payloads and for key obfuscation in logs.

Stripe represents monetary amounts as integers in the smallest currency unit,
which is also how this package stores money, so no conversion is needed on
the way in or out. Object references in webhook payloads may arrive either as
a bare id string or as an expanded object, and :func:`stripe_id` reads both.
"""

from collections.abc import Mapping

_OBFUSCATE_VISIBLE_CHARS = 4


def stripe_id(value: object) -> str:
    """Return the Stripe id from a bare id string or an expanded object.

    Args:
        value: A Stripe reference such as ``"pi_123"`` or ``{"id": "pi_123", ...}``.

    Returns:
        The id string, or ``""`` when *value* is empty or has no id.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        obj_id = value.get("id")
        return obj_id if isinstance(obj_id, str) else ""
    obj_id = getattr(value, "id", None)
    return obj_id if isinstance(obj_id, str) else ""


def metadata_value(obj: Mapping[str, object], key: str) -> str:
    """Return ``obj["metadata"][key]`` as a string, or ``""`` when absent."""
    metadata = obj.get("metadata")
    if not isinstance(metadata, Mapping):
        return ""
    value = metadata.get(key)
    return str(value) if value not in (None, "") else ""


def obfuscate_key(key: str) -> str:
    """Obfuscate an API key so it can be safely written to logs.

    Returns the last four characters of the key prefixed with ``"****"``.  If the key is
    shorter than four characters the entire value is masked and only ``"****"`` is
    returned.

    Args:
        key: The secret key to obfuscate.

    Returns:
        A partially masked string safe for log output.
    """
    if len(key) < _OBFUSCATE_VISIBLE_CHARS:
        return "****"
    return "****" + key[-_OBFUSCATE_VISIBLE_CHARS:]
