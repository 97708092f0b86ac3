"""
Phone Number Utility
E.164 normalization for outbound dial requests
"""
import re

_NON_DIGITS = re.compile(r"[^\d+]")


def normalize_e164(phone: str, default_country_code: str = "44") -> str:
    """
    Normalize a contact phone number to E.164.

    - already '+'-prefixed: used as-is
    - starts with the default country code digits: prefixed with '+'
    - otherwise: a leading national trunk '0' is stripped and
      '+<default_country_code>' is prefixed

    Spaces, dashes and brackets are removed first.

    Args:
        phone: Raw phone number from the contact record
        default_country_code: Country code digits without '+', e.g. "44"

    Returns:
        E.164 formatted number

    Raises:
        ValueError: If the number is empty after cleanup
    """
    cleaned = _NON_DIGITS.sub("", phone or "")
    if not cleaned or cleaned == "+":
        raise ValueError(f"Invalid phone number: {phone!r}")

    if cleaned.startswith("+"):
        return cleaned

    country_code = default_country_code.lstrip("+")
    if cleaned.startswith(country_code):
        return f"+{cleaned}"

    if cleaned.startswith("0"):
        cleaned = cleaned[1:]
    return f"+{country_code}{cleaned}"
