"""
Input validation utilities.

Recipient addresses are entered by users in the settings screen and are only
exercised years later, when delivery happens; they are validated on save and
again before every send.
"""

from __future__ import annotations

import re

# Pragmatic address check: one "@", no whitespace, a dotted domain with a
# 2+ letter TLD. Deliverability is left to the SMTP server.
EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+'-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$")

# RFC 5321 path limit
MAX_EMAIL_LENGTH = 254

MAX_MESSAGE_LENGTH = 10_000


class ValidationError(ValueError):
    """Raised when input validation fails."""

    pass


def validate_email_address(address: str | None) -> str:
    """
    Validate and normalize an email address.

    Args:
        address: The address to validate

    Returns:
        The address with surrounding whitespace removed

    Raises:
        ValidationError: If the address is empty or malformed
    """
    if address is None:
        raise ValidationError("Email address is required")

    address = address.strip()

    if not address:
        raise ValidationError("Email address is required")

    if len(address) > MAX_EMAIL_LENGTH:
        raise ValidationError(f"Email address exceeds maximum length of {MAX_EMAIL_LENGTH}")

    if not EMAIL_PATTERN.match(address):
        raise ValidationError(f"Invalid email address: {address!r}")

    if ".." in address:
        raise ValidationError("Invalid email address: consecutive dots not allowed")

    return address


def validate_personal_message(message: str | None) -> str | None:
    """
    Normalize the owner's personal message (blank becomes None).

    Raises:
        ValidationError: If the message exceeds MAX_MESSAGE_LENGTH
    """
    if message is None:
        return None

    if not message.strip():
        return None

    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Personal message exceeds maximum length of {MAX_MESSAGE_LENGTH}")

    return message
