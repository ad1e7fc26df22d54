"""
Redaction helpers for anything that reaches logs or telemetry.

Recipient addresses and owner ids identify real people; log lines carry a
masked form plus a short hash so entries can still be correlated.
"""

from __future__ import annotations

from hashlib import sha256


def redact(value: str | None) -> str:
    """
    Return a stable hash representation of a sensitive string.
    """
    if not value:
        return "hash:missing"
    digest = sha256(value.encode("utf-8")).hexdigest()[:12]
    return f"hash:{digest}"


def mask_email(address: str | None) -> str:
    """
    Mask the local part of an email address, keeping the domain.

    Example:
        "jane.doe@example.com" -> "j***@example.com"
    """
    if not address:
        return "(no address)"
    local, sep, domain = address.partition("@")
    if not sep:
        return redact(address)
    head = local[:1] or "?"
    return f"{head}***@{domain}"
