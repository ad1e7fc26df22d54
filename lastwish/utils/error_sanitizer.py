"""
Error message sanitization utility.

Keeps database internals, file paths, and secrets out of HTTP error bodies.
The full error is always logged server-side.
"""

from __future__ import annotations

import re

from lastwish.observability.logging import get_logger

logger = get_logger(__name__)

# Patterns that might leak sensitive information
SENSITIVE_PATTERNS = [
    # File paths
    r"/[^\s]+\.(py|db)",
    r"[A-Za-z]:\\[^\s]+",
    # Stack trace indicators
    r"Traceback \(most recent call last\)",
    r"File \".*\"",
    r"line \d+",
    # Database errors
    r"sqlite3?\.",
    r"database is locked",
    r"no such table",
    r"no such column",
    # SMTP server responses
    r"\bsmtp",
    r"\b[45]\d\d\b",
    # Secrets
    r"Bearer [A-Za-z0-9._-]+",
    r"[A-Za-z0-9_-]{32,}",
    # Internal module names
    r"lastwish\.[a-z_.]+",
]

GENERIC_MESSAGES = {
    400: "Invalid request. Please check your input and try again.",
    401: "Authentication required.",
    403: "Access denied.",
    404: "Resource not found.",
    409: "Request conflicts with the current state.",
    422: "Invalid data format.",
    500: "An internal error occurred. Please try again later.",
    502: "Mail delivery failed.",
    503: "Service temporarily unavailable.",
}


def sanitize_error_message(
    message: str,
    status_code: int = 500,
    allow_detail: bool | None = None,
) -> str:
    """
    Sanitize an error message before returning it to a client.

    Short, plain messages survive when allow_detail is set (default: only for
    4xx); anything matching a sensitive pattern falls back to the generic
    message for status_code.
    """
    if allow_detail is None:
        allow_detail = 400 <= status_code < 500

    if not message:
        return GENERIC_MESSAGES.get(status_code, "An error occurred.")

    for pattern in SENSITIVE_PATTERNS:
        if re.search(pattern, message, re.IGNORECASE):
            logger.warning("Sanitized sensitive error pattern: %s", pattern)
            return GENERIC_MESSAGES.get(status_code, "An error occurred.")

    if (
        allow_detail
        and len(message) < 120
        and not any(c in message for c in ["{", "}", "[", "]", "\n"])
    ):
        return message

    return GENERIC_MESSAGES.get(status_code, "An error occurred.")
