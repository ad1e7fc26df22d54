"""Exceptions raised by the Last Wish delivery pipeline."""

from __future__ import annotations


class LastWishError(Exception):
    """Base exception for Last Wish errors."""

    pass


class ScanError(LastWishError):
    """Subscription store unreachable during the overdue scan. Fails the run."""

    pass


class ClaimUnavailableError(LastWishError):
    """Claim could not be attempted (store unreachable or persistently locked)."""

    pass


class ClaimConflictError(LastWishError):
    """Subscription was already claimed by another delivery."""

    pass


class MailSendError(LastWishError):
    """Mail channel rejected or failed to send one message."""

    def __init__(self, message: str, recipient: str | None = None):
        super().__init__(message)
        self.recipient = recipient


class SubscriptionNotFoundError(LastWishError):
    """No Last Wish settings exist for the user."""

    pass


class NoRecipientsError(LastWishError):
    """Subscription has no recipients to deliver to."""

    pass
