"""Last Wish - deliver a user's financial records to trusted recipients after missed check-ins"""

from __future__ import annotations

__version__ = "1.0.0"


# Lazy imports for the delivery module
def __getattr__(name: str):
    """
    Lazy imports to avoid loading the database layer when only importing lightweight modules.
    """
    if name in ("Subscription", "Recipient", "DataCategory"):
        from lastwish.delivery import models

        return getattr(models, name)

    if name == "LastWishService":
        from lastwish.delivery.service import LastWishService

        return LastWishService

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "DataCategory",
    "LastWishService",
    "Recipient",
    "Subscription",
]
