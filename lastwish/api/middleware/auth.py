"""Authentication for the scheduler-facing Last Wish endpoints"""

from __future__ import annotations

import secrets

from fastapi import Header, HTTPException, status

from lastwish import config
from lastwish.observability.logging import get_logger

logger = get_logger(__name__)


class CronSecretAuth:
    """
    Shared-secret authentication for the trigger, manual delivery, and status
    endpoints.

    The secret comes from LASTWISH_CRON_SECRET and is accepted either as
    "Authorization: Bearer {secret}" or in the X-Cron-Secret header (what
    hosted cron services send).
    """

    def __init__(self, secret: str | None = None):
        self.secret = secret if secret is not None else config.CRON_SECRET
        if not self.secret:
            # Auth is optional for local development
            logger.warning("LASTWISH_CRON_SECRET not set - Last Wish trigger endpoints are unprotected!")

    def verify(
        self,
        authorization: str | None = Header(None),
        x_cron_secret: str | None = Header(None, alias="X-Cron-Secret"),
    ) -> bool:
        """
        Verify the shared secret from either header.

        Raises:
            HTTPException: 401 when no credential is presented or the
                Authorization header is malformed, 403 when it doesn't match
        """
        if not self.secret:
            return True

        if x_cron_secret:
            token = x_cron_secret
        elif authorization:
            try:
                scheme, token = authorization.split()
                if scheme.lower() != "bearer":
                    raise ValueError("Invalid authentication scheme")
            except ValueError as e:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Invalid authorization header format. Expected: Bearer {secret}",
                    headers={"WWW-Authenticate": "Bearer"},
                ) from e
        else:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing authorization header",
                headers={"WWW-Authenticate": "Bearer"},
            )

        # Timing-safe comparison
        if not secrets.compare_digest(token.encode("utf-8"), self.secret.encode("utf-8")):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid cron secret",
            )

        return True


# Global auth instance
auth = CronSecretAuth()


def require_cron_auth(
    authorization: str | None = Header(None),
    x_cron_secret: str | None = Header(None, alias="X-Cron-Secret"),
) -> bool:
    """
    Dependency for endpoints that require the cron secret.

    Usage:
        @router.post("/check")
        async def check(_authenticated: bool = Depends(require_cron_auth)):
            ...
    """
    return auth.verify(authorization, x_cron_secret)
