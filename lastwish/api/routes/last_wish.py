"""
Last Wish API endpoints.

Provides endpoints for:
- The scheduler trigger (overdue scan + delivery)
- Manual / test delivery for one user
- Owner check-ins
- Per-user delivery status
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from lastwish.api.middleware.auth import require_cron_auth
from lastwish.delivery.errors import (
    ClaimConflictError,
    ClaimUnavailableError,
    NoRecipientsError,
    ScanError,
    SubscriptionNotFoundError,
)
from lastwish.delivery.service import get_last_wish_service
from lastwish.observability.logging import get_logger
from lastwish.observability.telemetry import counter
from lastwish.utils.error_sanitizer import sanitize_error_message
from lastwish.utils.redaction import redact

router = APIRouter(prefix="/api/last-wish", tags=["last-wish"])
logger = get_logger(__name__)


# ============================================================================
# Request Models
# ============================================================================


class DeliverRequest(BaseModel):
    """Manual delivery request."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    test_mode: bool = Field(default=False, alias="testMode")


class CheckInRequest(BaseModel):
    """Owner check-in."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


# ============================================================================
# Scheduler Trigger
# ============================================================================


@router.api_route("/check", methods=["GET", "POST"], response_model=None)
def run_check(_authenticated: bool = Depends(require_cron_auth)) -> dict[str, Any] | JSONResponse:
    """
    Scheduler trigger: find overdue subscriptions and deliver them.

    Overlapping invocations are safe; each subscription is delivered by at
    most one of them.
    """
    try:
        summary = get_last_wish_service().run_scheduled()
    except ScanError as e:
        logger.error("Last Wish check failed: %s", e)
        counter("api.last_wish.check.failed")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": sanitize_error_message(str(e), 500),
                "timestamp": _timestamp(),
            },
        )
    except Exception as e:
        logger.exception("Unexpected error in Last Wish check: %s", e)
        counter("api.last_wish.check.failed")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": sanitize_error_message(str(e), 500),
                "timestamp": _timestamp(),
            },
        )

    return summary.to_response()


# ============================================================================
# Manual Delivery
# ============================================================================


@router.post("/deliver")
def deliver(
    request: DeliverRequest,
    _authenticated: bool = Depends(require_cron_auth),
) -> dict[str, Any]:
    """
    Deliver one user's Last Wish now, skipping the overdue check.

    testMode sends marked test digests and leaves the claim untouched.
    """
    try:
        outcomes = get_last_wish_service().deliver_now(request.user_id, test_mode=request.test_mode)
    except SubscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Last Wish settings not found") from None
    except NoRecipientsError:
        raise HTTPException(status_code=400, detail="No recipients configured") from None
    except ClaimConflictError:
        raise HTTPException(
            status_code=409,
            detail="Delivery already claimed or Last Wish is not active",
        ) from None
    except ClaimUnavailableError:
        raise HTTPException(status_code=503, detail=sanitize_error_message("", 503)) from None
    except Exception as e:
        logger.error("Manual delivery failed for user %s: %s", redact(request.user_id), e)
        raise HTTPException(status_code=500, detail=sanitize_error_message(str(e), 500)) from None

    successful = sum(1 for o in outcomes if o.success)
    failed = len(outcomes) - successful

    return {
        "success": successful > 0,
        "message": f"Delivered to {successful} of {len(outcomes)} recipient(s)",
        "testMode": request.test_mode,
        "results": [
            {
                "recipientEmail": o.recipient_email,
                "recipientName": o.recipient_name,
                "success": o.success,
                "messageId": o.message_id,
                "error": (
                    sanitize_error_message(o.error, 502, allow_detail=True) if o.error else None
                ),
            }
            for o in outcomes
        ],
        "successful": successful,
        "failed": failed,
        "deliveredAt": _timestamp(),
    }


# ============================================================================
# Check-in / Status
# ============================================================================


@router.post("/check-in")
def check_in(
    request: CheckInRequest,
    _authenticated: bool = Depends(require_cron_auth),
) -> dict[str, Any]:
    """Record an owner check-in; re-arms delivery if it was already claimed."""
    try:
        subscription = get_last_wish_service().check_in(request.user_id)
    except SubscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Last Wish settings not found") from None

    deadline = subscription.deadline
    return {
        "success": True,
        "lastCheckIn": subscription.last_check_in.isoformat() if subscription.last_check_in else None,
        "nextDeadline": deadline.isoformat() if deadline else None,
    }


@router.get("/status/{user_id}")
def get_status(
    user_id: str,
    _authenticated: bool = Depends(require_cron_auth),
) -> dict[str, Any]:
    """Diagnostic view: settings summary, deadline, recent deliveries, SMTP readiness."""
    try:
        return get_last_wish_service().status(user_id)
    except SubscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Last Wish settings not found") from None
