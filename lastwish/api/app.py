"""FastAPI server for the Last Wish delivery service"""

from __future__ import annotations

import sqlite3
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lastwish.api.routes.health import router as health_router
from lastwish.api.routes.last_wish import router as last_wish_router
from lastwish.config import APP_VERSION, is_development
from lastwish.infrastructure.database import init_database
from lastwish.observability.logging import get_logger
from lastwish.observability.telemetry import counter, log_event
from lastwish.utils.redaction import redact

app = FastAPI(title="Last Wish API", version=APP_VERSION)

logger = get_logger(__name__)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Validation error handler that doesn't echo request bodies back.
    """
    logger.warning("Validation error on %s: %s", redact(str(request.url)), exc.errors())
    counter("api.validation_errors")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


# The trigger is called server-to-server; browsers only reach it in development
ALLOWED_ORIGINS: list[str] = []
if is_development():
    ALLOWED_ORIGINS.extend(
        [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
        ]
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Cron-Secret"],
)

# Initialize database schema
try:
    logger.info("Initializing database schema...")
    init_database()
    logger.info("Database initialization complete")
except sqlite3.OperationalError as e:
    logger.critical("Database schema error: %s", e)
    raise RuntimeError(f"Database initialization failed: {e}") from e
except OSError as e:
    logger.critical("Database path unusable: %s", e)
    raise RuntimeError(f"Database initialization failed: {e}") from e

# Include routers
app.include_router(health_router)
app.include_router(last_wish_router)

log_event("api.startup", service="last-wish", version=APP_VERSION)


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "service": "Last Wish API",
        "version": APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "check": "/api/last-wish/check",
            "deliver": "/api/last-wish/deliver",
            "check_in": "/api/last-wish/check-in",
            "status": "/api/last-wish/status/{user_id}",
        },
    }
