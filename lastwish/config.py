"""Centralized configuration for the Last Wish backend.

Re-exports everything from lastwish.infrastructure.settings, then adds typed
constants for the database, the delivery pipeline, and the mail channel.
Environment variable overrides use safe defaults so the service starts
without extra env configuration.
"""

from __future__ import annotations

import os

from lastwish.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "1.0.0"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("LASTWISH_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("LASTWISH_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("LASTWISH_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("LASTWISH_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("LASTWISH_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("LASTWISH_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("LASTWISH_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("LASTWISH_DB_RETRY_JITTER", "0.1"))

# --- Delivery Pipeline ---
PIPELINE_MAX_WORKERS: int = int(os.getenv("LASTWISH_PIPELINE_MAX_WORKERS", "4"))
DISPATCH_MAX_WORKERS: int = int(os.getenv("LASTWISH_DISPATCH_MAX_WORKERS", "3"))
PIPELINE_USER_TIMEOUT_SECONDS: float = float(
    os.getenv("LASTWISH_USER_TIMEOUT_SECONDS", "300")
)
DEFAULT_CHECK_IN_DAYS: int = 30
MAX_RECIPIENTS: int = 3
LEDGER_HISTORY_LIMIT: int = 10

# --- Mail ---
SMTP_TIMEOUT_SECONDS: float = float(os.getenv("SMTP_TIMEOUT_SECONDS", "30"))
DEFAULT_CURRENCY: str = "USD"
