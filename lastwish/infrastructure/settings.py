"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

# .env must be loaded before any value below is read
load_dotenv()

# Environment
ENV = os.getenv("LASTWISH_ENV", "development")

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

# Scheduler trigger secret (Bearer token or X-Cron-Secret header).
# Unset means the trigger endpoints accept unauthenticated calls.
CRON_SECRET = os.getenv("LASTWISH_CRON_SECRET")

# SMTP (outbound mail channel)
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", os.getenv("SMTP_PASS"))
SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL", SMTP_USER)
SMTP_FROM_NAME = os.getenv("SMTP_FROM_NAME", "Last Wish")


def is_development() -> bool:
    """Check if running in development"""
    return ENV == "development"
