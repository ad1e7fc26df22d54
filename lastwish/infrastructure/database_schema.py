"""
Database schema initialization for Last Wish.

Contains the SQL schema and initialization logic, kept apart from database.py
so the pool module stays small.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from lastwish.observability.logging import get_logger

logger = get_logger(__name__)


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Safe to run multiple times - uses CREATE TABLE IF NOT EXISTS.

    Args:
        db_path: Path to the database file

    Side Effects:
    - Creates tables in lastwish.db if they don't exist
    - Creates indexes for the scan and ledger queries
    - Creates the parent directory if needed
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    conn.executescript("""
        -- Account owners (mirrors the auth provider's user profile)
        CREATE TABLE IF NOT EXISTS profiles (
            id TEXT PRIMARY KEY,
            email TEXT,
            full_name TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        -- One delivery subscription per user
        CREATE TABLE IF NOT EXISTS last_wish_settings (
            user_id TEXT PRIMARY KEY,
            is_enabled INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 0,
            check_in_frequency INTEGER NOT NULL DEFAULT 30,
            check_in_unit TEXT NOT NULL DEFAULT 'days',
            last_check_in TEXT,
            recipients TEXT NOT NULL DEFAULT '[]',
            include_data TEXT NOT NULL DEFAULT '[]',
            message TEXT,
            delivery_claimed INTEGER NOT NULL DEFAULT 0,
            delivery_claimed_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_last_wish_settings_scan
        ON last_wish_settings(is_enabled, is_active, delivery_claimed);

        -- Append-only delivery ledger: one row per recipient per attempt
        CREATE TABLE IF NOT EXISTS last_wish_deliveries (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            recipient_email TEXT NOT NULL,
            delivery_status TEXT NOT NULL,
            error_message TEXT,
            message_id TEXT,
            delivery_data TEXT,
            test_mode INTEGER NOT NULL DEFAULT 0,
            sent_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_last_wish_deliveries_user
        ON last_wish_deliveries(user_id, sent_at);

        -- Financial data sources (read-only for this service)
        CREATE TABLE IF NOT EXISTS accounts (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            type TEXT,
            balance REAL NOT NULL DEFAULT 0,
            currency TEXT DEFAULT 'USD',
            institution TEXT,
            is_active INTEGER DEFAULT 1,
            created_at TEXT
        );

        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            account_id TEXT,
            type TEXT,
            amount REAL NOT NULL,
            currency TEXT DEFAULT 'USD',
            category TEXT,
            description TEXT,
            date TEXT
        );

        CREATE TABLE IF NOT EXISTS purchases (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            item_name TEXT NOT NULL,
            category TEXT,
            price REAL NOT NULL,
            currency TEXT DEFAULT 'USD',
            status TEXT,
            purchase_date TEXT
        );

        CREATE TABLE IF NOT EXISTS lend_borrow (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            type TEXT NOT NULL,
            person_name TEXT NOT NULL,
            amount REAL NOT NULL,
            currency TEXT DEFAULT 'USD',
            status TEXT,
            due_date TEXT,
            notes TEXT
        );

        CREATE TABLE IF NOT EXISTS donation_saving_records (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            type TEXT NOT NULL,
            amount REAL NOT NULL,
            currency TEXT DEFAULT 'USD',
            note TEXT,
            created_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id);
        CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id, date);
        CREATE INDEX IF NOT EXISTS idx_purchases_user ON purchases(user_id);
        CREATE INDEX IF NOT EXISTS idx_lend_borrow_user ON lend_borrow(user_id);
        CREATE INDEX IF NOT EXISTS idx_donation_saving_user ON donation_saving_records(user_id);
    """)

    conn.commit()
    conn.close()

    logger.info("Database initialized: %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected schema

    Args:
        conn: Active database connection

    Returns:
        True if valid

    Raises:
        ValueError: If tables or columns are missing
    """
    required_tables = {
        "profiles": ["id", "email", "full_name"],
        "last_wish_settings": [
            "user_id",
            "is_enabled",
            "is_active",
            "check_in_frequency",
            "check_in_unit",
            "last_check_in",
            "recipients",
            "include_data",
            "delivery_claimed",
        ],
        "last_wish_deliveries": ["id", "user_id", "recipient_email", "delivery_status", "sent_at"],
        "accounts": ["id", "user_id", "balance"],
        "transactions": ["id", "user_id", "amount"],
        "purchases": ["id", "user_id", "price"],
        "lend_borrow": ["id", "user_id", "amount"],
        "donation_saving_records": ["id", "user_id", "amount"],
    }

    cursor = conn.cursor()

    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    existing_tables = {row[0] for row in cursor.fetchall()}

    missing_tables = set(required_tables.keys()) - existing_tables
    if missing_tables:
        raise ValueError(f"Database missing tables: {missing_tables}")

    for table, required_cols in required_tables.items():
        # Identifiers can't be bound as parameters; names come from the dict above
        if not table.replace("_", "").isalnum():
            raise ValueError(f"Invalid table name: {table}")

        cursor.execute(f"PRAGMA table_info({table})")
        existing_cols = {row[1] for row in cursor.fetchall()}

        missing_cols = set(required_cols) - existing_cols
        if missing_cols:
            raise ValueError(f"Table '{table}' missing columns: {missing_cols}")

    return True
