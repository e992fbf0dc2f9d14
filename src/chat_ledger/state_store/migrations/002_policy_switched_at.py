"""
Migration 002: Add switched_at to confirmation_policies.

Records the instant of the last automatic/manual switch of a cohort,
used to enforce the cool-down between switches.
"""

import sqlite3

VERSION = 2
NAME = "policy_switched_at"


def upgrade(conn: sqlite3.Connection) -> None:
    """Add switched_at column."""
    cursor = conn.execute("PRAGMA table_info(confirmation_policies)")
    columns = {row[1] for row in cursor.fetchall()}

    if "switched_at" not in columns:
        conn.execute("ALTER TABLE confirmation_policies ADD COLUMN switched_at TEXT")


def downgrade(conn: sqlite3.Connection) -> None:
    """SQLite cannot drop columns on older versions; leave the column in place."""
    raise NotImplementedError("switched_at cannot be removed")
