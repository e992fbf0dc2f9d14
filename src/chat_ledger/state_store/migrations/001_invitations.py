"""
Migration 001: Add invitations table.

Logs invitations sent to unregistered senders so they are rate limited
per phone.
"""

import sqlite3

VERSION = 1
NAME = "invitations"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create invitations table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS invitations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phone TEXT NOT NULL,
            sent_at TEXT NOT NULL
        )
    """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_invitations_phone ON invitations(phone, sent_at)")


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove invitations table."""
    conn.execute("DROP TABLE IF EXISTS invitations")
