"""
Migration runner for versioned schema changes of the state store.

Migration modules live next to this file and are named {version}_{name}.py,
e.g. 001_invitations.py. Each one defines:
- VERSION: int
- NAME: str
- upgrade(conn) -> None
- downgrade(conn) -> None  (optional, may raise NotImplementedError)
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "chat_ledger.state_store.migrations"


@dataclass
class Migration:
    """A single schema migration."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None


def get_all_migrations() -> list[Migration]:
    """Load every migration module, sorted by version."""
    migrations = []

    for py_file in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{MIGRATIONS_PACKAGE}.{py_file.stem}")
        migrations.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        )

    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """
    Applies migrations in order.

    Applied versions are tracked in a `migrations` table.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_applied_versions(self) -> set[int]:
        """Versions already applied."""
        cursor = self.conn.execute("SELECT version FROM migrations")
        return {row[0] for row in cursor.fetchall()}

    def get_current_version(self) -> int:
        """Highest applied version (0 when none)."""
        result = self.conn.execute("SELECT MAX(version) FROM migrations").fetchone()[0]
        return result if result is not None else 0

    def apply_migration(self, migration: Migration) -> None:
        """Apply one migration and record it, or roll back on failure."""
        logger.info(f"Applying migration {migration.version}: {migration.name}")
        try:
            migration.upgrade(self.conn)
            now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, now),
            )
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error(f"Migration {migration.version} failed: {e}")
            raise

    def rollback_migration(self, migration: Migration) -> None:
        """Undo one migration.

        Raises:
            NotImplementedError: If the migration has no downgrade.
        """
        if migration.downgrade is None:
            raise NotImplementedError(
                f"Migration {migration.version} ({migration.name}) does not support rollback"
            )

        logger.info(f"Rolling back migration {migration.version}: {migration.name}")
        try:
            migration.downgrade(self.conn)
            self.conn.execute("DELETE FROM migrations WHERE version = ?", (migration.version,))
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error(f"Migration {migration.version} rollback failed: {e}")
            raise

    def run_pending(self) -> list[int]:
        """Apply all pending migrations and return their versions."""
        applied = self.get_applied_versions()
        pending = [m for m in get_all_migrations() if m.version not in applied]

        for migration in pending:
            self.apply_migration(migration)

        versions = [m.version for m in pending]
        if versions:
            logger.info(f"Applied {len(versions)} migrations: {versions}")
        else:
            logger.debug("No pending migrations")
        return versions
