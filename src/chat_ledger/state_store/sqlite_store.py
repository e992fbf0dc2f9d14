"""
SQLite-based state store implementation.

Tables:
- users: Registered senders (phone -> cohort)
- predictions: Extracted candidate transactions, one row per record
- pending_confirmations: Timed confirmation requests
- feedback_entries: Weighted correctness signals (append-only)
- confirmation_policies: Per-cohort confirmation switch and statistics
- committed_transactions: Final ledger rows, at most one per prediction
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from ..schemas.transaction import (
    CandidateTransaction,
    Direction,
    FeedbackOrigin,
    ResolutionMethod,
)


def utc_iso(dt: datetime | None = None) -> str:
    """Format an instant as a sortable UTC ISO string.

    Microseconds are always included so that stored timestamps compare
    correctly as strings.
    """
    dt = dt or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)


@dataclass
class UserRecord:
    """Record of a registered sender."""

    id: int
    phone: str
    display_name: str | None
    cohort: str
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "UserRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            phone=row["phone"],
            display_name=row["display_name"],
            cohort=row["cohort"],
            created_at=row["created_at"],
        )


@dataclass
class PredictionRecord:
    """Record of one extracted transaction awaiting or past resolution."""

    id: int
    user_id: int
    cohort: str
    transcript: str | None
    transaction: CandidateTransaction
    message_id: str | None
    group_id: str | None
    origin: str
    confirmed: bool
    resolution_method: ResolutionMethod
    original_timestamp: str  # ISO timestamp, immutable
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PredictionRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            cohort=row["cohort"],
            transcript=row["transcript"],
            transaction=CandidateTransaction.from_dict(json.loads(row["fields_json"])),
            message_id=row["message_id"],
            group_id=row["group_id"],
            origin=row["origin"],
            confirmed=bool(row["confirmed"]),
            resolution_method=ResolutionMethod(row["resolution_method"]),
            original_timestamp=row["original_timestamp"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class PendingRecord:
    """Record of a pending confirmation."""

    id: int
    prediction_id: int
    user_id: int
    cohort: str
    message_id: str | None
    group_id: str | None
    expires_at: str
    resolved: bool
    resolved_at: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PendingRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            prediction_id=row["prediction_id"],
            user_id=row["user_id"],
            cohort=row["cohort"],
            message_id=row["message_id"],
            group_id=row["group_id"],
            expires_at=row["expires_at"],
            resolved=bool(row["resolved"]),
            resolved_at=row["resolved_at"],
            created_at=row["created_at"],
        )


@dataclass
class FeedbackRecord:
    """Record of one weighted correctness signal."""

    id: int
    prediction_id: int
    user_id: int
    cohort: str
    correct: bool
    origin: FeedbackOrigin
    weight: float
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "FeedbackRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            prediction_id=row["prediction_id"],
            user_id=row["user_id"],
            cohort=row["cohort"],
            correct=bool(row["correct"]),
            origin=FeedbackOrigin(row["origin"]),
            weight=row["weight"],
            created_at=row["created_at"],
        )


@dataclass
class PolicyRecord:
    """Record of a cohort's confirmation policy."""

    cohort: str
    require_confirmation: bool
    auto_enabled: bool
    verified_count: int
    accuracy: float
    switched_at: str | None
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PolicyRecord":
        """Create from database row."""
        return cls(
            cohort=row["cohort"],
            require_confirmation=bool(row["require_confirmation"]),
            auto_enabled=bool(row["auto_enabled"]),
            verified_count=row["verified_count"],
            accuracy=row["accuracy"],
            switched_at=row["switched_at"] if "switched_at" in row.keys() else None,
            updated_at=row["updated_at"],
        )


@dataclass
class CommittedTransactionRecord:
    """Record of a committed ledger transaction."""

    id: int
    prediction_id: int
    user_id: int
    direction: Direction
    amount: Decimal
    category: str | None
    description: str | None
    payment_method: str | None
    currency: str
    occurred_at: str  # Prediction's original timestamp
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CommittedTransactionRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            prediction_id=row["prediction_id"],
            user_id=row["user_id"],
            direction=Direction(row["direction"]),
            amount=Decimal(row["amount"]),
            category=row["category"],
            description=row["description"],
            payment_method=row["payment_method"],
            currency=row["currency"],
            occurred_at=row["occurred_at"],
            created_at=row["created_at"],
        )


@dataclass
class PredictionDraft:
    """Input for one prediction row (ids already assigned)."""

    user_id: int
    cohort: str
    transaction: CandidateTransaction
    original_timestamp: datetime
    transcript: str | None = None
    message_id: str | None = None
    group_id: str | None = None
    origin: str = "whatsapp"


class StateStore:
    """
    SQLite-based state store for the confirmation pipeline.

    Provides persistent tracking of:
    - Registered users and invitations
    - Predictions and their pending confirmations
    - Feedback entries (source of accuracy statistics)
    - Confirmation policies per cohort
    - Committed transactions

    Every resolution of a pending entry is a single transaction guarded by a
    conditional update, so concurrent resolvers never double-resolve.
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: Path | str,
        run_migrations: bool = True,
        timeout: float = 5.0,
        default_currency: str = "BOB",
    ):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
            timeout: Busy timeout for each connection (seconds)
            default_currency: Currency for committed rows without one
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self.default_currency = default_currency
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            # Schema version tracking
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    phone TEXT NOT NULL UNIQUE,  -- Normalized, without gateway suffix
                    display_name TEXT,
                    cohort TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS predictions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    cohort TEXT NOT NULL,
                    transcript TEXT,
                    fields_json TEXT NOT NULL,
                    message_id TEXT UNIQUE,  -- Dedupe key; ordinal-suffixed when grouped
                    group_id TEXT,
                    origin TEXT NOT NULL,
                    confirmed INTEGER NOT NULL DEFAULT 0,
                    resolution_method TEXT NOT NULL DEFAULT 'none',
                    original_timestamp TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(id)
                )
            """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_predictions_group ON predictions(group_id)")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_confirmations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    prediction_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    cohort TEXT NOT NULL,
                    message_id TEXT,
                    group_id TEXT,
                    expires_at TEXT NOT NULL,
                    resolved INTEGER NOT NULL DEFAULT 0,
                    resolved_at TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (prediction_id) REFERENCES predictions(id)
                )
            """
            )
            # At most one unresolved entry per prediction
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_pending_one_open
                ON pending_confirmations(prediction_id) WHERE resolved = 0
            """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_pending_expiry
                ON pending_confirmations(resolved, expires_at)
            """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_pending_user
                ON pending_confirmations(user_id, resolved, created_at)
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS feedback_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    prediction_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    cohort TEXT NOT NULL,
                    correct INTEGER NOT NULL,
                    origin TEXT NOT NULL,  -- reaction, edit, timeout, rejection
                    weight REAL NOT NULL CHECK (weight > 0),
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (prediction_id) REFERENCES predictions(id)
                )
            """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_feedback_cohort ON feedback_entries(cohort)"
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS confirmation_policies (
                    cohort TEXT PRIMARY KEY,
                    require_confirmation INTEGER NOT NULL DEFAULT 1,
                    auto_enabled INTEGER NOT NULL DEFAULT 0,
                    verified_count INTEGER NOT NULL DEFAULT 0,
                    accuracy REAL NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS committed_transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    prediction_id INTEGER NOT NULL UNIQUE,
                    user_id INTEGER NOT NULL,
                    direction TEXT NOT NULL,
                    amount TEXT NOT NULL,  -- Decimal as string
                    category TEXT,
                    description TEXT,
                    payment_method TEXT,
                    currency TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (prediction_id) REFERENCES predictions(id)
                )
            """
            )

            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # === Users ===

    def register_user(self, phone: str, cohort: str, display_name: str | None = None) -> UserRecord:
        """Insert or update a user keyed by phone."""
        now = utc_iso()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO users (phone, display_name, cohort, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(phone) DO UPDATE SET
                    display_name = COALESCE(excluded.display_name, users.display_name),
                    cohort = excluded.cohort
            """,
                (phone, display_name, cohort, now),
            )
            row = conn.execute("SELECT * FROM users WHERE phone = ?", (phone,)).fetchone()
            return UserRecord.from_row(row)

    def get_user(self, user_id: int) -> UserRecord | None:
        """Get user by id."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return UserRecord.from_row(row) if row else None

    def get_user_by_phone(self, candidates: list[str]) -> UserRecord | None:
        """Get the first user whose phone matches one of the candidate spellings."""
        if not candidates:
            return None
        placeholders = ", ".join("?" for _ in candidates)
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT * FROM users WHERE phone IN ({placeholders}) ORDER BY id LIMIT 1",
                tuple(candidates),
            ).fetchone()
            return UserRecord.from_row(row) if row else None

    # === Invitations ===

    def get_last_invitation(self, phone: str) -> str | None:
        """Get the ISO timestamp of the latest invitation sent to a phone."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT MAX(sent_at) AS sent_at FROM invitations WHERE phone = ?", (phone,)
            ).fetchone()
            return row["sent_at"] if row else None

    def record_invitation(self, phone: str, sent_at: datetime | None = None) -> None:
        """Log an invitation sent to a phone."""
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO invitations (phone, sent_at) VALUES (?, ?)",
                (phone, utc_iso(sent_at)),
            )

    # === Predictions ===

    def insert_predictions(
        self,
        drafts: list[PredictionDraft],
        expires_at: datetime | None = None,
        auto_commit: bool = False,
        now: datetime | None = None,
    ) -> list[PredictionRecord]:
        """
        Insert all predictions of one message in a single transaction.

        Args:
            drafts: Rows to insert, ids already assigned
            expires_at: When set, a pending confirmation is created per row
            auto_commit: Commit each row immediately (method 'auto')
            now: Creation instant

        Raises:
            sqlite3.IntegrityError: If a message id already exists.
                Nothing is written in that case.
        """
        if expires_at is not None and auto_commit:
            raise ValueError("auto_commit rows cannot have a pending confirmation")
        if not drafts:
            return []

        now_iso = utc_iso(now)
        method = ResolutionMethod.AUTO if auto_commit else ResolutionMethod.NONE
        ids: list[int] = []

        with self._transaction() as conn:
            for draft in drafts:
                cursor = conn.execute(
                    """
                    INSERT INTO predictions
                    (user_id, cohort, transcript, fields_json, message_id, group_id, origin,
                     confirmed, resolution_method, original_timestamp, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        draft.user_id,
                        draft.cohort,
                        draft.transcript,
                        json.dumps(draft.transaction.to_dict()),
                        draft.message_id,
                        draft.group_id,
                        draft.origin,
                        1 if auto_commit else 0,
                        method.value,
                        utc_iso(draft.original_timestamp),
                        now_iso,
                        now_iso,
                    ),
                )
                prediction_id = cursor.lastrowid
                ids.append(prediction_id)

                if expires_at is not None:
                    conn.execute(
                        """
                        INSERT INTO pending_confirmations
                        (prediction_id, user_id, cohort, message_id, group_id, expires_at, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                        (
                            prediction_id,
                            draft.user_id,
                            draft.cohort,
                            draft.message_id,
                            draft.group_id,
                            utc_iso(expires_at),
                            now_iso,
                        ),
                    )

                if auto_commit:
                    self._commit_transaction_row(conn, prediction_id, now_iso)

            placeholders = ", ".join("?" for _ in ids)
            rows = conn.execute(
                f"SELECT * FROM predictions WHERE id IN ({placeholders}) ORDER BY id",
                tuple(ids),
            ).fetchall()
            return [PredictionRecord.from_row(row) for row in rows]

    def get_prediction(self, prediction_id: int) -> PredictionRecord | None:
        """Get prediction by id."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM predictions WHERE id = ?", (prediction_id,)
            ).fetchone()
            return PredictionRecord.from_row(row) if row else None

    def get_predictions_by_message(self, message_id: str) -> list[PredictionRecord]:
        """Get predictions stored for a gateway message id (single or grouped)."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM predictions
                WHERE message_id = ? OR group_id = ?
                ORDER BY id
            """,
                (message_id, message_id),
            ).fetchall()
            return [PredictionRecord.from_row(row) for row in rows]

    def update_prediction_fields(
        self, prediction_id: int, transaction: CandidateTransaction, now: datetime | None = None
    ) -> bool:
        """Overwrite content fields only. The original timestamp is never written."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE predictions SET fields_json = ?, updated_at = ? WHERE id = ?",
                (json.dumps(transaction.to_dict()), utc_iso(now), prediction_id),
            )
            return cursor.rowcount > 0

    # === Pending confirmations ===

    def get_pending(self, pending_id: int) -> PendingRecord | None:
        """Get pending confirmation by id."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM pending_confirmations WHERE id = ?", (pending_id,)
            ).fetchone()
            return PendingRecord.from_row(row) if row else None

    def get_open_pending_for_prediction(self, prediction_id: int) -> PendingRecord | None:
        """Get the unresolved pending entry of a prediction, if any."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM pending_confirmations WHERE prediction_id = ? AND resolved = 0",
                (prediction_id,),
            ).fetchone()
            return PendingRecord.from_row(row) if row else None

    def get_latest_open_pending(self, user_id: int) -> PendingRecord | None:
        """Get the most recently created unresolved entry of a user."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM pending_confirmations
                WHERE user_id = ? AND resolved = 0
                ORDER BY created_at DESC, id DESC
                LIMIT 1
            """,
                (user_id,),
            ).fetchone()
            return PendingRecord.from_row(row) if row else None

    def get_open_pending_in_group(self, group_id: str) -> list[PendingRecord]:
        """Get unresolved entries sharing a group id."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM pending_confirmations
                WHERE group_id = ? AND resolved = 0
                ORDER BY id
            """,
                (group_id,),
            ).fetchall()
            return [PendingRecord.from_row(row) for row in rows]

    def get_expired_pending(self, now: datetime, limit: int = 500) -> list[PendingRecord]:
        """Get unresolved entries whose expiry is strictly before now."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM pending_confirmations
                WHERE resolved = 0 AND expires_at < ?
                ORDER BY expires_at, id
                LIMIT ?
            """,
                (utc_iso(now), limit),
            ).fetchall()
            return [PendingRecord.from_row(row) for row in rows]

    def count_open_pending(self, user_id: int | None = None) -> int:
        """Count unresolved entries, optionally for one user."""
        with self._transaction() as conn:
            if user_id is None:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM pending_confirmations WHERE resolved = 0"
                ).fetchone()
            else:
                row = conn.execute(
                    """
                    SELECT COUNT(*) AS count FROM pending_confirmations
                    WHERE resolved = 0 AND user_id = ?
                """,
                    (user_id,),
                ).fetchone()
            return row["count"] if row else 0

    # === Resolution ===

    def resolve_pending(
        self,
        pending_id: int,
        method: ResolutionMethod,
        origin: FeedbackOrigin,
        weight: float,
        correct: bool = True,
        commit: bool = True,
        now: datetime | None = None,
    ) -> bool:
        """
        Resolve one pending entry atomically.

        Marks the entry resolved, updates the prediction, appends a feedback
        entry and (when commit is set) materializes the committed transaction.

        Returns:
            False if the entry was already resolved (nothing written).
        """
        now_iso = utc_iso(now)
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE pending_confirmations
                SET resolved = 1, resolved_at = ?
                WHERE id = ? AND resolved = 0
            """,
                (now_iso, pending_id),
            )
            if cursor.rowcount == 0:
                return False

            pending = conn.execute(
                "SELECT * FROM pending_confirmations WHERE id = ?", (pending_id,)
            ).fetchone()
            prediction_id = pending["prediction_id"]

            conn.execute(
                """
                UPDATE predictions
                SET confirmed = ?, resolution_method = ?, updated_at = ?
                WHERE id = ?
            """,
                (1 if commit else 0, method.value, now_iso, prediction_id),
            )
            self._insert_feedback(
                conn,
                prediction_id=prediction_id,
                user_id=pending["user_id"],
                cohort=pending["cohort"],
                correct=correct,
                origin=origin,
                weight=weight,
                now_iso=now_iso,
            )
            if commit:
                self._commit_transaction_row(conn, prediction_id, now_iso)
            return True

    def apply_edit(
        self,
        prediction_id: int,
        transaction: CandidateTransaction,
        weight: float,
        now: datetime | None = None,
    ) -> bool:
        """
        Apply a user edit atomically.

        Overwrites content fields, replaces all prior feedback of the
        prediction with one edit entry, upserts the committed transaction and
        resolves the prediction's open pending entry if there is one.

        Returns:
            True if an open pending entry was resolved by this edit.
        """
        now_iso = utc_iso(now)
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE predictions
                SET fields_json = ?, confirmed = 1, resolution_method = ?, updated_at = ?
                WHERE id = ?
            """,
                (
                    json.dumps(transaction.to_dict()),
                    ResolutionMethod.EDIT.value,
                    now_iso,
                    prediction_id,
                ),
            )
            prediction = conn.execute(
                "SELECT * FROM predictions WHERE id = ?", (prediction_id,)
            ).fetchone()

            conn.execute("DELETE FROM feedback_entries WHERE prediction_id = ?", (prediction_id,))
            self._insert_feedback(
                conn,
                prediction_id=prediction_id,
                user_id=prediction["user_id"],
                cohort=prediction["cohort"],
                correct=True,
                origin=FeedbackOrigin.EDIT,
                weight=weight,
                now_iso=now_iso,
            )
            self._commit_transaction_row(conn, prediction_id, now_iso, overwrite=True)

            cursor = conn.execute(
                """
                UPDATE pending_confirmations
                SET resolved = 1, resolved_at = ?
                WHERE prediction_id = ? AND resolved = 0
            """,
                (now_iso, prediction_id),
            )
            return cursor.rowcount > 0

    def _insert_feedback(
        self,
        conn: sqlite3.Connection,
        prediction_id: int,
        user_id: int,
        cohort: str,
        correct: bool,
        origin: FeedbackOrigin,
        weight: float,
        now_iso: str,
    ) -> None:
        conn.execute(
            """
            INSERT INTO feedback_entries
            (prediction_id, user_id, cohort, correct, origin, weight, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
            (prediction_id, user_id, cohort, 1 if correct else 0, origin.value, weight, now_iso),
        )

    def _commit_transaction_row(
        self,
        conn: sqlite3.Connection,
        prediction_id: int,
        now_iso: str,
        overwrite: bool = False,
    ) -> None:
        """Materialize the committed transaction of a prediction.

        occurred_at always comes from the prediction's original timestamp.
        Without overwrite an existing row is left as is.
        """
        row = conn.execute("SELECT * FROM predictions WHERE id = ?", (prediction_id,)).fetchone()
        txn = CandidateTransaction.from_dict(json.loads(row["fields_json"]))
        conflict = (
            """
            DO UPDATE SET
                direction = excluded.direction,
                amount = excluded.amount,
                category = excluded.category,
                description = excluded.description,
                payment_method = excluded.payment_method,
                currency = excluded.currency
            """
            if overwrite
            else "DO NOTHING"
        )
        conn.execute(
            f"""
            INSERT INTO committed_transactions
            (prediction_id, user_id, direction, amount, category, description,
             payment_method, currency, occurred_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(prediction_id) {conflict}
        """,
            (
                prediction_id,
                row["user_id"],
                txn.direction.value,
                str(txn.amount),
                txn.category,
                txn.description,
                txn.payment_method,
                txn.currency or self.default_currency,
                row["original_timestamp"],
                now_iso,
            ),
        )

    # === Feedback ===

    def get_feedback_for_cohort(self, cohort: str) -> list[FeedbackRecord]:
        """Get all feedback entries of a cohort."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM feedback_entries WHERE cohort = ? ORDER BY id", (cohort,)
            ).fetchall()
            return [FeedbackRecord.from_row(row) for row in rows]

    def get_feedback_for_prediction(self, prediction_id: int) -> list[FeedbackRecord]:
        """Get feedback entries of one prediction."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM feedback_entries WHERE prediction_id = ? ORDER BY id",
                (prediction_id,),
            ).fetchall()
            return [FeedbackRecord.from_row(row) for row in rows]

    # === Confirmation policies ===

    def get_policy(self, cohort: str) -> PolicyRecord | None:
        """Get the policy row of a cohort (None if never written)."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM confirmation_policies WHERE cohort = ?", (cohort,)
            ).fetchone()
            return PolicyRecord.from_row(row) if row else None

    def list_policies(self) -> list[PolicyRecord]:
        """Get all policy rows."""
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM confirmation_policies ORDER BY cohort").fetchall()
            return [PolicyRecord.from_row(row) for row in rows]

    def save_policy(
        self,
        cohort: str,
        require_confirmation: bool,
        verified_count: int,
        accuracy: float,
        switched_at: datetime | None = None,
        now: datetime | None = None,
    ) -> PolicyRecord:
        """
        Insert or update a cohort's policy.

        auto_enabled is always written as the negation of
        require_confirmation. switched_at is only overwritten when given.
        """
        now_iso = utc_iso(now)
        switched_iso = utc_iso(switched_at) if switched_at else None
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO confirmation_policies
                (cohort, require_confirmation, auto_enabled, verified_count, accuracy,
                 switched_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(cohort) DO UPDATE SET
                    require_confirmation = excluded.require_confirmation,
                    auto_enabled = excluded.auto_enabled,
                    verified_count = excluded.verified_count,
                    accuracy = excluded.accuracy,
                    switched_at = COALESCE(excluded.switched_at, confirmation_policies.switched_at),
                    updated_at = excluded.updated_at
            """,
                (
                    cohort,
                    1 if require_confirmation else 0,
                    0 if require_confirmation else 1,
                    verified_count,
                    accuracy,
                    switched_iso,
                    now_iso,
                ),
            )
            row = conn.execute(
                "SELECT * FROM confirmation_policies WHERE cohort = ?", (cohort,)
            ).fetchone()
            return PolicyRecord.from_row(row)

    # === Committed transactions ===

    def get_committed_transaction(self, prediction_id: int) -> CommittedTransactionRecord | None:
        """Get the committed transaction of a prediction."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM committed_transactions WHERE prediction_id = ?", (prediction_id,)
            ).fetchone()
            return CommittedTransactionRecord.from_row(row) if row else None

    def list_committed_transactions(
        self, user_id: int | None = None
    ) -> list[CommittedTransactionRecord]:
        """Get committed transactions, optionally for one user."""
        with self._transaction() as conn:
            if user_id is None:
                rows = conn.execute("SELECT * FROM committed_transactions ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM committed_transactions WHERE user_id = ? ORDER BY id",
                    (user_id,),
                ).fetchall()
            return [CommittedTransactionRecord.from_row(row) for row in rows]

    # === Statistics ===

    def get_stats(self) -> dict[str, Any]:
        """Get pipeline statistics."""
        with self._transaction() as conn:
            users = conn.execute("SELECT COUNT(*) as count FROM users").fetchone()
            predictions = conn.execute("SELECT COUNT(*) as count FROM predictions").fetchone()
            pending = conn.execute(
                "SELECT COUNT(*) as count FROM pending_confirmations WHERE resolved = 0"
            ).fetchone()
            feedback = conn.execute("SELECT COUNT(*) as count FROM feedback_entries").fetchone()
            committed = conn.execute(
                "SELECT COUNT(*) as count FROM committed_transactions"
            ).fetchone()
            by_method = conn.execute(
                """
                SELECT resolution_method, COUNT(*) as count
                FROM predictions GROUP BY resolution_method
            """
            ).fetchall()

            return {
                "users": users["count"] if users else 0,
                "predictions_total": predictions["count"] if predictions else 0,
                "pending_open": pending["count"] if pending else 0,
                "feedback_entries": feedback["count"] if feedback else 0,
                "transactions_committed": committed["count"] if committed else 0,
                "by_resolution": {row["resolution_method"]: row["count"] for row in by_method},
            }
