"""Expiry sweeper: resolves overdue pending confirmations by timeout.

Safe to run concurrently with replies and with other sweeper runs: each
row is resolved through a conditional update, and rows that were resolved
in the meantime are counted as skipped.
"""

import hmac
import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from chat_ledger.config import SweeperConfig
from chat_ledger.exceptions import ChatLedgerError, StoreFailure
from chat_ledger.services.tracker import PendingTracker

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Result of a sweeper run."""

    processed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    cohorts: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def success(self) -> bool:
        """Return True if every selected row was handled."""
        return not self.errors


class ExpirySweeper:
    """Periodic trigger that times out expired pending entries."""

    def __init__(
        self,
        tracker: PendingTracker,
        config: SweeperConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.tracker = tracker
        self.store = tracker.store
        self.config = config or SweeperConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def authorize(self, secret: str | None) -> bool:
        """Check the trigger secret (always True when none is configured)."""
        if not self.config.secret:
            return True
        return hmac.compare_digest((secret or "").encode(), self.config.secret.encode())

    def run(self, secret: str | None = None) -> SweepResult:
        """
        Resolve every pending entry whose expiry is strictly in the past.

        Raises:
            PermissionError: If a secret is configured and does not match
        """
        if not self.authorize(secret):
            logger.warning("Sweeper trigger rejected: invalid secret")
            raise PermissionError("Invalid sweeper secret")

        start = time.time()
        result = SweepResult()
        now = self._clock()
        try:
            expired = self.store.get_expired_pending(now, limit=self.config.batch_size)
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to select expired entries: {e}") from e
        logger.info("Sweeper found %d expired pending entries", len(expired))

        touched: list[str] = []
        for pending in expired:
            try:
                if self.tracker.timeout(pending, recompute=False):
                    result.processed += 1
                    if pending.cohort not in touched:
                        touched.append(pending.cohort)
                else:
                    result.skipped += 1
            except ChatLedgerError as e:
                logger.error("Sweeper failed on pending entry %d: %s", pending.id, e)
                result.errors.append(f"pending {pending.id}: {e}")

        for cohort in touched:
            try:
                self.tracker.recalculator.recompute(cohort)
            except ChatLedgerError as e:
                logger.error("Accuracy recompute failed for cohort %s: %s", cohort, e)
                result.errors.append(f"cohort {cohort}: {e}")

        result.cohorts = touched
        result.duration_ms = int((time.time() - start) * 1000)
        logger.info(
            "Sweeper done: %d processed, %d skipped, %d errors",
            result.processed,
            result.skipped,
            result.failed,
        )
        return result
