"""
Feedback & accuracy recalculation.

Accuracy is always derived from the stored feedback entries of a cohort,
never from running counters, so recomputing after a late correction
converges to the same value:

    accuracy = 100 * sum(weight for correct entries) / sum(weight)

rounded to 2 decimals. verified_count counts entries from an active human
decision (reaction, edit, rejection); timeouts carry their reduced weight
in the accuracy but do not add verified volume.
"""

import logging
import sqlite3

from chat_ledger.exceptions import StoreFailure
from chat_ledger.schemas.transaction import VERIFIED_ORIGINS
from chat_ledger.services.policy import ConfirmationPolicyService
from chat_ledger.state_store import FeedbackRecord, StateStore

logger = logging.getLogger(__name__)


def compute_accuracy(entries: list[FeedbackRecord]) -> tuple[float, int]:
    """Weighted accuracy percentage and verified count; (0.0, 0) when empty."""
    total_weight = 0.0
    correct_weight = 0.0
    verified = 0

    for entry in entries:
        total_weight += entry.weight
        if entry.correct:
            correct_weight += entry.weight
        if entry.origin in VERIFIED_ORIGINS:
            verified += 1

    if total_weight <= 0:
        return 0.0, 0
    return round(correct_weight / total_weight * 100, 2), verified


class AccuracyRecalculator:
    """Recomputes cohort accuracy and feeds it to the confirmation policy."""

    def __init__(self, store: StateStore, policy: ConfirmationPolicyService):
        self.store = store
        self.policy = policy

    def recompute(self, cohort: str) -> tuple[float, int]:
        """
        Recompute a cohort's accuracy, store it and evaluate the policy.

        Returns:
            (accuracy, verified_count)

        Raises:
            StoreFailure: If feedback cannot be read or the policy written
        """
        try:
            entries = self.store.get_feedback_for_cohort(cohort)
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to read feedback for cohort {cohort}: {e}") from e

        accuracy, verified = compute_accuracy(entries)
        logger.debug(
            "Cohort %s: accuracy %.2f%% over %d entries (%d verified)",
            cohort,
            accuracy,
            len(entries),
            verified,
        )

        self.policy.record_outcome(cohort, verified, accuracy)
        return accuracy, verified
