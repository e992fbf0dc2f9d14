"""Per-cohort confirmation policy.

A cohort starts in manual mode (every prediction needs a human
confirmation) and switches to automatic once its weighted accuracy and
verified volume reach the configured thresholds. Switching back is only
possible when policy.reversible is enabled, and never twice within
policy.cooldown_hours.
"""

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from chat_ledger.config import PolicyConfig
from chat_ledger.exceptions import StoreFailure
from chat_ledger.state_store import PolicyRecord, StateStore, parse_iso

logger = logging.getLogger(__name__)


@dataclass
class PolicyDecision:
    """Outcome of evaluating a cohort's statistics."""

    policy: PolicyRecord
    switched: bool = False


class ConfirmationPolicyService:
    """Reads and updates confirmation policies."""

    def __init__(
        self,
        store: StateStore,
        config: PolicyConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.config = config or PolicyConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, cohort: str) -> PolicyRecord:
        """Get a cohort's policy; unknown cohorts require confirmation."""
        record = self.store.get_policy(cohort)
        if record is None:
            return PolicyRecord(
                cohort=cohort,
                require_confirmation=True,
                auto_enabled=False,
                verified_count=0,
                accuracy=0.0,
                switched_at=None,
                updated_at="",
            )
        return record

    def requires_confirmation(self, cohort: str) -> bool:
        return self.get(cohort).require_confirmation

    def record_outcome(self, cohort: str, verified_count: int, accuracy: float) -> PolicyDecision:
        """
        Store fresh statistics and switch the cohort's mode when warranted.

        Raises:
            StoreFailure: If the policy row cannot be written
        """
        current = self.get(cohort)
        now = self._clock()
        require = current.require_confirmation
        switched = False

        if require and self._meets_thresholds(verified_count, accuracy):
            switched = not self._in_cooldown(current, now)
            if switched:
                require = False
                logger.info(
                    "Cohort %s switched to automatic (accuracy %.2f%%, %d verified)",
                    cohort,
                    accuracy,
                    verified_count,
                )
        elif not require and self.config.reversible and accuracy < self.config.revert_accuracy:
            switched = not self._in_cooldown(current, now)
            if switched:
                require = True
                logger.warning(
                    "Cohort %s reverted to manual confirmation (accuracy %.2f%% < %.2f%%)",
                    cohort,
                    accuracy,
                    self.config.revert_accuracy,
                )

        try:
            policy = self.store.save_policy(
                cohort,
                require_confirmation=require,
                verified_count=verified_count,
                accuracy=accuracy,
                switched_at=now if switched else None,
                now=now,
            )
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to save policy for cohort {cohort}: {e}") from e

        return PolicyDecision(policy=policy, switched=switched)

    def set_mode(self, cohort: str, require_confirmation: bool) -> PolicyRecord:
        """
        Force a cohort's mode (operator override), keeping its statistics.

        Raises:
            ValueError: If the cohort is automatic and the policy is one-way,
                or if the change falls within the cool-down
            StoreFailure: If the policy row cannot be written
        """
        current = self.get(cohort)
        now = self._clock()
        switched = current.require_confirmation != require_confirmation
        if switched and current.auto_enabled and not self.config.reversible:
            raise ValueError(f"Cohort {cohort} is automatic and cannot return to manual confirmation")
        if switched and self._in_cooldown(current, now):
            raise ValueError(
                f"Cohort {cohort} switched less than {self.config.cooldown_hours}h ago"
            )
        logger.info(
            "Cohort %s set to %s by operator",
            cohort,
            "manual" if require_confirmation else "automatic",
        )
        try:
            return self.store.save_policy(
                cohort,
                require_confirmation=require_confirmation,
                verified_count=current.verified_count,
                accuracy=current.accuracy,
                switched_at=now if switched else None,
                now=now,
            )
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to save policy for cohort {cohort}: {e}") from e

    def _meets_thresholds(self, verified_count: int, accuracy: float) -> bool:
        return accuracy >= self.config.min_accuracy and verified_count >= self.config.min_verified

    def _in_cooldown(self, policy: PolicyRecord, now: datetime) -> bool:
        if not policy.switched_at or self.config.cooldown_hours <= 0:
            return False
        elapsed = now - parse_iso(policy.switched_at)
        return elapsed < timedelta(hours=self.config.cooldown_hours)
