"""
Pending-confirmation tracker.

State machine per prediction:

    Created -> AwaitingConfirmation -> Resolved

Resolution paths:
- confirm: positive reply (reaction feedback, committed)
- edit: corrected fields (edit feedback replaces prior feedback, committed)
- timeout: expiry sweeper only (timeout feedback, committed)
- reject: negative reply (rejection feedback, NOT committed)

Entries sharing a group id (one multi-record message) resolve together.
Each member is resolved in its own store transaction guarded by
`resolved = 0`, so resolving an already resolved entry is a no-op.
After any resolution the cohort's accuracy is recomputed.
"""

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from chat_ledger.config import Config
from chat_ledger.confirmation.intent import IntentKind, parse_confirmation
from chat_ledger.exceptions import NotFoundError, StoreFailure
from chat_ledger.schemas.transaction import FeedbackOrigin, ResolutionMethod
from chat_ledger.services.accuracy import AccuracyRecalculator
from chat_ledger.services.policy import ConfirmationPolicyService
from chat_ledger.state_store import PendingRecord, StateStore

logger = logging.getLogger(__name__)

REPLY_CONFIRMED = "✅ Perfecto. {count} {noun} guardada{plural}."
REPLY_REJECTED = "❌ Entendido. {count} {noun} descartada{plural}."
REPLY_EDITED = "✏️ Listo. Guardé la transacción con tus cambios."
REPLY_ALREADY_RESOLVED = "Esa transacción ya fue procesada."
REPLY_NO_PENDING = "No tienes transacciones pendientes de confirmar."
REPLY_NOT_UNDERSTOOD = (
    "No entendí tu respuesta. Responde ✅ para confirmar"
    "{reject_hint} o espera y se guardará automáticamente."
)


class ResolutionStatus(str, Enum):
    """Outcome of a resolution request."""

    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    EDITED = "edited"
    ALREADY_RESOLVED = "already_resolved"
    NO_PENDING = "no_pending"
    NOT_UNDERSTOOD = "not_understood"


@dataclass
class ResolutionResult:
    """Result of confirm/reject/edit or a handled reply."""

    status: ResolutionStatus
    resolved_ids: list[int] = field(default_factory=list)
    cohort: str | None = None
    accuracy: float | None = None
    verified_count: int | None = None
    auto_enabled: bool = False
    reply: str = ""

    @property
    def resolved_count(self) -> int:
        return len(self.resolved_ids)


def _count_phrase(template: str, count: int) -> str:
    return template.format(
        count=count,
        noun="transacción" if count == 1 else "transacciones",
        plural="" if count == 1 else "s",
    )


class PendingTracker:
    """Resolves pending confirmations and keeps cohort statistics current."""

    def __init__(
        self,
        store: StateStore,
        config: Config,
        recalculator: AccuracyRecalculator | None = None,
        policy: ConfirmationPolicyService | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.config = config
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.policy = policy or ConfirmationPolicyService(store, config.policy, self._clock)
        self.recalculator = recalculator or AccuracyRecalculator(store, self.policy)

    def expires_at(self, created_at: datetime) -> datetime:
        """Expiry instant of a pending entry created at created_at."""
        return created_at + timedelta(minutes=self.config.confirmation.ttl_minutes)

    # === Public resolution paths ===

    def confirm(self, user_id: int, prediction_id: int | None = None) -> ResolutionResult:
        """
        Confirm a prediction (and its unresolved group siblings).

        Args:
            user_id: User replying
            prediction_id: Explicit target; default is the user's most
                recently created unresolved entry

        Raises:
            NotFoundError: No such prediction, or nothing pending
            StoreFailure: A member could not be resolved
        """
        members = self._select_members(user_id, prediction_id)
        if not members:
            return ResolutionResult(
                status=ResolutionStatus.ALREADY_RESOLVED, reply=REPLY_ALREADY_RESOLVED
            )

        resolved = self._resolve_members(
            members,
            method=ResolutionMethod.REACTION,
            origin=FeedbackOrigin.REACTION,
            weight=self.config.feedback.reaction_weight,
        )
        return self._finish(
            ResolutionStatus.CONFIRMED,
            resolved,
            members[0].cohort,
            _count_phrase(REPLY_CONFIRMED, len(resolved)),
        )

    def reject(self, user_id: int, prediction_id: int | None = None) -> ResolutionResult:
        """
        Reject a prediction (and its unresolved group siblings).

        The prediction is kept with method 'rejected'; no transaction is
        committed.

        Raises:
            NotFoundError: No such prediction, or nothing pending
            StoreFailure: A member could not be resolved
        """
        members = self._select_members(user_id, prediction_id)
        if not members:
            return ResolutionResult(
                status=ResolutionStatus.ALREADY_RESOLVED, reply=REPLY_ALREADY_RESOLVED
            )

        resolved = self._resolve_members(
            members,
            method=ResolutionMethod.REJECTED,
            origin=FeedbackOrigin.REJECTION,
            weight=self.config.feedback.rejection_weight,
            correct=False,
            commit=False,
        )
        return self._finish(
            ResolutionStatus.REJECTED,
            resolved,
            members[0].cohort,
            _count_phrase(REPLY_REJECTED, len(resolved)),
        )

    def edit(
        self,
        prediction_id: int,
        cohort: str,
        fields: dict,
        user_id: int | None = None,
    ) -> ResolutionResult:
        """
        Apply corrected fields to a prediction.

        Overwrites content fields (never the original timestamp), replaces
        prior feedback with one edit entry and commits or updates the
        transaction. Unresolved group siblings are confirmed.

        Raises:
            NotFoundError: Unknown prediction, or it belongs to another
                cohort/user
            ValueError: On non-editable fields or invalid values
            StoreFailure: If the edit cannot be written
        """
        prediction = self.store.get_prediction(prediction_id)
        if prediction is None or prediction.cohort != cohort:
            raise NotFoundError(f"Prediction {prediction_id} not found in cohort {cohort}")
        if user_id is not None and prediction.user_id != user_id:
            raise NotFoundError(f"Prediction {prediction_id} not found for user {user_id}")

        updated = prediction.transaction.with_changes(fields)
        now = self._clock()
        try:
            self.store.apply_edit(
                prediction_id,
                updated,
                weight=self.config.feedback.edit_weight,
                now=now,
            )
        except sqlite3.Error as e:
            logger.error("Edit of prediction %d failed: %s", prediction_id, e)
            raise StoreFailure(f"Failed to apply edit to prediction {prediction_id}: {e}") from e

        logger.info("Prediction %d edited (fields: %s)", prediction_id, ", ".join(sorted(fields)))
        resolved = [prediction_id]

        if prediction.group_id:
            siblings = self.store.get_open_pending_in_group(prediction.group_id)
            resolved += self._resolve_members(
                siblings,
                method=ResolutionMethod.REACTION,
                origin=FeedbackOrigin.REACTION,
                weight=self.config.feedback.reaction_weight,
            )

        return self._finish(ResolutionStatus.EDITED, resolved, cohort, REPLY_EDITED)

    def timeout(self, pending: PendingRecord, recompute: bool = True) -> bool:
        """
        Resolve one expired entry with method 'timeout'.

        Only the sweeper calls this. Returns False when the entry was
        already resolved by someone else.

        Raises:
            StoreFailure: If the entry could not be resolved
        """
        try:
            resolved = self.store.resolve_pending(
                pending.id,
                method=ResolutionMethod.TIMEOUT,
                origin=FeedbackOrigin.TIMEOUT,
                weight=self.config.feedback.timeout_weight,
                now=self._clock(),
            )
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to time out pending entry {pending.id}: {e}") from e

        if resolved:
            logger.info("Prediction %d confirmed by timeout", pending.prediction_id)
            if recompute:
                self.recalculator.recompute(pending.cohort)
        return resolved

    def handle_reply(self, user_id: int, text: str | None) -> ResolutionResult:
        """
        Resolve the user's latest pending entry from a chat reply.

        Unclear or empty replies leave pending entries untouched and return
        a clarification message.
        """
        intent = parse_confirmation(text)
        rejection_enabled = self.config.confirmation.rejection_enabled

        try:
            if intent.kind == IntentKind.CONFIRM:
                return self.confirm(user_id)
            if intent.kind == IntentKind.REJECT and rejection_enabled:
                return self.reject(user_id)
        except NotFoundError:
            return ResolutionResult(status=ResolutionStatus.NO_PENDING, reply=REPLY_NO_PENDING)

        reject_hint = " o ❌ para descartar" if rejection_enabled else ""
        return ResolutionResult(
            status=ResolutionStatus.NOT_UNDERSTOOD,
            reply=REPLY_NOT_UNDERSTOOD.format(reject_hint=reject_hint),
        )

    # === Internals ===

    def _select_members(self, user_id: int, prediction_id: int | None) -> list[PendingRecord]:
        """Find the entries to resolve: the target and its open siblings."""
        if prediction_id is not None:
            prediction = self.store.get_prediction(prediction_id)
            if prediction is None or prediction.user_id != user_id:
                raise NotFoundError(f"Prediction {prediction_id} not found for user {user_id}")
            target = self.store.get_open_pending_for_prediction(prediction_id)
            if target is None:
                # Target already resolved; finish any siblings a failed run left open
                if prediction.group_id:
                    return self.store.get_open_pending_in_group(prediction.group_id)
                return []
        else:
            target = self.store.get_latest_open_pending(user_id)
            if target is None:
                raise NotFoundError(f"No pending confirmation for user {user_id}")

        if target.group_id:
            return self.store.get_open_pending_in_group(target.group_id)
        return [target]

    def _resolve_members(
        self,
        members: list[PendingRecord],
        method: ResolutionMethod,
        origin: FeedbackOrigin,
        weight: float,
        correct: bool = True,
        commit: bool = True,
    ) -> list[int]:
        """Resolve each member in its own transaction.

        Returns the prediction ids resolved by this call. On a store error
        the remaining members are still attempted, statistics are brought
        up to date and StoreFailure is raised.
        """
        resolved: list[int] = []
        failures: list[str] = []

        for member in members:
            try:
                ok = self.store.resolve_pending(
                    member.id,
                    method=method,
                    origin=origin,
                    weight=weight,
                    correct=correct,
                    commit=commit,
                    now=self._clock(),
                )
            except sqlite3.Error as e:
                logger.error("Failed to resolve pending entry %d: %s", member.id, e)
                failures.append(f"pending {member.id}: {e}")
                continue

            if ok:
                resolved.append(member.prediction_id)
                logger.info("Prediction %d resolved (%s)", member.prediction_id, method.value)
            else:
                logger.debug("Pending entry %d already resolved", member.id)

        if failures:
            if resolved:
                self.recalculator.recompute(members[0].cohort)
            raise StoreFailure("; ".join(failures))

        return resolved

    def _finish(
        self,
        status: ResolutionStatus,
        resolved: list[int],
        cohort: str,
        reply: str,
    ) -> ResolutionResult:
        if not resolved:
            return ResolutionResult(
                status=ResolutionStatus.ALREADY_RESOLVED,
                cohort=cohort,
                reply=REPLY_ALREADY_RESOLVED,
            )

        accuracy, verified = self.recalculator.recompute(cohort)
        policy = self.policy.get(cohort)
        return ResolutionResult(
            status=status,
            resolved_ids=resolved,
            cohort=cohort,
            accuracy=accuracy,
            verified_count=verified,
            auto_enabled=policy.auto_enabled,
            reply=reply,
        )
