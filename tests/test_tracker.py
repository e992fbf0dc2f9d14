"""Tests for the pending-confirmation tracker."""

import sqlite3
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from conftest import T0, txn

from chat_ledger.config import Config, ConfirmationConfig
from chat_ledger.exceptions import NotFoundError, StoreFailure
from chat_ledger.schemas.transaction import FeedbackOrigin, ResolutionMethod
from chat_ledger.services import PendingTracker, PredictionStore, ResolutionStatus
from chat_ledger.state_store import utc_iso


def _pending(store, tracker, user, *amounts, message_id="m1", now=T0):
    """Store predictions awaiting confirmation and return them."""
    outcome = PredictionStore(store).insert_many(
        user.id,
        user.cohort,
        [txn(a) for a in amounts],
        original_timestamp=now,
        message_id=message_id,
        expires_at=tracker.expires_at(now),
        now=now,
    )
    return outcome.predictions


class TestConfirm:
    def test_confirm_latest(self, store, tracker, user):
        prediction = _pending(store, tracker, user, "20")[0]

        result = tracker.confirm(user.id)

        assert result.status == ResolutionStatus.CONFIRMED
        assert result.resolved_ids == [prediction.id]
        assert result.accuracy == 100.0
        assert result.verified_count == 1
        assert result.auto_enabled is False
        assert result.reply == "✅ Perfecto. 1 transacción guardada."

        stored = store.get_prediction(prediction.id)
        assert stored.confirmed is True
        assert stored.resolution_method == ResolutionMethod.REACTION
        assert store.get_committed_transaction(prediction.id).occurred_at == utc_iso(T0)

    def test_confirm_targets_most_recent(self, store, tracker, user, clock):
        older = _pending(store, tracker, user, "20", message_id="a")[0]
        clock.advance(minutes=3)
        newer = _pending(store, tracker, user, "5", message_id="b", now=clock())[0]

        result = tracker.confirm(user.id)

        assert result.resolved_ids == [newer.id]
        assert store.get_open_pending_for_prediction(older.id) is not None

    def test_confirm_group(self, store, tracker, user):
        predictions = _pending(store, tracker, user, "20", "5")

        result = tracker.confirm(user.id)

        assert result.resolved_ids == [p.id for p in predictions]
        assert result.reply == "✅ Perfecto. 2 transacciones guardadas."
        assert store.count_open_pending(user.id) == 0
        assert len(store.list_committed_transactions(user.id)) == 2

    def test_confirm_explicit_member_resolves_group(self, store, tracker, user):
        predictions = _pending(store, tracker, user, "20", "5")

        result = tracker.confirm(user.id, prediction_id=predictions[1].id)
        assert result.resolved_count == 2

    def test_already_resolved_is_noop(self, store, tracker, user):
        prediction = _pending(store, tracker, user, "20")[0]
        tracker.confirm(user.id)

        result = tracker.confirm(user.id, prediction_id=prediction.id)

        assert result.status == ResolutionStatus.ALREADY_RESOLVED
        assert result.resolved_ids == []
        assert len(store.get_feedback_for_prediction(prediction.id)) == 1

    def test_nothing_pending(self, tracker, user):
        with pytest.raises(NotFoundError):
            tracker.confirm(user.id)

    def test_unknown_prediction(self, tracker, user):
        with pytest.raises(NotFoundError):
            tracker.confirm(user.id, prediction_id=404)

    def test_other_users_prediction(self, store, tracker, user):
        prediction = _pending(store, tracker, user, "20")[0]
        other = store.register_user("59170000000", "BOL")

        with pytest.raises(NotFoundError):
            tracker.confirm(other.id, prediction_id=prediction.id)
        assert store.get_open_pending_for_prediction(prediction.id) is not None


class TestReject:
    def test_reject_keeps_prediction_without_commit(self, store, tracker, user):
        prediction = _pending(store, tracker, user, "20")[0]

        result = tracker.reject(user.id)

        assert result.status == ResolutionStatus.REJECTED
        assert result.accuracy == 0.0
        assert result.verified_count == 1
        stored = store.get_prediction(prediction.id)
        assert stored.resolution_method == ResolutionMethod.REJECTED
        assert stored.confirmed is False
        assert store.get_committed_transaction(prediction.id) is None


class TestEdit:
    def test_edit_after_confirm(self, store, tracker, user, clock):
        prediction = _pending(store, tracker, user, "20")[0]
        tracker.confirm(user.id)
        clock.advance(days=2)

        result = tracker.edit(prediction.id, "BOL", {"amount": "25", "category": "salud"})

        assert result.status == ResolutionStatus.EDITED
        stored = store.get_prediction(prediction.id)
        assert stored.transaction.amount == Decimal("25")
        assert stored.original_timestamp == utc_iso(T0)
        assert stored.resolution_method == ResolutionMethod.EDIT

        feedback = store.get_feedback_for_prediction(prediction.id)
        assert [(f.origin, f.weight, f.correct) for f in feedback] == [
            (FeedbackOrigin.EDIT, 2.0, True)
        ]

        committed = store.list_committed_transactions(user.id)
        assert len(committed) == 1
        assert committed[0].amount == Decimal("25")
        assert committed[0].occurred_at == utc_iso(T0)

    def test_edit_pending_member_confirms_siblings(self, store, tracker, user):
        first, second = _pending(store, tracker, user, "20", "5")

        result = tracker.edit(first.id, "BOL", {"amount": "22"})

        assert sorted(result.resolved_ids) == sorted([first.id, second.id])
        assert store.count_open_pending(user.id) == 0
        assert store.get_prediction(second.id).resolution_method == ResolutionMethod.REACTION

    def test_edit_wrong_cohort(self, store, tracker, user):
        prediction = _pending(store, tracker, user, "20")[0]
        with pytest.raises(NotFoundError):
            tracker.edit(prediction.id, "PER", {"amount": "25"})

    def test_edit_wrong_user(self, store, tracker, user):
        prediction = _pending(store, tracker, user, "20")[0]
        with pytest.raises(NotFoundError):
            tracker.edit(prediction.id, "BOL", {"amount": "25"}, user_id=user.id + 1)

    def test_edit_rejects_timestamp_change(self, store, tracker, user):
        prediction = _pending(store, tracker, user, "20")[0]
        with pytest.raises(ValueError):
            tracker.edit(prediction.id, "BOL", {"original_timestamp": "2030-01-01"})
        assert store.get_open_pending_for_prediction(prediction.id) is not None

    def test_signal_weights_are_ordered(self, store, tracker, user, clock):
        edited = _pending(store, tracker, user, "1", message_id="e")[0]
        tracker.edit(edited.id, "BOL", {"amount": "2"})
        reacted = _pending(store, tracker, user, "1", message_id="r")[0]
        tracker.confirm(user.id)
        expired = _pending(store, tracker, user, "1", message_id="t")[0]
        tracker.timeout(store.get_open_pending_for_prediction(expired.id))

        weight = {
            p.id: store.get_feedback_for_prediction(p.id)[0].weight
            for p in (edited, reacted, expired)
        }
        assert weight[edited.id] > weight[reacted.id] > weight[expired.id]


class TestTimeout:
    def test_timeout_commits_with_reduced_weight(self, store, tracker, user):
        prediction = _pending(store, tracker, user, "20")[0]
        pending = store.get_open_pending_for_prediction(prediction.id)

        assert tracker.timeout(pending) is True
        assert tracker.timeout(pending) is False

        feedback = store.get_feedback_for_prediction(prediction.id)
        assert [(f.origin, f.weight) for f in feedback] == [(FeedbackOrigin.TIMEOUT, 0.5)]
        assert store.get_prediction(prediction.id).resolution_method == ResolutionMethod.TIMEOUT
        assert store.get_committed_transaction(prediction.id) is not None
        assert store.get_policy("BOL").verified_count == 0


class TestHandleReply:
    def test_positive_reply(self, store, tracker, user):
        _pending(store, tracker, user, "20")
        assert tracker.handle_reply(user.id, "sí").status == ResolutionStatus.CONFIRMED

    def test_negative_reply(self, store, tracker, user):
        _pending(store, tracker, user, "20")
        assert tracker.handle_reply(user.id, "no").status == ResolutionStatus.REJECTED

    @pytest.mark.parametrize("text", ["hmm", "", None])
    def test_unclear_reply_leaves_pending(self, store, tracker, user, text):
        _pending(store, tracker, user, "20")

        result = tracker.handle_reply(user.id, text)

        assert result.status == ResolutionStatus.NOT_UNDERSTOOD
        assert "❌" in result.reply
        assert store.count_open_pending(user.id) == 1

    def test_rejection_disabled(self, store, user, clock, temp_db):
        config = Config(
            state_db_path=temp_db, confirmation=ConfirmationConfig(rejection_enabled=False)
        )
        tracker = PendingTracker(store, config, clock=clock)
        _pending(store, tracker, user, "20")

        result = tracker.handle_reply(user.id, "no")

        assert result.status == ResolutionStatus.NOT_UNDERSTOOD
        assert "❌" not in result.reply
        assert store.count_open_pending(user.id) == 1

    def test_nothing_pending(self, tracker, user):
        assert tracker.handle_reply(user.id, "ok").status == ResolutionStatus.NO_PENDING


class TestStoreFailure:
    def test_failed_commit_leaves_entry_open(self, store, tracker, user):
        prediction = _pending(store, tracker, user, "20")[0]

        with patch.object(
            store, "_commit_transaction_row", side_effect=sqlite3.OperationalError("disk I/O error")
        ):
            with pytest.raises(StoreFailure):
                tracker.confirm(user.id)

        assert store.get_open_pending_for_prediction(prediction.id) is not None
        assert store.get_feedback_for_prediction(prediction.id) == []
        assert store.get_prediction(prediction.id).resolution_method == ResolutionMethod.NONE

    def test_partial_group_failure(self, store, tracker, user):
        first, second = _pending(store, tracker, user, "20", "5")
        real_commit = store._commit_transaction_row
        calls = []

        def flaky_commit(conn, prediction_id, now_iso, overwrite=False):
            calls.append(prediction_id)
            if prediction_id == second.id:
                raise sqlite3.OperationalError("database is locked")
            return real_commit(conn, prediction_id, now_iso, overwrite)

        with patch.object(store, "_commit_transaction_row", side_effect=flaky_commit):
            with pytest.raises(StoreFailure):
                tracker.confirm(user.id)

        assert calls == [first.id, second.id]
        assert store.get_open_pending_for_prediction(first.id) is None
        assert store.get_open_pending_for_prediction(second.id) is not None
        assert store.get_policy("BOL").verified_count == 1

        # Retry resolves only the remaining member
        result = tracker.confirm(user.id)
        assert result.resolved_ids == [second.id]

    def test_retry_naming_resolved_member_finishes_group(self, store, tracker, user):
        first, second = _pending(store, tracker, user, "20", "5")
        real_commit = store._commit_transaction_row

        def flaky_commit(conn, prediction_id, now_iso, overwrite=False):
            if prediction_id == second.id:
                raise sqlite3.OperationalError("database is locked")
            return real_commit(conn, prediction_id, now_iso, overwrite)

        with patch.object(store, "_commit_transaction_row", side_effect=flaky_commit):
            with pytest.raises(StoreFailure):
                tracker.confirm(user.id, prediction_id=first.id)

        result = tracker.confirm(user.id, prediction_id=first.id)

        assert result.status == ResolutionStatus.CONFIRMED
        assert result.resolved_ids == [second.id]
        assert store.get_open_pending_for_prediction(second.id) is None
        assert store.get_prediction(second.id).resolution_method == ResolutionMethod.REACTION
        assert len(store.get_feedback_for_prediction(first.id)) == 1


class TestExpiry:
    def test_expires_after_ttl(self, tracker):
        assert tracker.expires_at(T0) == T0 + timedelta(minutes=30)
