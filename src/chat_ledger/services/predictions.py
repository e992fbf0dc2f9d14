"""Prediction store: persists extraction output, one row per transaction."""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime

from chat_ledger.exceptions import NotFoundError, StoreFailure
from chat_ledger.schemas.dedupe import assign_message_ids
from chat_ledger.schemas.transaction import CandidateTransaction
from chat_ledger.services.dedupe_cache import DedupeCache
from chat_ledger.state_store import PredictionDraft, PredictionRecord, StateStore

logger = logging.getLogger(__name__)


@dataclass
class InsertOutcome:
    """Result of storing the predictions of one message."""

    predictions: list[PredictionRecord]
    # True when the message id was already stored (nothing new written)
    duplicate: bool = False


class PredictionStore:
    """Creates and updates predictions.

    All rows of one message, and their pending confirmations, are written
    in a single store transaction.
    """

    def __init__(self, store: StateStore, dedupe: DedupeCache | None = None):
        self.store = store
        self.dedupe = dedupe or DedupeCache(store)

    def insert(
        self,
        user_id: int,
        cohort: str,
        transaction: CandidateTransaction,
        original_timestamp: datetime,
        transcript: str | None = None,
        message_id: str | None = None,
        origin: str = "whatsapp",
        expires_at: datetime | None = None,
        auto_commit: bool = False,
        now: datetime | None = None,
    ) -> InsertOutcome:
        """Store a single-record message."""
        return self.insert_many(
            user_id=user_id,
            cohort=cohort,
            transactions=[transaction],
            original_timestamp=original_timestamp,
            transcript=transcript,
            message_id=message_id,
            origin=origin,
            expires_at=expires_at,
            auto_commit=auto_commit,
            now=now,
        )

    def insert_many(
        self,
        user_id: int,
        cohort: str,
        transactions: list[CandidateTransaction],
        original_timestamp: datetime,
        transcript: str | None = None,
        message_id: str | None = None,
        origin: str = "whatsapp",
        expires_at: datetime | None = None,
        auto_commit: bool = False,
        now: datetime | None = None,
    ) -> InsertOutcome:
        """
        Store every candidate of one message atomically.

        With more than one candidate, rows share group id = message id and
        get stored ids "<message_id>:<ordinal>".

        Args:
            expires_at: Create a pending confirmation per row expiring then
            auto_commit: Commit rows immediately (cohort in automatic mode)

        Raises:
            ValueError: If transactions is empty
            StoreFailure: If the store write fails
        """
        if not transactions:
            raise ValueError("At least one transaction is required")

        cached = self.dedupe.lookup(message_id)
        if cached is not None:
            return InsertOutcome(predictions=cached.predictions, duplicate=True)

        ids = assign_message_ids(message_id, len(transactions))
        drafts = [
            PredictionDraft(
                user_id=user_id,
                cohort=cohort,
                transaction=txn,
                original_timestamp=original_timestamp,
                transcript=transcript,
                message_id=stored.message_id,
                group_id=stored.group_id,
                origin=origin,
            )
            for txn, stored in zip(transactions, ids)
        ]

        try:
            records = self.store.insert_predictions(
                drafts, expires_at=expires_at, auto_commit=auto_commit, now=now
            )
        except sqlite3.IntegrityError as e:
            # Lost an insert race for the same message id
            cached = self.dedupe.lookup(message_id)
            if cached is None:
                raise StoreFailure(f"Failed to store predictions: {e}") from e
            logger.info("Message %s stored concurrently; returning cached result", message_id)
            return InsertOutcome(predictions=cached.predictions, duplicate=True)
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to store predictions: {e}") from e

        logger.info(
            "Stored %d prediction(s) for user %d (cohort %s, message %s)",
            len(records),
            user_id,
            cohort,
            message_id,
        )
        return InsertOutcome(predictions=records)

    def get(self, prediction_id: int) -> PredictionRecord:
        """Get a prediction.

        Raises:
            NotFoundError: If it does not exist
        """
        record = self.store.get_prediction(prediction_id)
        if record is None:
            raise NotFoundError(f"Prediction {prediction_id} not found")
        return record

    def update(self, prediction_id: int, fields: dict) -> PredictionRecord:
        """
        Change content fields of a prediction.

        The original timestamp is never written.

        Raises:
            NotFoundError: If the prediction does not exist
            ValueError: On non-editable fields or invalid values
            StoreFailure: If the store write fails
        """
        current = self.get(prediction_id)
        updated = current.transaction.with_changes(fields)
        try:
            self.store.update_prediction_fields(prediction_id, updated)
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to update prediction {prediction_id}: {e}") from e
        return self.get(prediction_id)
