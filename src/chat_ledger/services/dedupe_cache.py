"""Deduplication cache keyed by gateway message id.

The cache is a read over stored predictions: a miss reserves nothing.
Concurrent first-time inserts are resolved by the UNIQUE constraint on the
stored message id (see PredictionStore.insert_many).
"""

import logging
from dataclasses import dataclass

from chat_ledger.schemas.transaction import CandidateTransaction
from chat_ledger.state_store import PredictionRecord, StateStore

logger = logging.getLogger(__name__)


@dataclass
class StoredResult:
    """Predictions previously stored for a message id."""

    message_id: str
    predictions: list[PredictionRecord]

    @property
    def prediction_ids(self) -> list[int]:
        return [p.id for p in self.predictions]

    @property
    def transactions(self) -> list[CandidateTransaction]:
        return [p.transaction for p in self.predictions]


class DedupeCache:
    """Looks up predictions already stored for an inbound message."""

    def __init__(self, store: StateStore):
        self.store = store

    def lookup(self, message_id: str | None) -> StoredResult | None:
        """Return the stored result for a message id, or None on a miss.

        Matches single-record rows by message id and multi-record rows by
        group id.
        """
        if not message_id:
            return None

        predictions = self.store.get_predictions_by_message(message_id)
        if not predictions:
            return None

        logger.debug("Dedupe hit for message %s (%d rows)", message_id, len(predictions))
        return StoredResult(message_id=message_id, predictions=predictions)
