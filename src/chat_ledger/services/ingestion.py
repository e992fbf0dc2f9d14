"""
Ingestion orchestrator: inbound message -> stored predictions.

Flow:
1. Validate body kind (audio | text)
2. Resolve sender (unknown -> rate-limited invitation, NotRegisteredError)
3. Dedupe lookup (hit -> stored result, no extraction call)
4. Transcribe audio
5. Extract candidates with the sender's cohort
6. Store predictions + pending confirmations atomically, or commit them
   directly when the cohort is in automatic mode
"""

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol

from chat_ledger.config import Config
from chat_ledger.exceptions import (
    ExtractionFailure,
    NotRegisteredError,
    StoreFailure,
    UnsupportedMessageError,
)
from chat_ledger.extraction.client import ExtractionError, ExtractionResult
from chat_ledger.gateway_client import GatewayClient, GatewayError
from chat_ledger.schemas.message import BodyKind, InboundMessage, normalize_phone
from chat_ledger.services.dedupe_cache import DedupeCache
from chat_ledger.services.policy import ConfirmationPolicyService
from chat_ledger.services.predictions import PredictionStore
from chat_ledger.services.tracker import PendingTracker
from chat_ledger.services.users import UserDirectory
from chat_ledger.state_store import PredictionRecord, StateStore, parse_iso

logger = logging.getLogger(__name__)


class Extractor(Protocol):
    def extract(self, transcript: str, cohort: str) -> ExtractionResult: ...


class AudioTranscriber(Protocol):
    def transcribe(self, audio_base64: str) -> str: ...


class IngestStatus(str, Enum):
    """Outcome of handling an inbound message."""

    ACCEPTED = "accepted"  # Awaiting confirmation
    AUTO_COMMITTED = "auto_committed"  # Cohort in automatic mode
    DUPLICATE = "duplicate"  # Message id already processed


@dataclass
class IngestResult:
    """Result of handling one inbound message."""

    status: IngestStatus
    predictions: list[PredictionRecord] = field(default_factory=list)
    transcript: str | None = None
    reply: str = ""

    @property
    def prediction_ids(self) -> list[int]:
        return [p.id for p in self.predictions]

    @property
    def requires_confirmation(self) -> bool:
        return self.status == IngestStatus.ACCEPTED


def _format_line(prediction: PredictionRecord) -> str:
    txn = prediction.transaction
    sign = "+" if txn.direction.value == "credit" else "-"
    label = txn.description or txn.category or "sin descripción"
    return f"{sign}{txn.amount} {txn.currency or ''} {label}".replace("  ", " ")


class IngestionService:
    """Turns inbound chat messages into predictions."""

    def __init__(
        self,
        store: StateStore,
        config: Config,
        extractor: Extractor,
        transcriber: AudioTranscriber | None = None,
        gateway: GatewayClient | None = None,
        tracker: PendingTracker | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.config = config
        self.extractor = extractor
        self.transcriber = transcriber
        self.gateway = gateway
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.tracker = tracker or PendingTracker(store, config, clock=self._clock)
        self.policy: ConfirmationPolicyService = self.tracker.policy
        self.dedupe = DedupeCache(store)
        self.predictions = PredictionStore(store, self.dedupe)
        self.users = UserDirectory(store, config.default_cohort)

    def handle_message(self, message: InboundMessage) -> IngestResult:
        """
        Process one inbound message.

        Raises:
            UnsupportedMessageError: Unknown body kind or empty payload
            NotRegisteredError: Sender is not a registered user
            ExtractionFailure: Extraction failed or found nothing
            StoreFailure: Predictions could not be stored
        """
        try:
            kind = BodyKind(message.body_kind)
        except ValueError:
            raise UnsupportedMessageError(f"Unsupported body kind: {message.body_kind!r}") from None
        if not message.payload or not message.payload.strip():
            raise UnsupportedMessageError("Message payload is empty")

        user = self.users.find(message.sender)
        if user is None:
            sent = self._invite(message.sender)
            logger.info("Message from unregistered sender (invitation sent: %s)", sent)
            raise NotRegisteredError(message.sender, invitation_sent=sent)

        cached = self.dedupe.lookup(message.message_id)
        if cached is not None:
            logger.info("Duplicate message %s ignored", message.message_id)
            return IngestResult(
                status=IngestStatus.DUPLICATE,
                predictions=cached.predictions,
                transcript=cached.predictions[0].transcript,
            )

        transcript = self._transcript_for(kind, message.payload)
        logger.debug("Transcript for message %s: %s", message.message_id, transcript)

        try:
            result = self.extractor.extract(transcript, user.cohort)
        except ExtractionError as e:
            raise ExtractionFailure(str(e), retryable=e.retryable) from e
        if not result.transactions:
            raise ExtractionFailure("No transactions found in message")

        now = self._clock()
        require = self.policy.requires_confirmation(user.cohort)
        outcome = self.predictions.insert_many(
            user_id=user.id,
            cohort=user.cohort,
            transactions=result.transactions,
            original_timestamp=message.timestamp,
            transcript=transcript,
            message_id=message.message_id,
            origin=message.origin,
            expires_at=self.tracker.expires_at(now) if require else None,
            auto_commit=not require,
            now=now,
        )

        if outcome.duplicate:
            return IngestResult(
                status=IngestStatus.DUPLICATE,
                predictions=outcome.predictions,
                transcript=transcript,
            )

        status = IngestStatus.ACCEPTED if require else IngestStatus.AUTO_COMMITTED
        return IngestResult(
            status=status,
            predictions=outcome.predictions,
            transcript=transcript,
            reply=self._build_reply(status, outcome.predictions),
        )

    def _transcript_for(self, kind: BodyKind, payload: str) -> str:
        if kind == BodyKind.TEXT:
            return payload.strip()
        if self.transcriber is None:
            raise ExtractionFailure("Audio received but no transcriber is configured")
        try:
            return self.transcriber.transcribe(payload)
        except ExtractionError as e:
            raise ExtractionFailure(f"Transcription failed: {e}", retryable=e.retryable) from e

    def _build_reply(self, status: IngestStatus, predictions: list[PredictionRecord]) -> str:
        lines = [_format_line(p) for p in predictions]
        if status == IngestStatus.AUTO_COMMITTED:
            return "✅ Guardado:\n" + "\n".join(lines)

        ttl = self.config.confirmation.ttl_minutes
        hint = "✅ para confirmar"
        if self.config.confirmation.rejection_enabled:
            hint += " o ❌ para descartar"
        return (
            "📝 Registré:\n"
            + "\n".join(lines)
            + f"\n\nResponde {hint}. Si no respondes, se guardará en {ttl} minutos."
        )

    def _invite(self, sender: str) -> bool:
        """Send a rate-limited invitation to an unknown sender.

        Gateway failures are logged and never fatal.
        """
        if self.gateway is None:
            return False

        phone = normalize_phone(sender)
        now = self._clock()
        cooldown = timedelta(hours=self.config.gateway.invitation_cooldown_hours)
        try:
            last = self.store.get_last_invitation(phone)
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to read invitation log: {e}") from e
        if last and now - parse_iso(last) < cooldown:
            logger.debug("Invitation to %s skipped (cool-down)", phone)
            return False

        try:
            self.gateway.send_text(phone, self.config.gateway.invitation_text)
        except GatewayError as e:
            logger.warning("Failed to send invitation to %s: %s", phone, e)
            return False

        try:
            self.store.record_invitation(phone, sent_at=now)
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to record invitation: {e}") from e
        return True
