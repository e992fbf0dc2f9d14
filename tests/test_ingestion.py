"""Tests for the ingestion orchestrator."""

import sqlite3
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from conftest import SAMPLE_PHONE, T0, FakeExtractor, text_message, txn

from chat_ledger.exceptions import (
    ExtractionFailure,
    NotRegisteredError,
    StoreFailure,
    UnsupportedMessageError,
)
from chat_ledger.extraction import ExtractionError
from chat_ledger.gateway_client import GatewayClient, GatewayConnectionError
from chat_ledger.schemas.message import InboundMessage
from chat_ledger.services import IngestionService, IngestStatus, ResolutionStatus
from chat_ledger.state_store import utc_iso


class TestHandleMessage:
    def test_multi_record_message_then_confirmation(self, ingestion, store, tracker, user, clock):
        result = ingestion.handle_message(text_message("gasté 20 en comida y 5 en transporte"))

        assert result.status == IngestStatus.ACCEPTED
        assert result.requires_confirmation
        assert [p.message_id for p in result.predictions] == ["m1:1", "m1:2"]
        assert all(p.group_id == "m1" for p in result.predictions)
        assert "📝 Registré" in result.reply
        assert "-20 BOB comida" in result.reply

        for prediction in result.predictions:
            pending = store.get_open_pending_for_prediction(prediction.id)
            assert pending.expires_at == utc_iso(T0 + timedelta(minutes=30))

        clock.advance(minutes=4)
        reply = tracker.handle_reply(user.id, "sí")

        assert reply.status == ResolutionStatus.CONFIRMED
        assert sorted(reply.resolved_ids) == sorted(result.prediction_ids)
        assert reply.accuracy == 100.0
        assert reply.verified_count == 2
        committed = store.list_committed_transactions(user.id)
        assert [c.amount for c in committed] == [Decimal("20"), Decimal("5")]
        assert all(c.occurred_at == utc_iso(T0) for c in committed)

    def test_single_record_keeps_message_id(self, store, config, tracker, clock, user):
        service = IngestionService(
            store, config, extractor=FakeExtractor([txn("20")]), tracker=tracker, clock=clock
        )
        result = service.handle_message(text_message("gasté 20"))

        assert result.predictions[0].message_id == "m1"
        assert result.predictions[0].group_id is None

    def test_duplicate_message(self, ingestion, extractor, store, user):
        first = ingestion.handle_message(text_message("gasté 20 y 5"))
        second = ingestion.handle_message(text_message("gasté 20 y 5"))

        assert second.status == IngestStatus.DUPLICATE
        assert second.prediction_ids == first.prediction_ids
        assert len(extractor.calls) == 1
        assert store.get_stats()["predictions_total"] == 2

    def test_cohort_passed_to_extractor(self, ingestion, extractor, store):
        store.register_user(SAMPLE_PHONE, "PER")
        ingestion.handle_message(text_message("gasté 20"))
        assert extractor.calls == [("gasté 20", "PER")]

    def test_sender_with_plus_and_suffix(self, ingestion, user):
        message = text_message("gasté 20", sender="+59171234567@s.whatsapp.net")
        assert ingestion.handle_message(message).status == IngestStatus.ACCEPTED

    def test_auto_cohort_commits_directly(self, ingestion, store, user):
        ingestion.policy.set_mode("BOL", require_confirmation=False)

        result = ingestion.handle_message(text_message("gasté 20 y 5"))

        assert result.status == IngestStatus.AUTO_COMMITTED
        assert not result.requires_confirmation
        assert result.reply.startswith("✅ Guardado")
        assert store.count_open_pending() == 0
        assert len(store.list_committed_transactions(user.id)) == 2


class TestRejectedMessages:
    def test_unsupported_kind(self, ingestion, extractor, user):
        message = text_message("sticker")
        message.body_kind = "sticker"
        with pytest.raises(UnsupportedMessageError):
            ingestion.handle_message(message)
        assert extractor.calls == []

    def test_empty_payload(self, ingestion, user):
        with pytest.raises(UnsupportedMessageError):
            ingestion.handle_message(text_message("   "))

    def test_no_candidates(self, store, config, tracker, clock, user):
        service = IngestionService(
            store, config, extractor=FakeExtractor([]), tracker=tracker, clock=clock
        )
        with pytest.raises(ExtractionFailure):
            service.handle_message(text_message("hola"))
        assert store.get_stats()["predictions_total"] == 0

    def test_extraction_error_keeps_retryable(self, store, config, tracker, clock, user):
        extractor = MagicMock()
        extractor.extract.side_effect = ExtractionError("timed out", retryable=True)
        service = IngestionService(store, config, extractor=extractor, tracker=tracker, clock=clock)

        with pytest.raises(ExtractionFailure) as exc_info:
            service.handle_message(text_message("gasté 20"))
        assert exc_info.value.retryable is True

    def test_audio_without_transcriber(self, ingestion, user):
        message = InboundMessage(
            sender=SAMPLE_PHONE, body_kind="audio", payload="T2dnUw==", message_id="a1", timestamp=T0
        )
        with pytest.raises(ExtractionFailure):
            ingestion.handle_message(message)

    def test_audio_is_transcribed(self, store, config, tracker, clock, extractor, user):
        transcriber = MagicMock()
        transcriber.transcribe.return_value = "gasté 20 en comida"
        service = IngestionService(
            store, config, extractor=extractor, transcriber=transcriber, tracker=tracker, clock=clock
        )
        message = InboundMessage(
            sender=SAMPLE_PHONE, body_kind="audio", payload="T2dnUw==", message_id="a1", timestamp=T0
        )

        result = service.handle_message(message)

        transcriber.transcribe.assert_called_once_with("T2dnUw==")
        assert result.transcript == "gasté 20 en comida"
        assert extractor.calls == [("gasté 20 en comida", "BOL")]


class TestUnregisteredSender:
    @pytest.fixture
    def gateway(self):
        return MagicMock(spec=GatewayClient)

    @pytest.fixture
    def service(self, store, config, extractor, tracker, clock, gateway):
        return IngestionService(
            store, config, extractor=extractor, gateway=gateway, tracker=tracker, clock=clock
        )

    def test_invitation_is_rate_limited(self, service, gateway, extractor, clock):
        with pytest.raises(NotRegisteredError) as first:
            service.handle_message(text_message("gasté 20", message_id="x1"))
        assert first.value.invitation_sent is True

        clock.advance(hours=1)
        with pytest.raises(NotRegisteredError) as second:
            service.handle_message(text_message("gasté 20", message_id="x2"))
        assert second.value.invitation_sent is False

        clock.advance(hours=24)
        with pytest.raises(NotRegisteredError) as third:
            service.handle_message(text_message("gasté 20", message_id="x3"))
        assert third.value.invitation_sent is True

        assert gateway.send_text.call_count == 2
        assert extractor.calls == []

    def test_gateway_failure_is_not_fatal(self, service, gateway, store):
        gateway.send_text.side_effect = GatewayConnectionError("down")

        with pytest.raises(NotRegisteredError) as exc_info:
            service.handle_message(text_message("gasté 20"))

        assert exc_info.value.invitation_sent is False
        assert store.get_last_invitation(SAMPLE_PHONE) is None

    def test_invitation_log_failure_is_reported(self, service, gateway, store):
        with patch.object(
            store, "record_invitation", side_effect=sqlite3.OperationalError("database is locked")
        ):
            with pytest.raises(StoreFailure, match="invitation"):
                service.handle_message(text_message("gasté 20"))
        gateway.send_text.assert_called_once()

    def test_no_gateway_configured(self, ingestion):
        with pytest.raises(NotRegisteredError) as exc_info:
            ingestion.handle_message(text_message("gasté 20"))
        assert exc_info.value.invitation_sent is False
