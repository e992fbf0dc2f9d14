"""Tests for canonical schemas: message ids, inbound messages, transactions."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from chat_ledger.schemas import (
    CandidateTransaction,
    Direction,
    InboundMessage,
    assign_message_ids,
    member_message_id,
    normalize_phone,
    parse_amount,
    parse_direction,
    phone_variants,
)


class TestMessageIds:
    def test_member_id_format(self):
        assert member_message_id("m1", 1) == "m1:1"
        assert member_message_id("m1", 12) == "m1:12"

    def test_member_id_rejects_bad_ordinal(self):
        with pytest.raises(ValueError):
            member_message_id("m1", 0)

    def test_single_record_keeps_id(self):
        ids = assign_message_ids("m1", 1)
        assert len(ids) == 1
        assert ids[0].message_id == "m1"
        assert ids[0].group_id is None
        assert not ids[0].is_grouped

    def test_multi_record_gets_group(self):
        ids = assign_message_ids("m1", 3)
        assert [i.message_id for i in ids] == ["m1:1", "m1:2", "m1:3"]
        assert all(i.group_id == "m1" for i in ids)

    def test_missing_id_disables_grouping(self):
        ids = assign_message_ids(None, 2)
        assert all(i.message_id is None and i.group_id is None for i in ids)


class TestPhones:
    def test_strip_gateway_suffix(self):
        assert normalize_phone("59171234567@s.whatsapp.net") == "59171234567"

    def test_variants(self):
        assert phone_variants("+59171234567") == ["+59171234567", "59171234567"]
        assert phone_variants("59171234567@s.whatsapp.net") == ["+59171234567", "59171234567"]

    def test_empty_phone_has_no_variants(self):
        assert phone_variants("") == []


class TestInboundMessage:
    def test_from_dict_camel_case(self):
        message = InboundMessage.from_dict(
            {
                "sender": "59171234567@s.whatsapp.net",
                "bodyKind": "TEXT",
                "payload": "gasté 20 en comida",
                "messageId": "ABC123",
                "timestamp": "2025-03-10T14:00:00Z",
            }
        )
        assert message.sender == "59171234567"
        assert message.body_kind == "text"
        assert message.message_id == "ABC123"
        assert message.timestamp == datetime(2025, 3, 10, 14, 0, tzinfo=timezone.utc)

    def test_epoch_timestamp(self):
        message = InboundMessage.from_dict(
            {"sender": "1", "body_kind": "text", "payload": "x", "timestamp": 1741615200}
        )
        assert message.timestamp == datetime(2025, 3, 10, 14, 0, tzinfo=timezone.utc)

    def test_naive_timestamp_is_utc(self):
        message = InboundMessage.from_dict(
            {"sender": "1", "body_kind": "text", "payload": "x", "timestamp": "2025-03-10T14:00:00"}
        )
        assert message.timestamp.tzinfo is not None

    def test_missing_sender(self):
        with pytest.raises(ValueError):
            InboundMessage.from_dict({"body_kind": "text", "payload": "x", "timestamp": 1})

    def test_unknown_kind_is_kept(self):
        message = InboundMessage.from_dict(
            {"sender": "1", "body_kind": "sticker", "payload": "x", "timestamp": 1}
        )
        assert message.body_kind == "sticker"


class TestTransaction:
    def test_parse_amount_comma(self):
        assert parse_amount("12,50") == Decimal("12.50")

    def test_parse_amount_float(self):
        assert parse_amount(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("value", [None, "", "abc", 0, "-5"])
    def test_parse_amount_invalid(self, value):
        with pytest.raises(ValueError):
            parse_amount(value)

    def test_parse_direction(self):
        assert parse_direction("gasto") == Direction.DEBIT
        assert parse_direction("Ingreso") == Direction.CREDIT
        assert parse_direction("income") == Direction.CREDIT
        assert parse_direction(None) == Direction.DEBIT
        assert parse_direction("whatever") == Direction.DEBIT

    def test_dict_round_trip(self):
        original = CandidateTransaction(
            amount=Decimal("20.00"),
            direction=Direction.CREDIT,
            category="sueldo",
            currency="BOB",
        )
        assert CandidateTransaction.from_dict(original.to_dict()) == original

    def test_with_changes(self):
        original = CandidateTransaction(amount=Decimal("20"), category="comida", currency="BOB")
        updated = original.with_changes({"amount": "25", "currency": "usd"})

        assert updated.amount == Decimal("25")
        assert updated.currency == "USD"
        assert updated.category == "comida"
        assert original.amount == Decimal("20")

    def test_with_changes_rejects_unknown_field(self):
        original = CandidateTransaction(amount=Decimal("20"))
        with pytest.raises(ValueError, match="original_timestamp"):
            original.with_changes({"original_timestamp": "2020-01-01"})

    def test_with_changes_accepts_direction_labels(self):
        original = CandidateTransaction(amount=Decimal("20"))
        assert original.with_changes({"direction": "ingreso"}).direction == Direction.CREDIT
        assert original.with_changes({"direction": Direction.CREDIT}).direction == Direction.CREDIT

    def test_with_changes_rejects_unknown_direction(self):
        original = CandidateTransaction(amount=Decimal("20"), direction=Direction.CREDIT)
        with pytest.raises(ValueError, match="direction"):
            original.with_changes({"direction": "ingreos"})
        assert parse_direction("ingreos") == Direction.DEBIT
