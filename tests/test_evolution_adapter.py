"""Tests for Evolution webhook payload normalization."""

from unittest.mock import patch

import pytest

from helpers import START, evolution_payload, upsert_item
from ispbot.whatsapp.evolution_adapter import (
    InvalidPayloadError,
    extract_text,
    normalize_batch,
    parse_message,
    parse_timestamp_millis,
    to_chat_id,
    to_recipient,
)


class TestJids:
    def test_personal_jid_becomes_chat_id(self):
        assert to_chat_id("5511000000001@s.whatsapp.net") == "5511000000001@c.us"

    def test_other_jids_kept(self):
        assert to_chat_id("123456789@lid") == "123456789@lid"

    def test_recipient_strips_personal_suffixes(self):
        assert to_recipient("5511000000001@c.us") == "5511000000001"
        assert to_recipient("5511000000001@s.whatsapp.net") == "5511000000001"
        assert to_recipient("123456789@lid") == "123456789@lid"


class TestExtractText:
    def test_conversation_first(self):
        assert extract_text({"conversation": "oi", "extendedTextMessage": {"text": "x"}}) == "oi"

    def test_extended_text(self):
        assert extract_text({"extendedTextMessage": {"text": "segunda via"}}) == "segunda via"

    def test_captions(self):
        assert extract_text({"imageMessage": {"caption": "comprovante"}}) == "comprovante"
        assert extract_text({"documentMessage": {"caption": "boleto"}}) == "boleto"

    def test_media_placeholders(self):
        assert extract_text({"audioMessage": {}}) == "[áudio]"
        assert extract_text({"videoMessage": {}}) == "[vídeo]"
        assert extract_text({"stickerMessage": {}}) == "[mensagem]"
        assert extract_text({"imageMessage": {}}) == "[mensagem]"


class TestTimestamps:
    def test_seconds_become_millis(self):
        assert parse_timestamp_millis(1_700_000_000) == 1_700_000_000_000

    def test_numeric_string(self):
        assert parse_timestamp_millis("1700000000") == 1_700_000_000_000

    def test_long_like_dict(self):
        assert parse_timestamp_millis({"low": 1_700_000_000, "high": 0}) == 1_700_000_000_000

    def test_missing_means_now(self):
        with patch("ispbot.whatsapp.evolution_adapter.epoch_millis", return_value=42):
            assert parse_timestamp_millis(None) == 42
            assert parse_timestamp_millis("soon") == 42


class TestParseMessage:
    def test_fields(self):
        msg = parse_message(upsert_item("1", message_id="ABC"))

        assert msg.message_id == "ABC"
        assert msg.chat_id == "5511000000001@c.us"
        assert msg.sender_id == msg.chat_id
        assert msg.text == "1"
        assert msg.timestamp_millis == int(START) * 1000
        assert msg.push_name == "Maria"
        assert msg.kind == "conversation"
        assert not msg.from_self

    def test_group_participant_is_sender(self):
        item = upsert_item(chat_jid="1203630@g.us")
        item["key"]["participant"] = "5511000000009@s.whatsapp.net"

        msg = parse_message(item)

        assert msg.is_group_or_broadcast
        assert msg.sender_id == "5511000000009@c.us"

    def test_no_message_is_none(self):
        item = upsert_item()
        item["message"] = None
        assert parse_message(item) is None

    def test_no_jid_is_none(self):
        item = upsert_item()
        del item["key"]["remoteJid"]
        assert parse_message(item) is None

    def test_revoke_stub_is_protocol(self):
        item = upsert_item()
        item["messageStubType"] = "REVOKE"
        assert parse_message(item).is_protocol_message


class TestNormalizeBatch:
    def test_single_evolution_item(self):
        messages = list(normalize_batch(evolution_payload(upsert_item("oi"))))

        assert [m.text for m in messages] == ["oi"]

    def test_evolution_list_keeps_order(self):
        payload = evolution_payload(
            upsert_item("1", message_id="A"), upsert_item("2", message_id="B")
        )

        assert [m.message_id for m in normalize_batch(payload)] == ["A", "B"]

    def test_baileys_notify(self):
        payload = {"type": "notify", "messages": [upsert_item("oi")]}

        assert len(list(normalize_batch(payload))) == 1

    def test_baileys_append_ignored(self):
        payload = {"type": "append", "messages": [upsert_item("oi")]}

        assert list(normalize_batch(payload)) == []

    def test_other_events_ignored(self):
        payload = {"event": "connection.update", "data": {"state": "open"}}

        assert list(normalize_batch(payload)) == []

    def test_filters_groups_broadcast_and_protocol(self):
        protocol = upsert_item(message={"protocolMessage": {"type": 0}}, message_id="P")
        payload = evolution_payload(
            upsert_item(chat_jid="1203630@g.us", message_id="G"),
            upsert_item(chat_jid="status@broadcast", message_id="S"),
            protocol,
            upsert_item("oi", message_id="OK"),
        )

        assert [m.message_id for m in normalize_batch(payload)] == ["OK"]

    def test_self_sent_is_kept_and_flagged(self):
        payload = evolution_payload(upsert_item("Bom dia", from_me=True))

        (msg,) = list(normalize_batch(payload))

        assert msg.from_self

    def test_lid_chats_pass_through(self):
        payload = evolution_payload(upsert_item(chat_jid="123456789@lid"))

        (msg,) = list(normalize_batch(payload))

        assert msg.chat_id == "123456789@lid"

    def test_non_object_payload_rejected(self):
        with pytest.raises(InvalidPayloadError):
            list(normalize_batch(["not", "an", "object"]))

    def test_unknown_shape_rejected(self):
        with pytest.raises(InvalidPayloadError):
            list(normalize_batch({"hello": "world"}))

    def test_messages_must_be_list(self):
        with pytest.raises(InvalidPayloadError):
            list(normalize_batch({"type": "notify", "messages": "oops"}))
