"""Tests for WhatsApp outbound messaging - verifies NO PII in logs."""

import asyncio
import base64
import urllib.error
from unittest.mock import patch

import pytest

from helpers import CHAT_ID, PDF_BYTES, PNG_BYTES, FakeTransport, LogRecorder, ManualClock
from ispbot.infra.message_log import Attachment, InMemoryMessageLog
from ispbot.infra.rate_limit import RateLimiter
from ispbot.whatsapp.outbound import EvolutionTransport, OutboundSender, _get_config

CONFIG = {
    "base_url": "http://localhost:8080",
    "instance": "test-instance",
    "api_key": "test-api-key",
}


@pytest.fixture
def mock_evolution_env(monkeypatch):
    """Set Evolution API environment variables."""
    monkeypatch.setenv("EVOLUTION_BASE_URL", "http://localhost:8080/")
    monkeypatch.setenv("EVOLUTION_INSTANCE", "test-instance")
    monkeypatch.setenv("EVOLUTION_API_KEY", "test-api-key")


class TestConfig:
    def test_reads_environment(self, mock_evolution_env):
        assert _get_config() == CONFIG

    def test_missing_config_raises(self, monkeypatch):
        monkeypatch.delenv("EVOLUTION_BASE_URL", raising=False)
        monkeypatch.delenv("EVOLUTION_INSTANCE", raising=False)
        monkeypatch.delenv("EVOLUTION_API_KEY", raising=False)

        with pytest.raises(RuntimeError, match="Missing Evolution config"):
            _get_config()


class TestEvolutionTransport:
    def test_send_text_posts_number_and_text(self):
        with patch(
            "ispbot.whatsapp.outbound._do_request",
            return_value={"key": {"id": "WAID1"}},
        ) as do_request:
            message_id = asyncio.run(EvolutionTransport(CONFIG).send_text(CHAT_ID, "Olá"))

        assert message_id == "WAID1"
        url, data, headers, timeout = do_request.call_args.args
        assert url == "http://localhost:8080/message/sendText/test-instance"
        assert headers["apikey"] == "test-api-key"
        assert b'"number": "5511000000001"' in data
        assert timeout == 5

    def test_send_media_encodes_base64(self):
        with patch(
            "ispbot.whatsapp.outbound._do_request", return_value={}
        ) as do_request:
            message_id = asyncio.run(
                EvolutionTransport(CONFIG).send_media(
                    CHAT_ID,
                    PDF_BYTES,
                    media_type="document",
                    file_name="boleto.pdf",
                    mime_type="application/pdf",
                    caption="Boleto",
                )
            )

        assert message_id == ""
        url, data, _, timeout = do_request.call_args.args
        assert url.endswith("/message/sendMedia/test-instance")
        assert base64.b64encode(PDF_BYTES) in data
        assert b'"mediatype": "document"' in data
        assert timeout == 30

    def test_network_error_retried_once(self):
        responses = [urllib.error.URLError("connection refused"), {"key": {"id": "WAID2"}}]

        def flaky(*args):
            result = responses.pop(0)
            if isinstance(result, Exception):
                raise result
            return result

        with patch("ispbot.whatsapp.outbound._do_request", side_effect=flaky):
            with patch("ispbot.whatsapp.outbound.time.sleep") as sleep:
                message_id = asyncio.run(EvolutionTransport(CONFIG).send_text(CHAT_ID, "Olá"))

        assert message_id == "WAID2"
        sleep.assert_called_once()

    def test_4xx_not_retried(self):
        error = urllib.error.HTTPError("http://x", 400, "Bad Request", {}, None)

        with patch("ispbot.whatsapp.outbound._do_request", side_effect=error) as do_request:
            with pytest.raises(urllib.error.HTTPError):
                asyncio.run(EvolutionTransport(CONFIG).send_text(CHAT_ID, "Olá"))

        assert do_request.call_count == 1

    def test_persistent_5xx_raises_after_retry(self):
        error = urllib.error.HTTPError("http://x", 502, "Bad Gateway", {}, None)

        with patch("ispbot.whatsapp.outbound._do_request", side_effect=error) as do_request:
            with patch("ispbot.whatsapp.outbound.time.sleep"):
                with pytest.raises(urllib.error.HTTPError):
                    asyncio.run(EvolutionTransport(CONFIG).send_text(CHAT_ID, "Olá"))

        assert do_request.call_count == 2


class TestNoPiiLeakage:
    """Tests that verify NO PII (recipient, text) appears in logs."""

    MESSAGE_TEXT = "dummy_text_segunda_via"

    def test_send_logs_no_pii(self):
        recorder = LogRecorder()

        with patch("ispbot.whatsapp.outbound.logger", recorder):
            with patch("ispbot.whatsapp.outbound._do_request", return_value={}):
                asyncio.run(EvolutionTransport(CONFIG).send_text(CHAT_ID, self.MESSAGE_TEXT))

        all_logged = recorder.get_all_logged_content()
        assert "5511000000001" not in all_logged, "Recipient leaked!"
        assert self.MESSAGE_TEXT not in all_logged, "Message text leaked!"
        assert recorder.has_extra_field("to_hash")
        assert recorder.has_extra_field("payload_len")

    def test_retry_logs_no_pii(self):
        recorder = LogRecorder()
        error = urllib.error.URLError("connection refused")

        with patch("ispbot.whatsapp.outbound.logger", recorder):
            with patch("ispbot.whatsapp.outbound._do_request", side_effect=error):
                with patch("ispbot.whatsapp.outbound.time.sleep"):
                    with pytest.raises(urllib.error.URLError):
                        asyncio.run(
                            EvolutionTransport(CONFIG).send_text(CHAT_ID, self.MESSAGE_TEXT)
                        )

        all_logged = recorder.get_all_logged_content()
        assert "5511000000001" not in all_logged
        assert self.MESSAGE_TEXT not in all_logged
        assert [level for level, _, _ in recorder.calls] == ["warning", "error"]


def _sender(transport=None, clock=None):
    clock = clock or ManualClock()
    log = InMemoryMessageLog()
    limiter = RateLimiter(clock=clock)
    sender = OutboundSender(
        transport or FakeTransport(), log, limiter, clock=lambda: int(clock() * 1000)
    )
    return sender, log, limiter


class TestOutboundSender:
    def test_text_is_recorded_and_limits_rate(self):
        sender, log, limiter = _sender()

        async def run():
            await sender.send_text(CHAT_ID, "Olá")
            return await limiter.can_respond(CHAT_ID)

        assert asyncio.run(run()) is False
        (logged,) = log.for_chat(CHAT_ID)
        assert logged.direction == "out"
        assert logged.text == "Olá"

    def test_image_recorded_with_attachment(self):
        transport = FakeTransport()
        sender, log, _ = _sender(transport)

        asyncio.run(sender.send_image(CHAT_ID, PNG_BYTES, caption="QR Code PIX"))

        assert transport.sent[0]["type"] == "image"
        assert transport.sent[0]["mime_type"] == "image/png"
        logged = log.for_chat(CHAT_ID)[0]
        assert logged.text == "QR Code PIX"
        assert logged.attachment == Attachment("pix.png", "image/png")

    def test_document_without_caption_gets_placeholder(self):
        sender, log, _ = _sender()

        asyncio.run(sender.send_document(CHAT_ID, PDF_BYTES, "boleto.pdf"))

        logged = log.for_chat(CHAT_ID)[0]
        assert logged.text == "[arquivo] boleto.pdf"
        assert logged.attachment.mime_type == "application/pdf"

    def test_failed_send_is_not_recorded(self):
        transport = FakeTransport()
        transport.fail_with = urllib.error.URLError("down")
        sender, log, limiter = _sender(transport)

        async def run():
            with pytest.raises(urllib.error.URLError):
                await sender.send_text(CHAT_ID, "Olá")
            return await limiter.can_respond(CHAT_ID)

        assert asyncio.run(run()) is True
        assert log.messages == []

    def test_sent_by_bot_tracks_own_ids(self):
        sender, _, _ = _sender()

        message_id = asyncio.run(sender.send_text(CHAT_ID, "Olá"))

        assert sender.sent_by_bot(message_id)
        assert not sender.sent_by_bot("AGENT123")
        assert not sender.sent_by_bot("")
