"""Tests for the inbound pipeline: gates, recording, ordering, isolation."""

import asyncio

from helpers import (
    CHAT_ID,
    OTHER_CHAT_ID,
    START,
    VALID_CPF,
    FakeTransport,
    ManualClock,
    make_bot,
)
from ispbot.domain.errors import classify_error
from ispbot.infra.message_log import InMemoryMessageLog
from ispbot.observability.correlation import get_correlation_id
from ispbot.whatsapp.models import InboundMessage
from ispbot.whatsapp.templates import render


def _msg(text, message_id="M1", chat_id=CHAT_ID, sent_at=START, from_self=False):
    return InboundMessage(
        message_id=message_id,
        chat_id=chat_id,
        sender_id=chat_id,
        text=text,
        timestamp_millis=int(sent_at * 1000),
        from_self=from_self,
        push_name="Maria",
        kind="conversation",
    )


class Harness:
    def __init__(self):
        self.clock = ManualClock()
        self.transport = FakeTransport()
        self.log = InMemoryMessageLog()
        self.bot = make_bot(transport=self.transport, clock=self.clock, message_log=self.log)

    async def submit(self, *messages):
        results = [await self.bot.pipeline.submit(m) for m in messages]
        await self.bot.pipeline.drain()
        return results


class TestRecordingAndDispatch:
    def test_greeting_answered_and_logged(self):
        h = Harness()

        asyncio.run(h.submit(_msg("oi")))

        assert h.transport.texts() == [render("main_menu")]
        logged = h.log.for_chat(CHAT_ID)
        assert [(m.direction, m.text) for m in logged] == [("in", "oi"), ("out", render("main_menu"))]
        assert logged[0].display_name == "Maria"
        assert logged[0].timestamp == int(START * 1000)

    def test_bot_echo_not_recorded_twice(self):
        h = Harness()

        async def run():
            await h.submit(_msg("oi"))
            bot_id = h.transport.sent[0]["id"]
            return await h.submit(_msg(render("main_menu"), message_id=bot_id, from_self=True))

        assert asyncio.run(run()) == [False]
        assert len(h.log.for_chat(CHAT_ID)) == 2

    def test_agent_message_recorded_not_dispatched(self):
        h = Harness()

        results = asyncio.run(h.submit(_msg("Olá, sou o Carlos", message_id="AGENT1", from_self=True)))

        assert results == [False]
        assert h.transport.sent == []
        (logged,) = h.log.for_chat(CHAT_ID)
        assert (logged.direction, logged.text) == ("out", "Olá, sou o Carlos")

    def test_drain_waits_for_pending(self):
        h = Harness()

        async def run():
            await h.bot.pipeline.submit(_msg("oi"))
            pending_before = h.bot.pipeline.pending
            await h.bot.pipeline.drain()
            return pending_before, h.bot.pipeline.pending

        assert asyncio.run(run()) == (1, 0)


class TestGates:
    def test_stale_message_dropped(self):
        h = Harness()

        asyncio.run(h.submit(_msg("oi", sent_at=START - 301)))

        assert h.transport.sent == []
        # Still recorded for the attendants
        assert len(h.log.for_chat(CHAT_ID)) == 1

    def test_recent_message_within_age_limit(self):
        h = Harness()

        asyncio.run(h.submit(_msg("oi", sent_at=START - 299)))

        assert h.transport.texts() == [render("main_menu")]

    def test_duplicate_text_dropped(self):
        h = Harness()

        asyncio.run(h.submit(_msg("1", "A"), _msg("1", "B")))

        assert h.transport.texts() == [render("payment_ask_cpf")]

    def test_duplicate_after_window_is_handled(self):
        h = Harness()

        async def run():
            await h.submit(_msg("1", "A"))
            h.clock.advance(5)
            await h.submit(_msg("1", "B", sent_at=h.clock()))

        asyncio.run(run())

        assert h.transport.last_text() == render("cpf_incomplete", {"digit_count": 1})

    def test_rate_limited_until_a_second_passes(self):
        h = Harness()

        async def run():
            await h.submit(_msg("oi", "A"), _msg("boa tarde", "B"))
            h.clock.advance(1)
            await h.submit(_msg("bom dia", "C", sent_at=h.clock()))

        asyncio.run(run())

        assert h.transport.texts() == [render("main_menu"), render("main_menu")]

    def test_menu_digits_bypass_rate_limit(self):
        h = Harness()

        asyncio.run(h.submit(_msg("oi", "A"), _msg("2", "B")))

        assert h.transport.texts() == [render("main_menu"), render("support_menu")]


class TestOrderingAndIsolation:
    def test_same_chat_in_arrival_order(self):
        h = Harness()

        async def run():
            await h.submit(_msg("1", "A"))
            h.clock.advance(1)
            # The boleto choice must wait for the CPF lookup to finish
            await h.submit(
                _msg(VALID_CPF, "B", sent_at=h.clock()),
                _msg("2", "C", sent_at=h.clock()),
            )

        asyncio.run(run())

        sent = h.transport.sent
        assert sent[0]["text"] == render("payment_ask_cpf")
        assert sent[1]["text"] == render("cpf_processing")
        assert sent[-1]["type"] == "document"

    def test_chats_are_independent(self):
        h = Harness()

        asyncio.run(h.submit(_msg("1", "A"), _msg("2", "B", chat_id=OTHER_CHAT_ID)))

        assert h.transport.texts(CHAT_ID) == [render("payment_ask_cpf")]
        assert h.transport.texts(OTHER_CHAT_ID) == [render("support_menu")]

    def test_failure_notifies_user_and_next_message_proceeds(self):
        h = Harness()
        original = h.bot.dispatcher.dispatch
        seen = []

        async def flaky(chat_id, text):
            seen.append(get_correlation_id())
            if len(seen) == 1:
                raise KeyError("boom")
            await original(chat_id, text)

        h.bot.dispatcher.dispatch = flaky

        asyncio.run(h.submit(_msg("1", "A"), _msg("2", "B")))

        assert seen == ["A", "B"]
        assert h.transport.texts() == [
            classify_error(KeyError("boom")).user_message,
            render("support_menu"),
        ]
        assert get_correlation_id() == ""

    def test_undeliverable_failure_notice_is_swallowed(self):
        h = Harness()
        h.transport.fail_with = ConnectionError("evolution down")

        asyncio.run(h.submit(_msg("oi")))

        assert h.bot.pipeline.pending == 0
        assert h.transport.sent == []
