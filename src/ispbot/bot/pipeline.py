"""Inbound message pipeline: record, gate, and dispatch per chat in order.

submit() records the message and schedules its handling as a task. Tasks of
the same chat queue on that chat's FIFO lock, so one chat is handled strictly
in arrival order (even while an earlier message waits on retries) and other
chats proceed concurrently.

Gates, applied under the chat lock:
1. age: messages older than MAX_MESSAGE_AGE are dropped
2. dedup: same text on the same chat within 5s is dropped
3. rate limit: under 1s since our last reply is dropped, menu digits excepted

Security: NEVER log message text or chat ids. Only hashes and lengths.
"""

import asyncio

from ispbot.domain.errors import classify_error
from ispbot.domain.text import normalize_text
from ispbot.infra.dedup import DedupGuard
from ispbot.infra.hashing import hash_identifier
from ispbot.infra.message_log import MessageLog
from ispbot.infra.rate_limit import RateLimiter
from ispbot.infra.state_store import KeyedLocks
from ispbot.infra.time import Clock, epoch_seconds
from ispbot.observability.correlation import (
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from ispbot.observability.logging import get_logger
from ispbot.observability.redaction import safe_log_context
from ispbot.whatsapp.models import InboundMessage
from ispbot.whatsapp.outbound import OutboundSender

from .dispatcher import Dispatcher

logger = get_logger(__name__)

MAX_MESSAGE_AGE = 5 * 60.0


class InboundPipeline:
    """Entry point for normalized inbound messages."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        sender: OutboundSender,
        message_log: MessageLog,
        dedup: DedupGuard,
        rate_limiter: RateLimiter,
        clock: Clock = epoch_seconds,
    ) -> None:
        self._dispatcher = dispatcher
        self._sender = sender
        self._log = message_log
        self._dedup = dedup
        self._rate_limiter = rate_limiter
        self._clock = clock
        self._locks = KeyedLocks()
        self._tasks: set[asyncio.Task[None]] = set()

    async def submit(self, msg: InboundMessage) -> bool:
        """Record msg and schedule it for dispatch.

        Returns True if the message was scheduled, False for self-sent ones.
        """
        received_at = int(self._clock() * 1000)

        if msg.from_self:
            # Our own replies echo back; only agent-typed messages get recorded
            if not self._sender.sent_by_bot(msg.message_id):
                await self._log.record_outgoing(msg.chat_id, msg.text, received_at)
            return False

        await self._log.record_incoming(msg.chat_id, msg.text, received_at, msg.push_name)

        task = asyncio.create_task(self._process(msg))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def drain(self) -> None:
        """Wait until every scheduled message has been handled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _process(self, msg: InboundMessage) -> None:
        token = set_correlation_id(msg.message_id or generate_correlation_id())
        try:
            async with self._locks.hold(msg.chat_id):
                try:
                    await self._handle(msg)
                except Exception as e:
                    # One failed message must not stop the chat or the others
                    logger.exception(
                        "inbound message handling failed",
                        extra={
                            "extra_fields": safe_log_context(
                                chat_hash=hash_identifier(msg.chat_id),
                                kind=msg.kind,
                                error_type=type(e).__name__,
                            )
                        },
                    )
                    await self._notify_failure(msg.chat_id, e)
        finally:
            reset_correlation_id(token)

    async def _notify_failure(self, chat_id: str, error: Exception) -> None:
        try:
            await self._sender.send_text(chat_id, classify_error(error).user_message)
        except Exception as e:
            logger.warning(
                "failure notice not delivered",
                extra={
                    "extra_fields": safe_log_context(
                        chat_hash=hash_identifier(chat_id),
                        error_type=type(e).__name__,
                    )
                },
            )

    async def _handle(self, msg: InboundMessage) -> None:
        log_ctx = safe_log_context(
            chat_hash=hash_identifier(msg.chat_id),
            kind=msg.kind,
            text_len=len(msg.text),
        )

        age = self._clock() - msg.timestamp_millis / 1000
        if age > MAX_MESSAGE_AGE:
            logger.info(
                "stale message dropped",
                extra={"extra_fields": safe_log_context(**log_ctx, age_seconds=int(age))},
            )
            return

        if await self._dedup.is_duplicate(msg.chat_id, msg.text):
            logger.info("duplicate message dropped", extra={"extra_fields": log_ctx})
            return

        if not await self._rate_limiter.allows(msg.chat_id, normalize_text(msg.text)):
            logger.info("rate limited message dropped", extra={"extra_fields": log_ctx})
            return

        logger.info("dispatching message", extra={"extra_fields": log_ctx})
        await self._dispatcher.dispatch(msg.chat_id, msg.text)
