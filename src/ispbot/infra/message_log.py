"""Conversation log for the attendants' inbox.

Every message received or sent is appended here so human agents can follow
the bot's conversations. Logging is best-effort: a failing log must never
break message handling, so callers go through BestEffortMessageLog.

Schema (see migrations): chats(id, name, unread_count, last_message_at,
updated_at) and messages(id, chat_id, direction, content, timestamp,
file_name, file_type).
"""

import asyncio
import os
import uuid
from dataclasses import dataclass
from typing import Literal, Protocol

from ispbot.infra.db import txn
from ispbot.infra.hashing import hash_identifier
from ispbot.observability.logging import get_logger
from ispbot.observability.redaction import safe_log_context

logger = get_logger(__name__)

Direction = Literal["in", "out"]


@dataclass(frozen=True)
class Attachment:
    """Metadata of a file sent along with an outgoing message."""

    file_name: str
    mime_type: str


@dataclass(frozen=True)
class LoggedMessage:
    chat_id: str
    direction: Direction
    text: str
    timestamp: int
    display_name: str = ""
    attachment: Attachment | None = None


class MessageLog(Protocol):
    """Append-only record of a chat's messages."""

    async def record_incoming(
        self, chat_id: str, text: str, timestamp: int, display_name: str = ""
    ) -> None:
        ...

    async def record_outgoing(
        self,
        chat_id: str,
        text: str,
        timestamp: int,
        attachment: Attachment | None = None,
    ) -> None:
        ...


class InMemoryMessageLog:
    """MessageLog kept in process memory (dev and tests)."""

    def __init__(self) -> None:
        self.messages: list[LoggedMessage] = []
        self.chat_names: dict[str, str] = {}
        self.unread: dict[str, int] = {}

    async def record_incoming(
        self, chat_id: str, text: str, timestamp: int, display_name: str = ""
    ) -> None:
        if display_name:
            self.chat_names[chat_id] = display_name
        self.unread[chat_id] = self.unread.get(chat_id, 0) + 1
        self.messages.append(
            LoggedMessage(chat_id, "in", text, timestamp, display_name=display_name)
        )

    async def record_outgoing(
        self,
        chat_id: str,
        text: str,
        timestamp: int,
        attachment: Attachment | None = None,
    ) -> None:
        self.messages.append(LoggedMessage(chat_id, "out", text, timestamp, attachment=attachment))

    def for_chat(self, chat_id: str) -> list[LoggedMessage]:
        return [m for m in self.messages if m.chat_id == chat_id]


_UPSERT_CHAT = """
    INSERT INTO chats (id, name, unread_count, last_message_at, updated_at)
    VALUES (%s, %s, %s, now(), now())
    ON CONFLICT (id) DO UPDATE
    SET name = CASE WHEN EXCLUDED.name = '' THEN chats.name ELSE EXCLUDED.name END,
        unread_count = chats.unread_count + EXCLUDED.unread_count,
        last_message_at = now(),
        updated_at = now()
"""

_INSERT_MESSAGE = """
    INSERT INTO messages (id, chat_id, direction, content, timestamp, file_name, file_type)
    VALUES (%s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (id) DO NOTHING
"""


class PostgresMessageLog:
    """MessageLog backed by Postgres (psycopg2, one short transaction per message)."""

    def _write(self, message: LoggedMessage) -> None:
        if message.direction == "in":
            message_id = f"{message.chat_id}:{message.timestamp}"
        else:
            # Several replies can share a millisecond
            message_id = f"{message.chat_id}:out:{message.timestamp}:{uuid.uuid4().hex[:8]}"
        unread_increment = 1 if message.direction == "in" else 0

        with txn() as cur:
            cur.execute(_UPSERT_CHAT, (message.chat_id, message.display_name, unread_increment))
            cur.execute(
                _INSERT_MESSAGE,
                (
                    message_id,
                    message.chat_id,
                    message.direction,
                    message.text,
                    message.timestamp,
                    message.attachment.file_name if message.attachment else None,
                    message.attachment.mime_type if message.attachment else None,
                ),
            )

    async def record_incoming(
        self, chat_id: str, text: str, timestamp: int, display_name: str = ""
    ) -> None:
        message = LoggedMessage(chat_id, "in", text, timestamp, display_name=display_name)
        await asyncio.to_thread(self._write, message)

    async def record_outgoing(
        self,
        chat_id: str,
        text: str,
        timestamp: int,
        attachment: Attachment | None = None,
    ) -> None:
        message = LoggedMessage(chat_id, "out", text, timestamp, attachment=attachment)
        await asyncio.to_thread(self._write, message)


class BestEffortMessageLog:
    """Wraps a MessageLog and swallows (but logs) its failures."""

    def __init__(self, inner: MessageLog) -> None:
        self._inner = inner

    async def record_incoming(
        self, chat_id: str, text: str, timestamp: int, display_name: str = ""
    ) -> None:
        try:
            await self._inner.record_incoming(chat_id, text, timestamp, display_name)
        except Exception as e:
            self._log_failure("in", chat_id, e)

    async def record_outgoing(
        self,
        chat_id: str,
        text: str,
        timestamp: int,
        attachment: Attachment | None = None,
    ) -> None:
        try:
            await self._inner.record_outgoing(chat_id, text, timestamp, attachment)
        except Exception as e:
            self._log_failure("out", chat_id, e)

    @staticmethod
    def _log_failure(direction: Direction, chat_id: str, error: Exception) -> None:
        logger.warning(
            "message log write failed",
            extra={
                "extra_fields": safe_log_context(
                    direction=direction,
                    chat_hash=hash_identifier(chat_id),
                    error_type=type(error).__name__,
                )
            },
        )


def create_message_log() -> BestEffortMessageLog:
    """Build the configured log (MESSAGE_LOG_BACKEND=memory|postgres)."""
    backend = os.environ.get("MESSAGE_LOG_BACKEND", "memory")
    if backend == "postgres":
        return BestEffortMessageLog(PostgresMessageLog())
    if backend != "memory":
        raise RuntimeError(f"Unknown MESSAGE_LOG_BACKEND: {backend}")
    return BestEffortMessageLog(InMemoryMessageLog())
