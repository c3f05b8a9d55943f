"""Evolution API adapter - validate and normalize webhook payloads.

Accepts the Evolution API webhook body ({"event": "messages.upsert", "data": ...})
and the raw Baileys upsert ({"type": "notify", "messages": [...]}). Each item
shares the Baileys WAMessage shape: key.{remoteJid, fromMe, id}, pushName,
message, messageType, messageTimestamp.
"""

from collections.abc import Iterator
from typing import Any

from ispbot.infra.hashing import hash_identifier
from ispbot.infra.time import epoch_millis
from ispbot.observability.logging import get_logger
from ispbot.observability.redaction import safe_log_context

from .models import InboundMessage

logger = get_logger(__name__)

UPSERT_EVENTS = frozenset({"messages.upsert", "MESSAGES_UPSERT"})

PERSONAL_JID_SUFFIX = "@s.whatsapp.net"
CHAT_ID_SUFFIX = "@c.us"
GROUP_SUFFIX = "@g.us"
BROADCAST_MARKERS = ("@broadcast", "status@")

PROTOCOL_KEYS = ("protocolMessage", "senderKeyDistributionMessage")
REVOKE_MARKER = "REVOKE"

AUDIO_PLACEHOLDER = "[áudio]"
VIDEO_PLACEHOLDER = "[vídeo]"
GENERIC_PLACEHOLDER = "[mensagem]"


class InvalidPayloadError(Exception):
    """Raised when the webhook body has an invalid shape."""

    pass


def to_chat_id(jid: str) -> str:
    """Map a transport JID to our chat id (personal JIDs become @c.us)."""
    if jid.endswith(PERSONAL_JID_SUFFIX):
        return jid[: -len(PERSONAL_JID_SUFFIX)] + CHAT_ID_SUFFIX
    return jid


def to_recipient(chat_id: str) -> str:
    """Recipient accepted by the send endpoints: bare number, else the full JID."""
    for suffix in (CHAT_ID_SUFFIX, PERSONAL_JID_SUFFIX):
        if chat_id.endswith(suffix):
            return chat_id[: -len(suffix)]
    return chat_id


def is_group_or_broadcast(jid: str) -> bool:
    return jid.endswith(GROUP_SUFFIX) or any(marker in jid for marker in BROADCAST_MARKERS)


def is_protocol_message(item: dict[str, Any], message: dict[str, Any]) -> bool:
    """System sub-messages: key distribution, protocol events, revocations."""
    if any(key in message for key in PROTOCOL_KEYS):
        return True
    stub_type = item.get("messageStubType")
    return isinstance(stub_type, str) and stub_type.upper() == REVOKE_MARKER


def extract_text(message: dict[str, Any]) -> str:
    """First non-empty text or caption, else a placeholder for the media kind."""
    extended = message.get("extendedTextMessage") or {}
    document = message.get("documentMessage") or {}
    image = message.get("imageMessage") or {}

    for candidate in (
        message.get("conversation"),
        extended.get("text"),
        document.get("caption"),
        image.get("caption"),
    ):
        if isinstance(candidate, str) and candidate:
            return candidate

    if "audioMessage" in message:
        return AUDIO_PLACEHOLDER
    if "videoMessage" in message:
        return VIDEO_PLACEHOLDER
    return GENERIC_PLACEHOLDER


def parse_timestamp_millis(raw: Any) -> int:
    """Transport timestamp (seconds, numeric string or Long-like {"low": s}) in millis.

    Missing or unreadable timestamps count as "now".
    """
    if isinstance(raw, dict):
        raw = raw.get("low")
    elif raw is not None and hasattr(raw, "low"):
        raw = raw.low

    if isinstance(raw, bool):
        return epoch_millis()
    if isinstance(raw, (int, float)):
        return int(raw * 1000)
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip()) * 1000
    return epoch_millis()


def _message_kind(item: dict[str, Any], message: dict[str, Any]) -> str:
    kind = item.get("messageType")
    if isinstance(kind, str) and kind:
        return kind
    return next(iter(message), "unknown")


def _skip(reason: str, jid: str | None = None) -> None:
    logger.debug(
        "inbound event skipped",
        extra={
            "extra_fields": safe_log_context(
                reason=reason,
                chat_hash=hash_identifier(jid) if jid else None,
            )
        },
    )


def parse_message(item: Any) -> InboundMessage | None:
    """Build an InboundMessage from one upsert item.

    Returns None when the item carries no message payload or no usable chat
    id. Group/broadcast and protocol flags are set, not filtered, here.
    """
    if not isinstance(item, dict):
        return None

    message = item.get("message")
    if not isinstance(message, dict) or not message:
        _skip("no_message")
        return None

    key = item.get("key") or {}
    jid = key.get("remoteJid")
    if not jid or not isinstance(jid, str):
        _skip("invalid_chat_id")
        return None

    chat_id = to_chat_id(jid)
    participant = key.get("participant")
    sender_id = to_chat_id(participant) if isinstance(participant, str) and participant else chat_id
    push_name = item.get("pushName")
    message_id = key.get("id")

    return InboundMessage(
        message_id=message_id if isinstance(message_id, str) else "",
        chat_id=chat_id,
        sender_id=sender_id,
        text=extract_text(message),
        timestamp_millis=parse_timestamp_millis(item.get("messageTimestamp")),
        from_self=bool(key.get("fromMe")),
        is_group_or_broadcast=is_group_or_broadcast(jid),
        is_protocol_message=is_protocol_message(item, message),
        push_name=push_name if isinstance(push_name, str) else "",
        kind=_message_kind(item, message),
    )


def _upsert_items(payload: dict[str, Any]) -> list[Any]:
    if "event" in payload:
        if payload.get("event") not in UPSERT_EVENTS:
            return []
        data = payload.get("data")
        if isinstance(data, dict) and isinstance(data.get("messages"), list):
            return data["messages"]
        if isinstance(data, list):
            return data
        return [data] if data is not None else []

    if "messages" in payload:
        if payload.get("type", "notify") != "notify":
            return []
        messages = payload.get("messages")
        if not isinstance(messages, list):
            raise InvalidPayloadError("messages must be a list")
        return messages

    raise InvalidPayloadError("not an upsert payload")


def normalize_batch(payload: Any) -> Iterator[InboundMessage]:
    """Yield the messages of an upsert that may reach the bot, in order.

    Drops, in order: items without a message, items without a chat id, group
    and broadcast chats, protocol/system messages. Self-sent messages are kept
    (flagged) so the caller can record them.

    Raises:
        InvalidPayloadError: If the body is not a recognizable upsert.
    """
    if not isinstance(payload, dict):
        raise InvalidPayloadError("payload must be an object")

    for item in _upsert_items(payload):
        msg = parse_message(item)
        if msg is None:
            continue
        if msg.is_group_or_broadcast:
            _skip("group_or_broadcast", msg.chat_id)
            continue
        if msg.is_protocol_message:
            _skip("protocol_message", msg.chat_id)
            continue
        yield msg
