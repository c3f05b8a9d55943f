"""WhatsApp message models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class InboundMessage:
    """One inbound chat event after payload normalization.

    ATENÇÃO PII:
    - `chat_id`, `sender_id`, `push_name` and `text` are personal data
    - Keep in memory only; NEVER log them (log hash_identifier(chat_id) and len(text))
    """

    message_id: str
    chat_id: str
    sender_id: str
    text: str
    timestamp_millis: int
    from_self: bool = False
    is_group_or_broadcast: bool = False
    is_protocol_message: bool = False
    push_name: str = ""
    kind: str = "unknown"
