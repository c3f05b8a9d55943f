"""Outbound WhatsApp messaging via Evolution API.

Security: NEVER log recipients or text. Only log hashes and lengths.
"""

import asyncio
import base64
import json
import os
import time
import urllib.error
import urllib.request
from collections import deque
from typing import Any, Callable, Literal, Protocol

from ispbot.infra.hashing import hash_identifier
from ispbot.infra.message_log import Attachment, MessageLog
from ispbot.infra.rate_limit import RateLimiter
from ispbot.infra.time import epoch_millis
from ispbot.observability.correlation import get_correlation_id
from ispbot.observability.logging import get_logger
from ispbot.observability.redaction import safe_log_context

from .evolution_adapter import to_recipient

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds); media uploads get more room
HTTP_TIMEOUT = 5
MEDIA_HTTP_TIMEOUT = 30

# Retry config
MAX_RETRIES = 1
RETRY_DELAY = 0.2

MediaType = Literal["image", "document"]

PNG_MIME = "image/png"
PDF_MIME = "application/pdf"
IMAGE_PLACEHOLDER = "[imagem]"

# Provider ids of our own sends, to tell bot echoes from agent-typed messages
RECENT_IDS_LIMIT = 500


class Transport(Protocol):
    """Delivers messages to a chat. Returns the provider's message id."""

    async def send_text(self, chat_id: str, text: str) -> str:
        ...

    async def send_media(
        self,
        chat_id: str,
        media: bytes,
        *,
        media_type: MediaType,
        file_name: str,
        mime_type: str,
        caption: str = "",
    ) -> str:
        ...


def _get_config() -> dict[str, str]:
    """Get Evolution API config from environment.

    Required env vars:
    - EVOLUTION_BASE_URL: Base URL (e.g., http://localhost:8080)
    - EVOLUTION_INSTANCE: Instance name
    - EVOLUTION_API_KEY: API token
    """
    base_url = os.environ.get("EVOLUTION_BASE_URL", "")
    instance = os.environ.get("EVOLUTION_INSTANCE", "")
    api_key = os.environ.get("EVOLUTION_API_KEY", "")

    if not base_url or not instance or not api_key:
        raise RuntimeError(
            "Missing Evolution config: EVOLUTION_BASE_URL, EVOLUTION_INSTANCE, EVOLUTION_API_KEY"
        )

    return {
        "base_url": base_url.rstrip("/"),
        "instance": instance,
        "api_key": api_key,
    }


def _do_request(url: str, data: bytes, headers: dict[str, str], timeout: float) -> dict[str, Any]:
    """Execute HTTP POST request. Raises on error."""
    req = urllib.request.Request(url, data=data, headers=headers, method="POST")
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        body = resp.read().decode()
    return json.loads(body) if body else {}


def _message_id(response: dict[str, Any]) -> str:
    key = response.get("key")
    if isinstance(key, dict) and isinstance(key.get("id"), str):
        return key["id"]
    return ""


class EvolutionTransport:
    """Transport over the Evolution API REST endpoints.

    Each send runs in a worker thread; network errors and 5xx get one retry.
    """

    def __init__(self, config: dict[str, str] | None = None) -> None:
        self._config = config or _get_config()

    def _post(self, action: str, payload: dict[str, Any], timeout: float) -> str:
        url = f"{self._config['base_url']}/message/{action}/{self._config['instance']}"
        headers = {
            "Content-Type": "application/json",
            "apikey": self._config["api_key"],
        }
        data = json.dumps(payload).encode("utf-8")

        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            action=action,
            to_hash=hash_identifier(payload["number"]),
            payload_len=len(data),
        )

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = _do_request(url, data, headers, timeout)
                logger.info(
                    "outbound message sent",
                    extra={"extra_fields": safe_log_context(**log_ctx, attempt=attempt)},
                )
                return _message_id(response)
            except (urllib.error.URLError, TimeoutError) as e:
                # HTTPError is a URLError; only 5xx is worth retrying
                is_5xx = isinstance(e, urllib.error.HTTPError) and 500 <= e.code < 600
                is_network = not isinstance(e, urllib.error.HTTPError)

                if attempt < MAX_RETRIES and (is_5xx or is_network):
                    logger.warning(
                        "outbound send failed, retrying",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx, attempt=attempt, error_type=type(e).__name__
                            )
                        },
                    )
                    time.sleep(RETRY_DELAY)
                    continue

                logger.error(
                    "outbound send failed",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, attempt=attempt, error_type=type(e).__name__
                        )
                    },
                )
                raise

        raise RuntimeError("send loop ended without an attempt")

    async def send_text(self, chat_id: str, text: str) -> str:
        payload = {"number": to_recipient(chat_id), "text": text}
        return await asyncio.to_thread(self._post, "sendText", payload, HTTP_TIMEOUT)

    async def send_media(
        self,
        chat_id: str,
        media: bytes,
        *,
        media_type: MediaType,
        file_name: str,
        mime_type: str,
        caption: str = "",
    ) -> str:
        payload = {
            "number": to_recipient(chat_id),
            "mediatype": media_type,
            "mimetype": mime_type,
            "caption": caption,
            "media": base64.b64encode(media).decode("ascii"),
            "fileName": file_name,
        }
        return await asyncio.to_thread(self._post, "sendMedia", payload, MEDIA_HTTP_TIMEOUT)


class OutboundSender:
    """Sends through a Transport, then records the message and the response time.

    Recording happens only after the transport confirmed the send. The message
    log is expected to be best-effort (see BestEffortMessageLog).
    """

    def __init__(
        self,
        transport: Transport,
        message_log: MessageLog,
        rate_limiter: RateLimiter,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        self._transport = transport
        self._log = message_log
        self._rate_limiter = rate_limiter
        self._clock = clock
        self._recent_ids: deque[str] = deque(maxlen=RECENT_IDS_LIMIT)

    def sent_by_bot(self, message_id: str) -> bool:
        """True if message_id is one of our recent sends (a transport echo)."""
        return bool(message_id) and message_id in self._recent_ids

    async def _after_send(
        self,
        chat_id: str,
        message_id: str,
        text: str,
        attachment: Attachment | None = None,
    ) -> None:
        if message_id:
            self._recent_ids.append(message_id)
        await self._log.record_outgoing(chat_id, text, self._clock(), attachment)
        await self._rate_limiter.record_response(chat_id)

    async def send_text(self, chat_id: str, text: str) -> str:
        message_id = await self._transport.send_text(chat_id, text)
        await self._after_send(chat_id, message_id, text)
        return message_id

    async def send_image(
        self, chat_id: str, image: bytes, caption: str = "", file_name: str = "pix.png"
    ) -> str:
        message_id = await self._transport.send_media(
            chat_id,
            image,
            media_type="image",
            file_name=file_name,
            mime_type=PNG_MIME,
            caption=caption,
        )
        await self._after_send(
            chat_id, message_id, caption or IMAGE_PLACEHOLDER, Attachment(file_name, PNG_MIME)
        )
        return message_id

    async def send_document(
        self,
        chat_id: str,
        document: bytes,
        file_name: str,
        caption: str = "",
        mime_type: str = PDF_MIME,
    ) -> str:
        message_id = await self._transport.send_media(
            chat_id,
            document,
            media_type="document",
            file_name=file_name,
            mime_type=mime_type,
            caption=caption,
        )
        await self._after_send(
            chat_id, message_id, caption or f"[arquivo] {file_name}", Attachment(file_name, mime_type)
        )
        return message_id
