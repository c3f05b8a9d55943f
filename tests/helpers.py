"""Shared test doubles for the bot tests.

Regular classes and functions (not fixtures), imported by test modules.
"""

from __future__ import annotations

import base64
from datetime import date
from typing import Any

from ispbot.billing.models import Client, Service
from ispbot.bot.service import BotService, build_service
from ispbot.domain.bills import Bill
from ispbot.domain.errors import ClientNotFoundError
from ispbot.infra.message_log import InMemoryMessageLog
from ispbot.infra.retry import RetryRunner

# Valid CPF (check digits 3 and 5)
VALID_CPF = "11144477735"

CHAT_ID = "5511000000001@c.us"
OTHER_CHAT_ID = "5511000000002@c.us"

TODAY = date(2026, 3, 15)
START = 1_773_576_000.0

PIX_PAYLOAD = "00020126580014br.gov.bcb.pix0136chave-pix-teste5204000053039865802BR"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 120
PIX_IMAGE_B64 = base64.b64encode(PNG_BYTES).decode("ascii")
PDF_BYTES = b"%PDF-1.4 boleto de teste"


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def exception(self, *args, **kwargs):
        self._record("exception", *args, **kwargs)

    def debug(self, *args, **kwargs):
        self._record("debug", *args, **kwargs)

    def get_all_logged_content(self) -> str:
        """Concatenate all args and kwargs from all calls into one string."""
        parts = []
        for _, args, kwargs in self.calls:
            parts.append(str(args))
            parts.append(str(kwargs))
        return " ".join(parts)

    def messages(self, level: str | None = None) -> list[str]:
        return [args[0] for lvl, args, _ in self.calls if level is None or lvl == level]

    def has_extra_field(self, key: str) -> bool:
        """Check if any call has the given key in extra_fields."""
        for _, _, kwargs in self.calls:
            extra = kwargs.get("extra", {})
            if key in extra.get("extra_fields", {}):
                return True
        return False


class ManualClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = START):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that returns at once and remembers the delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeTransport:
    """Transport that records every send instead of delivering it."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.fail_with: Exception | None = None

    def _next_id(self) -> str:
        return f"BOT{len(self.sent):04d}"

    async def send_text(self, chat_id: str, text: str) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        message_id = self._next_id()
        self.sent.append({"type": "text", "chat_id": chat_id, "text": text, "id": message_id})
        return message_id

    async def send_media(
        self,
        chat_id: str,
        media: bytes,
        *,
        media_type: str,
        file_name: str,
        mime_type: str,
        caption: str = "",
    ) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        message_id = self._next_id()
        self.sent.append(
            {
                "type": media_type,
                "chat_id": chat_id,
                "media": media,
                "file_name": file_name,
                "mime_type": mime_type,
                "caption": caption,
                "id": message_id,
            }
        )
        return message_id

    def texts(self, chat_id: str | None = None) -> list[str]:
        return [
            s["text"]
            for s in self.sent
            if s["type"] == "text" and (chat_id is None or s["chat_id"] == chat_id)
        ]

    def last_text(self) -> str:
        return self.texts()[-1]


def overdue_bill(bill_id: str = "B1", due: str = "2026-02-10", **extra: Any) -> Bill:
    return Bill.model_validate(
        {"id": bill_id, "dataVencimento": due, "valor": "89.90", "statusDescricao": "Em aberto", **extra}
    )


class FakeBackend:
    """In-memory BillingBackend.

    `failures` maps an operation name to exceptions raised, one per call,
    before the operation starts succeeding.
    """

    def __init__(
        self,
        clients: dict[str, Client] | None = None,
        services: list[Service] | None = None,
        bills: list[Bill] | None = None,
        pix_response: Any = None,
        pdf: bytes = PDF_BYTES,
    ):
        self.clients = (
            clients
            if clients is not None
            else {VALID_CPF: Client(id="42", nome="Maria Souza", documento=VALID_CPF)}
        )
        self.services = (
            services if services is not None else [Service(id="7", status="ativo")]
        )
        self.bills = bills if bills is not None else [overdue_bill()]
        self.pix_response = (
            pix_response
            if pix_response is not None
            else {"data": {"payload": PIX_PAYLOAD, "base64": PIX_IMAGE_B64}}
        )
        self.pdf = pdf
        self.calls: list[tuple[str, tuple]] = []
        self.failures: dict[str, list[Exception]] = {}

    def _call(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]

    async def lookup_client_by_document(self, digits: str) -> Client:
        self._call("lookup_client_by_document", digits)
        client = self.clients.get(digits)
        if client is None:
            raise ClientNotFoundError("client not found")
        return client

    async def list_services(self, client_id: str) -> list[Service]:
        self._call("list_services", client_id)
        return self.services

    async def list_bills(
        self, client_id: str, service_id: str, product_type: str = "INTERNET"
    ) -> list[Bill]:
        self._call("list_bills", client_id, service_id, product_type)
        return self.bills

    async def generate_pix_charge(
        self, client_id: str, service_id: str, bill_id: str
    ) -> dict[str, Any]:
        self._call("generate_pix_charge", client_id, service_id, bill_id)
        return self.pix_response

    async def render_boleto_pdf(self, client_id: str, service_id: str, bill_id: str) -> bytes:
        self._call("render_boleto_pdf", client_id, service_id, bill_id)
        return self.pdf


def make_bot(
    backend: FakeBackend | None = None,
    transport: FakeTransport | None = None,
    clock: ManualClock | None = None,
    today: date = TODAY,
    sleep: RecordingSleep | None = None,
    message_log: InMemoryMessageLog | None = None,
) -> BotService:
    """Bot wired with fakes, a manual clock and instant sleeps."""
    clock = clock or ManualClock()
    sleep = sleep or RecordingSleep()
    return build_service(
        transport=transport or FakeTransport(),
        backend=backend or FakeBackend(),
        message_log=message_log if message_log is not None else InMemoryMessageLog(),
        retry=RetryRunner(timeout=5.0, sleep=sleep),
        clock=clock,
        today=lambda: today,
        sleep=sleep,
    )


def upsert_item(
    text: str | None = "oi",
    chat_jid: str = "5511000000001@s.whatsapp.net",
    message_id: str = "MSG001",
    timestamp: Any = int(START),
    from_me: bool = False,
    message: dict[str, Any] | None = None,
    push_name: str = "Maria",
) -> dict[str, Any]:
    """One Baileys WAMessage as found in an upsert."""
    return {
        "key": {"id": message_id, "remoteJid": chat_jid, "fromMe": from_me},
        "pushName": push_name,
        "messageType": "conversation",
        "messageTimestamp": timestamp,
        "message": message if message is not None else {"conversation": text},
    }


def evolution_payload(*items: dict[str, Any]) -> dict[str, Any]:
    """Evolution API webhook body for one or more upsert items."""
    data: Any = items[0] if len(items) == 1 else list(items)
    return {"event": "messages.upsert", "instance": "test-instance", "data": data}
