"""Payment lookup state and PIX charge extraction.

PaymentState caches the result of a successful CPF lookup (client, service
and selected bill) so the PIX/Boleto choice that follows does not hit the
billing API again.

PIX responses differ between billing vendors and API versions. The candidate
field names are declared once below, in priority order, and a single
extractor walks them.
"""

import base64
import binascii
import dataclasses
from dataclasses import dataclass
from typing import Any

from ispbot.infra.state_store import InMemoryStateStore, StateStore
from ispbot.infra.time import Clock, epoch_seconds

PAYMENT_STATE_IDLE_EXPIRY = 60 * 60.0

DEFAULT_CLIENT_NAME = "cliente"


@dataclass(frozen=True)
class PaymentState:
    """Lookup result kept between the CPF step and the payment choice."""

    client_id: str
    service_id: str
    bill_id: str
    client_name: str = DEFAULT_CLIENT_NAME
    last_activity: float = 0.0


class PaymentStateStore:
    """Per-chat PaymentState with idle eviction."""

    def __init__(
        self,
        store: StateStore[PaymentState] | None = None,
        clock: Clock = epoch_seconds,
        max_idle: float = PAYMENT_STATE_IDLE_EXPIRY,
    ) -> None:
        self._store: StateStore[PaymentState] = (
            store if store is not None else InMemoryStateStore()
        )
        self._clock = clock
        self._max_idle = max_idle

    async def get(self, chat_id: str) -> PaymentState | None:
        return await self._store.get(chat_id)

    async def set(self, chat_id: str, state: PaymentState) -> PaymentState:
        stamped = dataclasses.replace(state, last_activity=self._clock())
        await self._store.set(chat_id, stamped)
        return stamped

    async def delete(self, chat_id: str) -> bool:
        return await self._store.delete(chat_id)

    def sweep(self) -> int:
        now = self._clock()
        return self._store.sweep(
            lambda _chat_id, state: now - state.last_activity > self._max_idle
        )


@dataclass(frozen=True)
class CandidateField:
    """Ordered field names to probe, and the minimum length of a usable value."""

    names: tuple[str, ...]
    min_length: int


# Copy-and-paste ("copia e cola") EMV payload
PIX_PAYLOAD_FIELD = CandidateField(
    names=(
        "payload",
        "emv",
        "qrcode",
        "qrCode",
        "qr_code",
        "codigo",
        "chave",
        "copyPaste",
        "copiaecola",
        "copiaECola",
    ),
    min_length=11,
)

# Base64 QR code image, with or without a data-URL header
PIX_IMAGE_FIELD = CandidateField(
    names=("base64", "imagem", "imagemQrcode", "image", "imageBase64"),
    min_length=101,
)

DATA_URL_PNG_HEADER = "data:image/png;base64,"


@dataclass(frozen=True)
class PixCharge:
    """What a PIX generation call gave us. Either part may be missing."""

    payload: str | None = None
    image_data_url: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.payload and not self.image_data_url

    def image_bytes(self) -> bytes | None:
        """Decoded QR image, or None when absent or not valid base64."""
        if not self.image_data_url:
            return None
        encoded = self.image_data_url
        if "," in encoded:
            encoded = encoded.split(",", 1)[1]
        # Some vendors wrap the base64 body in lines
        encoded = "".join(encoded.split())
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            return None


def _probe(obj: dict[str, Any], field: CandidateField) -> str | None:
    for name in field.names:
        value = obj.get(name)
        if isinstance(value, str) and len(value) >= field.min_length:
            return value
    return None


def extract_pix_charge(response: Any) -> PixCharge:
    """Pull the PIX payload and QR image out of a billing API response.

    Accepts the object itself or one wrapped in {"data": {...}}. A raw base64
    image gets a PNG data-URL header.
    """
    obj = response.get("data") if isinstance(response, dict) and response.get("data") else response
    if not isinstance(obj, dict):
        return PixCharge()

    payload = _probe(obj, PIX_PAYLOAD_FIELD)

    image = _probe(obj, PIX_IMAGE_FIELD)
    if image is not None and not image.startswith("data:image"):
        image = f"{DATA_URL_PNG_HEADER}{image}"

    return PixCharge(payload=payload, image_data_url=image)
