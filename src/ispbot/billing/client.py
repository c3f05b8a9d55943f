"""Billing backend (ISPBox / ZcNet API v2) client.

The bot needs five calls: find a client by CPF, list the client's services,
list a service's bills, generate a PIX charge and render a boleto PDF.
BillingBackend is the async interface the bot depends on; ZcBillingClient
implements it over HTTP with requests, running each blocking call in a
worker thread.

Security: NEVER log documents (CPF) or client names. Only endpoint names,
status codes and timings.
"""

import asyncio
import base64
import binascii
import os
import threading
import time
from typing import Any, Protocol

import requests

from ispbot.billing.models import Client, Service
from ispbot.domain.bills import Bill
from ispbot.domain.errors import (
    ClientNotFoundError,
    InvalidDocumentError,
    InvalidUpstreamResponseError,
    UpstreamHTTPError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from ispbot.observability.logging import get_logger
from ispbot.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://zcnet.ispbox.com.br/api/v2"
DEFAULT_REQUEST_ID = "ispbox"
DEFAULT_SCOPE = " ".join(
    [
        "clientes.ler",
        "clientes.servicos.ler",
        "clientes.servicos.cobrancas.ler",
        "clientes.servicos.cobrancas.pagamento.formas.ler",
        "clientes.servicos.cobrancas.pagamento.pdf.gerar",
        "clientes.servicos.cobrancas.pagamento.qrcode.gerar",
    ]
)

# Default token lifetime when the auth response omits expires_in (seconds)
DEFAULT_TOKEN_TTL = 3600
# Refresh slightly before the advertised expiry
TOKEN_EXPIRY_MARGIN = 30

MIN_DOCUMENT_DIGITS = 8
CPF_LENGTH = 11

PRODUCT_INTERNET = "INTERNET"

_PDF_DATA_URL_PREFIXES = ("data:application/pdf;base64,", "data:application/pdf,")


class BillingBackend(Protocol):
    """Async interface to the billing/client service."""

    async def lookup_client_by_document(self, digits: str) -> Client:
        """Find the client owning a document. Raises ClientNotFoundError."""
        ...

    async def list_services(self, client_id: str) -> list[Service]:
        ...

    async def list_bills(
        self, client_id: str, service_id: str, product_type: str = PRODUCT_INTERNET
    ) -> list[Bill]:
        ...

    async def generate_pix_charge(
        self, client_id: str, service_id: str, bill_id: str
    ) -> dict[str, Any]:
        """Raw PIX response; see domain.payments.extract_pix_charge."""
        ...

    async def render_boleto_pdf(self, client_id: str, service_id: str, bill_id: str) -> bytes:
        ...


def _get_config() -> dict[str, Any]:
    """Get billing API config from environment.

    Required env vars:
    - ZC_CLIENT_ID: OAuth client id
    - ZC_CLIENT_SECRET: OAuth client secret

    Optional:
    - ZC_BASE_URL: API base URL (default: ZcNet production)
    - ZC_SCOPE: Space-separated OAuth scopes
    - ZC_REQUEST_ID: X-Request-ID header value (default: ispbox)
    - ZC_HTTP_TIMEOUT: Request timeout in seconds (default: 30)
    - ZC_AUTH_TIMEOUT: Token request timeout in seconds (default: 15)
    """
    client_id = os.environ.get("ZC_CLIENT_ID", "")
    client_secret = os.environ.get("ZC_CLIENT_SECRET", "")

    if not client_id or not client_secret:
        raise RuntimeError("Missing billing config: ZC_CLIENT_ID, ZC_CLIENT_SECRET")

    return {
        "base_url": os.environ.get("ZC_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        "client_id": client_id,
        "client_secret": client_secret,
        "scope": os.environ.get("ZC_SCOPE", DEFAULT_SCOPE),
        "request_id": os.environ.get("ZC_REQUEST_ID", DEFAULT_REQUEST_ID),
        "http_timeout": float(os.environ.get("ZC_HTTP_TIMEOUT", "30")),
        "auth_timeout": float(os.environ.get("ZC_AUTH_TIMEOUT", "15")),
    }


def _as_list(response: Any) -> list[Any]:
    """Accept both {"data": [...]} and bare list bodies."""
    if isinstance(response, dict) and isinstance(response.get("data"), list):
        return response["data"]
    if isinstance(response, list):
        return response
    return []


def _document_variations(digits: str) -> list[str]:
    """As typed, zero-padded to 11, and without leading zeros (deduplicated)."""
    variations: list[str] = []
    for candidate in (digits, digits.zfill(CPF_LENGTH), digits.lstrip("0")):
        if candidate and candidate not in variations:
            variations.append(candidate)
    return variations


def _error_details(response: requests.Response) -> tuple[str | None, str | None]:
    """(error code, description) from an error body, when it has one."""
    try:
        body = response.json()
    except ValueError:
        return None, None
    if not isinstance(body, dict):
        return None, None
    if isinstance(body.get("data"), dict):
        body = body["data"]
    code = body.get("error")
    description = body.get("errorDescription") or body.get("error_description") or body.get("hint")
    return (
        str(code) if code else None,
        str(description) if description else None,
    )


def _extract_pdf_base64(response: Any) -> str | None:
    if isinstance(response, str):
        return response
    if not isinstance(response, dict):
        return None
    data = response.get("data")
    if isinstance(data, dict) and isinstance(data.get("pdf"), str):
        return data["pdf"]
    if isinstance(data, str) and data:
        return data
    for key in ("pdf", "boleto"):
        if isinstance(response.get(key), str):
            return response[key]
    return None


def decode_pdf(encoded: str) -> bytes:
    """Decode a base64 PDF, with or without a data-URL prefix.

    Raises:
        InvalidUpstreamResponseError: If the content is not valid base64.
    """
    for prefix in _PDF_DATA_URL_PREFIXES:
        if encoded.startswith(prefix):
            encoded = encoded[len(prefix):]
            break
    encoded = "".join(encoded.split())
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidUpstreamResponseError("boleto PDF is not valid base64") from e


class ZcBillingClient:
    """BillingBackend over the ZcNet REST API (OAuth2 client credentials)."""

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config if config is not None else _get_config()
        self._session = session if session is not None else requests.Session()
        self._token: str | None = None
        self._token_expiry = 0.0
        # Calls run in worker threads; one token refresh at a time
        self._token_lock = threading.Lock()

    # -- auth -------------------------------------------------------------

    def _authenticate(self) -> str:
        url = f"{self._config['base_url']}/auth/token/ispbox"
        form = {
            "grant_type": "client_credentials",
            "client_id": self._config["client_id"],
            "client_secret": self._config["client_secret"],
            "scope": self._config["scope"],
        }
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "X-Request-ID": self._config["request_id"],
        }

        response = self._send(
            "POST",
            url,
            "auth",
            headers=headers,
            data=form,
            timeout=self._config["auth_timeout"],
        )
        body = self._parse(response)
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise InvalidUpstreamResponseError("auth response without access_token")

        ttl = body.get("expires_in") or DEFAULT_TOKEN_TTL
        self._token = str(token)
        self._token_expiry = time.time() + float(ttl) - TOKEN_EXPIRY_MARGIN
        logger.info(
            "billing token acquired",
            extra={"extra_fields": safe_log_context(expires_in=int(float(ttl)))},
        )
        return self._token

    def _get_token(self) -> str:
        with self._token_lock:
            if self._token and time.time() < self._token_expiry:
                return self._token
            return self._authenticate()

    def _invalidate_token(self) -> None:
        with self._token_lock:
            self._token = None
            self._token_expiry = 0.0

    # -- transport --------------------------------------------------------

    def _send(self, method: str, url: str, endpoint: str, **kwargs: Any) -> requests.Response:
        """Execute one HTTP request, mapping transport failures to UpstreamError."""
        started = time.monotonic()
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.Timeout as e:
            logger.warning(
                "billing request timed out",
                extra={"extra_fields": safe_log_context(endpoint=endpoint, method=method)},
            )
            raise UpstreamTimeoutError(f"timeout calling {endpoint}") from e
        except requests.ConnectionError as e:
            logger.warning(
                "billing request connection failed",
                extra={"extra_fields": safe_log_context(endpoint=endpoint, method=method)},
            )
            raise UpstreamUnavailableError(f"network error calling {endpoint}") from e

        elapsed_ms = int((time.monotonic() - started) * 1000)
        log_ctx = safe_log_context(
            endpoint=endpoint,
            method=method,
            status=response.status_code,
            elapsed_ms=elapsed_ms,
        )

        if response.status_code >= 400:
            error_code, description = _error_details(response)
            logger.warning("billing request failed", extra={"extra_fields": log_ctx})
            raise UpstreamHTTPError(
                f"HTTP {response.status_code} from {endpoint}",
                status_code=response.status_code,
                error_code=error_code,
                error_description=description,
            )

        logger.info("billing request ok", extra={"extra_fields": log_ctx})
        return response

    @staticmethod
    def _parse(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    def _request(
        self,
        method: str,
        path: str,
        endpoint: str,
        params: dict[str, str] | None = None,
    ) -> Any:
        """Authenticated JSON request. Drops the cached token on 401."""
        token = self._get_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "X-Request-ID": self._config["request_id"],
        }
        try:
            response = self._send(
                method,
                f"{self._config['base_url']}{path}",
                endpoint,
                headers=headers,
                params=params,
                timeout=self._config["http_timeout"],
            )
        except UpstreamHTTPError as e:
            if e.status_code == 401:
                self._invalidate_token()
            raise
        return self._parse(response)

    # -- operations (blocking) -------------------------------------------

    def _lookup_client(self, digits: str) -> Client:
        clean = "".join(ch for ch in digits if ch.isdigit())
        if len(clean) < MIN_DOCUMENT_DIGITS:
            raise InvalidDocumentError("document must have at least 8 digits")

        variations = _document_variations(clean)
        accepted = set(variations)

        for variation in variations:
            response = self._request(
                "GET", "/clientes", "clients.search", params={"pesquisa": variation}
            )
            for record in _as_list(response):
                if not isinstance(record, dict):
                    continue
                if str(record.get("documento", "")) in accepted and record.get("id"):
                    return Client.model_validate(record)

        raise ClientNotFoundError("no client matches document")

    def _list_services(self, client_id: str) -> list[Service]:
        response = self._request("GET", f"/clientes/{client_id}/servicos", "services.list")
        return [
            Service.model_validate(item)
            for item in _as_list(response)
            if isinstance(item, dict) and item.get("id")
        ]

    def _list_bills(self, client_id: str, service_id: str, product_type: str) -> list[Bill]:
        response = self._request(
            "GET",
            f"/clientes/{client_id}/servicos/{service_id}/cobrancas",
            "bills.list",
            params={"tipoServico": product_type},
        )
        return [Bill.model_validate(item) for item in _as_list(response) if isinstance(item, dict)]

    def _generate_pix(self, client_id: str, service_id: str, bill_id: str) -> dict[str, Any]:
        response = self._request(
            "POST",
            f"/clientes/{client_id}/servicos/{service_id}/cobrancas/{bill_id}/pagamento/qrcode/gerar",
            "bills.pix",
            params={"tipo": "PIX"},
        )
        return response if isinstance(response, dict) else {}

    def _render_boleto(self, client_id: str, service_id: str, bill_id: str) -> bytes:
        response = self._request(
            "GET",
            f"/clientes/{client_id}/servicos/{service_id}/cobrancas/{bill_id}/pagamento/pdf",
            "bills.pdf",
            params={"formato": "base64"},
        )
        encoded = _extract_pdf_base64(response)
        if not encoded:
            raise InvalidUpstreamResponseError("PDF response without boleto data")
        return decode_pdf(encoded)

    # -- BillingBackend ---------------------------------------------------

    async def lookup_client_by_document(self, digits: str) -> Client:
        return await asyncio.to_thread(self._lookup_client, digits)

    async def list_services(self, client_id: str) -> list[Service]:
        return await asyncio.to_thread(self._list_services, client_id)

    async def list_bills(
        self, client_id: str, service_id: str, product_type: str = PRODUCT_INTERNET
    ) -> list[Bill]:
        return await asyncio.to_thread(self._list_bills, client_id, service_id, product_type)

    async def generate_pix_charge(
        self, client_id: str, service_id: str, bill_id: str
    ) -> dict[str, Any]:
        return await asyncio.to_thread(self._generate_pix, client_id, service_id, bill_id)

    async def render_boleto_pdf(self, client_id: str, service_id: str, bill_id: str) -> bytes:
        return await asyncio.to_thread(self._render_boleto, client_id, service_id, bill_id)
