"""Error taxonomy and classification of upstream failures.

Billing calls can fail in a handful of ways the user should hear about
differently: the API is down, it is slow, it is broken, or our credentials
were revoked. classify_error() maps any exception to one fixed user-facing
message (always pointing at the menu command) and one fixed log line.
"""

from dataclasses import dataclass
from typing import Literal

import requests

ErrorCategory = Literal["auth", "network", "timeout", "server", "unknown"]


class BotError(Exception):
    """Base class for errors raised by the bot's own code."""

    pass


class ClientNotFoundError(BotError):
    """No billing client matches the given document. Terminal, never retried."""

    pass


class InvalidDocumentError(BotError):
    """Document failed format or checksum validation. Terminal, never retried."""

    pass


class UpstreamError(BotError):
    """Billing backend call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamUnavailableError(UpstreamError):
    """Connection refused, DNS failure or other network-level error."""

    pass


class UpstreamTimeoutError(UpstreamError):
    """Billing backend did not answer in time."""

    pass


class UpstreamHTTPError(UpstreamError):
    """Billing backend answered with an HTTP error status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        error_code: str | None = None,
        error_description: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.error_code = error_code
        self.error_description = error_description


class InvalidUpstreamResponseError(UpstreamError):
    """Billing backend answered 2xx with a body we cannot use."""

    pass


# Exceptions the retry runner must not retry
NON_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    ClientNotFoundError,
    InvalidDocumentError,
)


@dataclass(frozen=True)
class ErrorInfo:
    """Classification result: what to tell the user and what to log."""

    category: ErrorCategory
    user_message: str
    log_message: str


_MESSAGES: dict[str, tuple[str, str]] = {
    "auth": (
        "⚠️ *Erro de autenticação*\n\n"
        "Nossa API está com problema de autenticação. "
        "Por favor, tente novamente em alguns instantes.\n\n"
        "———\nDigite *8* para voltar ao menu.",
        "Token revogado ou acesso negado",
    ),
    "network": (
        "⚠️ *Serviço temporariamente indisponível*\n\n"
        "Nossa API está fora do ar no momento. "
        "Por favor, tente novamente em alguns minutos.\n\n"
        "———\nDigite *8* para voltar ao menu.",
        "API offline ou inacessível",
    ),
    "timeout": (
        "⏱️ *Consulta demorou muito*\n\n"
        "O servidor demorou para responder. Isso pode ser temporário.\n\n"
        "Tente novamente em instantes ou envie *8* para voltar ao menu.",
        "Timeout na chamada de API",
    ),
    "server": (
        "⚠️ *Erro no servidor*\n\n"
        "Nossa API está com problemas. Tente novamente em alguns minutos.\n\n"
        "———\nDigite *8* para voltar ao menu.",
        "Erro HTTP {status} da API",
    ),
    "unknown": (
        "❌ *Erro ao processar solicitação*\n\n"
        "Ocorreu um erro inesperado. Tente novamente ou envie *8* para voltar ao menu.",
        "Erro desconhecido: {error_type}",
    ),
}

_NETWORK_PATTERNS = (
    "econnrefused",
    "enotfound",
    "connection refused",
    "name or service not known",
    "network",
    "conexão",
)
_TIMEOUT_PATTERNS = ("econnaborted", "timeout", "timed out", "demorou", "tempo")
_AUTH_PATTERNS = ("access_denied", "denied", "revoked")


def _status_of(exc: BaseException) -> int | None:
    """HTTP status carried by our errors or by a requests HTTPError."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _is_auth_failure(exc: BaseException, status: int | None) -> bool:
    if status not in (400, 401):
        return False
    details = " ".join(
        str(part).lower()
        for part in (
            getattr(exc, "error_code", None),
            getattr(exc, "error_description", None),
        )
        if part
    )
    return any(pattern in details for pattern in _AUTH_PATTERNS)


def classify_category(exc: BaseException) -> ErrorCategory:
    """Pick the category for an exception (auth, network, timeout, server, unknown)."""
    status = _status_of(exc)
    text = str(exc).lower()

    if _is_auth_failure(exc, status):
        return "auth"

    if isinstance(exc, UpstreamUnavailableError) or isinstance(
        exc, (requests.ConnectionError, ConnectionError)
    ):
        # requests.ConnectTimeout is both; the timeout reading is more precise
        if not isinstance(exc, requests.Timeout):
            return "network"
    if any(pattern in text for pattern in _NETWORK_PATTERNS):
        return "network"

    if isinstance(exc, (UpstreamTimeoutError, requests.Timeout, TimeoutError)):
        return "timeout"
    if any(pattern in text for pattern in _TIMEOUT_PATTERNS):
        return "timeout"

    if status is not None and status >= 500:
        return "server"

    return "unknown"


def classify_error(exc: BaseException) -> ErrorInfo:
    """Map an exception to its user-facing message and internal log line."""
    category = classify_category(exc)
    user_message, log_template = _MESSAGES[category]
    log_message = log_template.format(
        status=_status_of(exc),
        error_type=type(exc).__name__,
    )
    return ErrorInfo(category=category, user_message=user_message, log_message=log_message)
