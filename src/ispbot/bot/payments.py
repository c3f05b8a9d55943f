"""Payment flow: CPF lookup, bill selection, PIX and Boleto delivery.

Every billing call goes through the RetryRunner. A failed or dead-end lookup
returns the chat to payment/waiting_cpf, so "send the CPF again" is always
actionable. A failed PIX/Boleto generation keeps the cached PaymentState and
leaves the chat on waiting_payment_option, so the user can pick again.

Security: CPFs are logged masked only; chat ids as hashes.
"""

import asyncio
from datetime import date
from typing import Callable

from ispbot.billing.client import PRODUCT_INTERNET, BillingBackend
from ispbot.billing.models import pick_service
from ispbot.domain.bills import eligible_bills, format_amount, format_due_date, prioritize_bills
from ispbot.domain.conversations import (
    PAYMENT_SENT,
    PROCESSING_CPF,
    WAITING_CPF,
    WAITING_PAYMENT_CONFIRMATION,
    WAITING_PAYMENT_OPTION,
    ContextStore,
    payment_context,
)
from ispbot.domain.errors import ClientNotFoundError, classify_error
from ispbot.domain.payments import (
    DEFAULT_CLIENT_NAME,
    PaymentState,
    PaymentStateStore,
    extract_pix_charge,
)
from ispbot.infra.hashing import hash_identifier
from ispbot.infra.retry import RetryRunner, Sleep
from ispbot.infra.time import local_today
from ispbot.observability.logging import get_logger
from ispbot.observability.redaction import mask_cpf, safe_log_context
from ispbot.whatsapp.outbound import OutboundSender
from ispbot.whatsapp.templates import render

logger = get_logger(__name__)

# Retries for the PIX/Boleto generation calls
GENERATION_MAX_RETRIES = 2

# Pauses between consecutive replies (seconds)
PAYLOAD_PAUSE = 0.5
AFTERCARE_PAUSE = 1.0

PIX_IMAGE_FILE_NAME = "pix.png"
BOLETO_FILE_NAME = "boleto.pdf"


class PaymentOrchestrator:
    """Resolves CPF -> client -> service -> bill and delivers PIX/Boleto."""

    def __init__(
        self,
        backend: BillingBackend,
        sender: OutboundSender,
        contexts: ContextStore,
        payment_states: PaymentStateStore,
        retry: RetryRunner | None = None,
        today: Callable[[], date] = local_today,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._sender = sender
        self._contexts = contexts
        self._payment_states = payment_states
        self._retry = retry or RetryRunner()
        self._today = today
        self._sleep = sleep

    async def handle_cpf(self, chat_id: str, digits: str) -> bool:
        """Look up the client's payable bill and offer PIX/Boleto.

        Returns True if the chat ended on waiting_payment_option.
        """
        chat_hash = hash_identifier(chat_id)
        logger.info(
            "cpf lookup started",
            extra={"extra_fields": safe_log_context(chat_hash=chat_hash, cpf=mask_cpf(digits))},
        )

        await self._contexts.set(chat_id, payment_context(PROCESSING_CPF))
        try:
            await self._sender.send_text(chat_id, render("cpf_processing"))
        except Exception:
            await self._contexts.set(chat_id, payment_context(WAITING_CPF))
            raise

        try:
            outcome = await self._resolve_bill(chat_id, digits)
        except ClientNotFoundError:
            outcome = "cpf_not_found"
        except Exception as e:
            await self._contexts.set(chat_id, payment_context(WAITING_CPF))
            await self._report_failure(chat_id, "handle_cpf", e)
            return False

        if isinstance(outcome, str):
            logger.info(
                "cpf lookup ended without a payable bill",
                extra={"extra_fields": safe_log_context(chat_hash=chat_hash, outcome=outcome)},
            )
            await self._contexts.set(chat_id, payment_context(WAITING_CPF))
            await self._sender.send_text(chat_id, render(outcome))
            return False

        state, prompt = outcome
        await self._payment_states.set(chat_id, state)
        await self._contexts.set(chat_id, payment_context(WAITING_PAYMENT_OPTION))
        await self._sender.send_text(chat_id, prompt)
        logger.info(
            "payment options offered",
            extra={"extra_fields": safe_log_context(chat_hash=chat_hash)},
        )
        return True

    async def _resolve_bill(self, chat_id: str, digits: str) -> tuple[PaymentState, str] | str:
        """(state, prompt) for the selected bill, or the template key of a dead end."""
        client = await self._retry.run(
            lambda: self._backend.lookup_client_by_document(digits),
            operation="lookup_client",
            chat_id=chat_id,
        )

        services = await self._retry.run(
            lambda: self._backend.list_services(client.id),
            operation="list_services",
            chat_id=chat_id,
        )
        service = pick_service(services)
        if service is None:
            return "client_without_services"

        bills = await self._retry.run(
            lambda: self._backend.list_bills(client.id, service.id, PRODUCT_INTERNET),
            operation="list_bills",
            chat_id=chat_id,
        )
        if not bills:
            return "client_without_bills"

        payable = eligible_bills(bills)
        if not payable:
            return "no_open_bills"

        bill = prioritize_bills(payable, self._today())[0]
        client_name = client.name or DEFAULT_CLIENT_NAME
        state = PaymentState(
            client_id=client.id,
            service_id=service.id,
            bill_id=bill.id or "",
            client_name=client_name,
        )
        prompt = render(
            "payment_options",
            {
                "client_name": client_name,
                "due_date": format_due_date(bill.due_date),
                "amount": format_amount(bill.amount),
            },
        )
        return state, prompt

    async def send_pix(self, chat_id: str, state: PaymentState) -> bool:
        """Generate and deliver the PIX charge. Returns True when delivered."""
        try:
            response = await self._retry.run(
                lambda: self._backend.generate_pix_charge(
                    state.client_id, state.service_id, state.bill_id
                ),
                max_retries=GENERATION_MAX_RETRIES,
                operation="generate_pix",
                chat_id=chat_id,
            )
        except Exception as e:
            await self._report_failure(chat_id, "generate_pix", e)
            return False

        charge = extract_pix_charge(response)
        image = charge.image_bytes()

        if image is None and not charge.payload:
            logger.warning(
                "pix response had no usable payload or image",
                extra={"extra_fields": safe_log_context(chat_hash=hash_identifier(chat_id))},
            )
            await self._sender.send_text(chat_id, render("pix_unusable"))
            return False

        if image is not None:
            await self._sender.send_text(chat_id, render("pix_qr_intro"))
            await self._sender.send_image(
                chat_id, image, caption=render("pix_qr_caption"), file_name=PIX_IMAGE_FILE_NAME
            )

        if charge.payload:
            await self._sender.send_text(chat_id, render("pix_payload_intro"))
            await self._sleep(PAYLOAD_PAUSE)
            await self._sender.send_text(chat_id, charge.payload)

        await self._sleep(AFTERCARE_PAUSE)
        await self._contexts.set(chat_id, payment_context(WAITING_PAYMENT_CONFIRMATION))
        await self._sender.send_text(chat_id, render("pix_aftercare"))
        await self._complete(chat_id, "pix")
        return True

    async def send_boleto(self, chat_id: str, state: PaymentState) -> bool:
        """Render and deliver the Boleto PDF. Returns True when delivered."""
        try:
            pdf = await self._retry.run(
                lambda: self._backend.render_boleto_pdf(
                    state.client_id, state.service_id, state.bill_id
                ),
                max_retries=GENERATION_MAX_RETRIES,
                operation="render_boleto",
                chat_id=chat_id,
            )
        except Exception as e:
            await self._report_failure(chat_id, "render_boleto", e)
            return False

        params = {"client_name": state.client_name or DEFAULT_CLIENT_NAME}
        await self._contexts.set(chat_id, payment_context(WAITING_PAYMENT_CONFIRMATION))
        await self._sender.send_text(chat_id, render("boleto_intro", params))
        await self._sender.send_document(
            chat_id, pdf, BOLETO_FILE_NAME, caption=render("boleto_caption", params)
        )
        await self._complete(chat_id, "boleto")
        return True

    async def _complete(self, chat_id: str, method: str) -> None:
        # Silence the bot until the menu command; the lookup is consumed
        await self._payment_states.delete(chat_id)
        await self._contexts.set(chat_id, payment_context(PAYMENT_SENT))
        logger.info(
            "payment delivered",
            extra={
                "extra_fields": safe_log_context(
                    chat_hash=hash_identifier(chat_id), method=method
                )
            },
        )

    async def _report_failure(self, chat_id: str, operation: str, error: Exception) -> None:
        info = classify_error(error)
        logger.error(
            info.log_message,
            exc_info=error,
            extra={
                "extra_fields": safe_log_context(
                    chat_hash=hash_identifier(chat_id),
                    operation=operation,
                    error_category=info.category,
                    error_type=type(error).__name__,
                )
            },
        )
        await self._sender.send_text(chat_id, info.user_message)
