"""Menu-driven dialogue for one inbound message.

Evaluation order (first match wins):
1. menu command ("8" or contains "menu") -> main menu, from any state
2. empty text or greeting -> main menu
3. ignore filter: locked payment_sent, filler tokens, "need a human" in main
4. per-menu transition, looked up by the context's menu

Security: NEVER log message text. Log hash_identifier(chat_id) and lengths.
"""

from typing import Awaitable, Callable

from ispbot.domain.conversations import (
    INTERNET_LENTA,
    MAIN_MENU,
    OTHER_TOPIC,
    PAYMENT_SENT,
    PROCESSING_CPF,
    SEM_CONEXAO,
    WAITING_CPF,
    WAITING_OPTION,
    WAITING_PAYMENT_CONFIRMATION,
    WAITING_PAYMENT_OPTION,
    ContextStore,
    ConversationContext,
    payment_context,
    support_context,
)
from ispbot.domain.cpf import CPF_LENGTH, validate_cpf
from ispbot.domain.payments import PaymentStateStore
from ispbot.domain.text import (
    extract_digits,
    is_filler,
    is_greeting,
    is_menu_command,
    mentions,
    needs_human,
    normalize_text,
)
from ispbot.infra.hashing import hash_identifier
from ispbot.observability.logging import get_logger
from ispbot.observability.redaction import safe_log_context
from ispbot.whatsapp.outbound import OutboundSender
from ispbot.whatsapp.templates import render

from .payments import PaymentOrchestrator

logger = get_logger(__name__)

Handler = Callable[[str, ConversationContext, str, str], Awaitable[None]]


class Dispatcher:
    """Routes a message through the dialogue and applies the transition."""

    def __init__(
        self,
        contexts: ContextStore,
        payment_states: PaymentStateStore,
        sender: OutboundSender,
        payments: PaymentOrchestrator,
    ) -> None:
        self._contexts = contexts
        self._payment_states = payment_states
        self._sender = sender
        self._payments = payments
        self._handlers: dict[str, Handler] = {
            "main": self._on_main,
            "payment": self._on_payment,
            "support_sub": self._on_support,
            "other": self._on_other,
        }

    async def dispatch(self, chat_id: str, raw_text: str) -> None:
        normalized = normalize_text(raw_text)

        if is_menu_command(normalized) or not normalized or is_greeting(normalized):
            await self.show_main_menu(chat_id)
            return

        context = await self._contexts.get(chat_id)

        reason = self._ignore_reason(context, normalized)
        if reason:
            self._log_dropped(chat_id, context, reason)
            return

        await self._handlers[context.menu](chat_id, context, normalized, raw_text)

    async def show_main_menu(self, chat_id: str) -> None:
        await self._contexts.reset(chat_id)
        await self._sender.send_text(chat_id, render("main_menu"))

    @staticmethod
    def _ignore_reason(context: ConversationContext, normalized: str) -> str | None:
        if context.is_locked:
            return "awaiting_menu_command"
        if is_filler(normalized):
            return "filler"
        if context.menu == "main" and needs_human(normalized):
            return "needs_human"
        return None

    def _log_dropped(self, chat_id: str, context: ConversationContext, reason: str) -> None:
        logger.info(
            "message not answered",
            extra={
                "extra_fields": safe_log_context(
                    chat_hash=hash_identifier(chat_id),
                    menu=context.menu,
                    step=context.step,
                    reason=reason,
                )
            },
        )

    def _is_stray_cpf(self, chat_id: str, context: ConversationContext, raw_text: str) -> bool:
        """An 11-digit number outside the payment flow (e.g. sent to an agent)."""
        if len(extract_digits(raw_text)) != CPF_LENGTH:
            return False
        self._log_dropped(chat_id, context, "document_outside_payment")
        return True

    async def _on_main(
        self, chat_id: str, context: ConversationContext, normalized: str, raw_text: str
    ) -> None:
        if normalized == "1":
            await self._contexts.set(chat_id, payment_context(WAITING_CPF))
            await self._sender.send_text(chat_id, render("payment_ask_cpf"))
        elif normalized == "2":
            await self._contexts.set(chat_id, support_context(WAITING_OPTION))
            await self._sender.send_text(chat_id, render("support_menu"))
        elif normalized == "3":
            await self._sender.send_text(chat_id, render("human_handoff"))
        elif normalized == "4":
            await self._contexts.set(chat_id, OTHER_TOPIC)
            await self._sender.send_text(chat_id, render("other_ask_question"))
        elif not self._is_stray_cpf(chat_id, context, raw_text):
            self._log_dropped(chat_id, context, "no_matching_option")

    async def _on_support(
        self, chat_id: str, context: ConversationContext, normalized: str, raw_text: str
    ) -> None:
        if context.step == WAITING_OPTION and normalized == "1":
            await self._contexts.set(chat_id, support_context(INTERNET_LENTA))
            await self._sender.send_text(chat_id, render("support_slow_internet"))
        elif context.step == WAITING_OPTION and normalized == "2":
            await self._contexts.set(chat_id, support_context(SEM_CONEXAO))
            await self._sender.send_text(chat_id, render("support_no_connection"))
        elif context.step == WAITING_OPTION and normalized == "3":
            await self._contexts.set(chat_id, MAIN_MENU)
            await self._sender.send_text(chat_id, render("support_already_paid"))
        elif context.step in (INTERNET_LENTA, SEM_CONEXAO) and normalized == "3":
            await self._contexts.set(chat_id, MAIN_MENU)
            await self._sender.send_text(chat_id, render("support_agent_followup"))
        elif not self._is_stray_cpf(chat_id, context, raw_text):
            self._log_dropped(chat_id, context, "no_matching_option")

    async def _on_other(
        self, chat_id: str, context: ConversationContext, normalized: str, raw_text: str
    ) -> None:
        # Free-form question for the team; the bot stays out of it
        if not self._is_stray_cpf(chat_id, context, raw_text):
            self._log_dropped(chat_id, context, "left_for_agent")

    async def _on_payment(
        self, chat_id: str, context: ConversationContext, normalized: str, raw_text: str
    ) -> None:
        if context.step == WAITING_PAYMENT_OPTION:
            await self._on_payment_option(chat_id, normalized)
        elif context.step == WAITING_CPF:
            await self._on_cpf(chat_id, raw_text)
        elif context.step in (PROCESSING_CPF, WAITING_PAYMENT_CONFIRMATION, PAYMENT_SENT):
            self._log_dropped(chat_id, context, "payment_in_progress")

    async def _on_payment_option(self, chat_id: str, normalized: str) -> None:
        wants_pix = normalized == "1" or mentions(normalized, "pix")
        wants_boleto = normalized == "2" or mentions(normalized, "boleto")

        if not wants_pix and not wants_boleto:
            await self._sender.send_text(chat_id, render("payment_options_reprompt"))
            return

        state = await self._payment_states.get(chat_id)
        if state is None:
            await self._contexts.set(chat_id, payment_context(WAITING_CPF))
            await self._sender.send_text(chat_id, render("payment_data_missing"))
            return

        if wants_pix:
            await self._payments.send_pix(chat_id, state)
        else:
            await self._payments.send_boleto(chat_id, state)

    async def _on_cpf(self, chat_id: str, raw_text: str) -> None:
        # Digits come from the raw text: "123.456.789-09" is a valid answer
        digits = extract_digits(raw_text)
        count = len(digits)

        if count == CPF_LENGTH:
            if validate_cpf(digits):
                await self._payments.handle_cpf(chat_id, digits)
            else:
                await self._sender.send_text(chat_id, render("cpf_invalid"))
        elif count == 0:
            await self._sender.send_text(chat_id, render("cpf_missing"))
        elif count < CPF_LENGTH:
            await self._sender.send_text(
                chat_id, render("cpf_incomplete", {"digit_count": count})
            )
        else:
            await self._sender.send_text(
                chat_id, render("cpf_too_many_digits", {"digit_count": count})
            )
