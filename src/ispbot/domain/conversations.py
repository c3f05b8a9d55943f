"""Conversation context: which menu a chat is in, and where in it.

NO PII stored. Only menu/step metadata keyed by chat id.

A context is an immutable (menu, step) pair plus the ignore_until_menu lock.
Construction rejects pairs that the dialogue can never produce, so an
impossible state cannot reach the dispatcher.
"""

import dataclasses
from dataclasses import dataclass
from typing import Literal

from ispbot.infra.state_store import InMemoryStateStore, StateStore
from ispbot.infra.time import Clock, epoch_seconds

Menu = Literal["main", "payment", "support_sub", "other"]

# Payment flow steps
WAITING_CPF = "waiting_cpf"
PROCESSING_CPF = "processing_cpf"
WAITING_PAYMENT_OPTION = "waiting_payment_option"
WAITING_PAYMENT_CONFIRMATION = "waiting_payment_confirmation"
PAYMENT_SENT = "payment_sent"

# Technical support submenu steps
WAITING_OPTION = "waiting_option"
INTERNET_LENTA = "internet_lenta"
SEM_CONEXAO = "sem_conexao"

# Allowed steps per menu (None = no step)
VALID_STEPS: dict[str, frozenset[str | None]] = {
    "main": frozenset({None}),
    "payment": frozenset(
        {
            WAITING_CPF,
            PROCESSING_CPF,
            WAITING_PAYMENT_OPTION,
            WAITING_PAYMENT_CONFIRMATION,
            PAYMENT_SENT,
        }
    ),
    "support_sub": frozenset({WAITING_OPTION, INTERNET_LENTA, SEM_CONEXAO}),
    "other": frozenset({None}),
}

# Contexts idle longer than this are evicted (seconds)
CONTEXT_IDLE_EXPIRY = 60 * 60.0


class InvalidContextError(ValueError):
    """Raised when a (menu, step, ignore_until_menu) combination is impossible."""

    pass


@dataclass(frozen=True)
class ConversationContext:
    """Dialogue position of one chat."""

    menu: Menu = "main"
    step: str | None = None
    ignore_until_menu: bool = False
    last_activity: float = 0.0

    def __post_init__(self) -> None:
        allowed = VALID_STEPS.get(self.menu)
        if allowed is None:
            raise InvalidContextError(f"unknown menu: {self.menu}")
        if self.step not in allowed:
            raise InvalidContextError(f"step {self.step!r} not valid in menu {self.menu}")
        if self.ignore_until_menu and not (self.menu == "payment" and self.step == PAYMENT_SENT):
            raise InvalidContextError("ignore_until_menu only applies after a payment was sent")

    @property
    def is_locked(self) -> bool:
        """True while the bot stays silent until the menu command."""
        return self.ignore_until_menu


MAIN_MENU = ConversationContext()


def payment_context(step: str) -> ConversationContext:
    """Payment flow context; payment_sent always carries the lock."""
    return ConversationContext(menu="payment", step=step, ignore_until_menu=step == PAYMENT_SENT)


def support_context(step: str) -> ConversationContext:
    return ConversationContext(menu="support_sub", step=step)


OTHER_TOPIC = ConversationContext(menu="other")


class ContextStore:
    """Per-chat ConversationContext with idle eviction.

    get() returns the main-menu default for unknown chats without storing it.
    set() stamps last_activity, so only real transitions keep a context alive.
    """

    def __init__(
        self,
        store: StateStore[ConversationContext] | None = None,
        clock: Clock = epoch_seconds,
        max_idle: float = CONTEXT_IDLE_EXPIRY,
    ) -> None:
        self._store: StateStore[ConversationContext] = (
            store if store is not None else InMemoryStateStore()
        )
        self._clock = clock
        self._max_idle = max_idle

    async def get(self, chat_id: str) -> ConversationContext:
        context = await self._store.get(chat_id)
        if context is None:
            return dataclasses.replace(MAIN_MENU, last_activity=self._clock())
        return context

    async def set(self, chat_id: str, context: ConversationContext) -> ConversationContext:
        stamped = dataclasses.replace(context, last_activity=self._clock())
        await self._store.set(chat_id, stamped)
        return stamped

    async def reset(self, chat_id: str) -> ConversationContext:
        """Back to {main, no step}, clearing any lock."""
        return await self.set(chat_id, MAIN_MENU)

    async def clear(self, chat_id: str) -> bool:
        return await self._store.delete(chat_id)

    def sweep(self) -> int:
        """Evict contexts idle for more than an hour."""
        now = self._clock()
        return self._store.sweep(
            lambda _chat_id, context: now - context.last_activity > self._max_idle
        )
