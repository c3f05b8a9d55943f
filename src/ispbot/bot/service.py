"""Wiring of the bot's stores, dialogue and pipeline."""

import asyncio
from dataclasses import dataclass
from datetime import date
from typing import Callable

from ispbot.billing.client import BillingBackend, ZcBillingClient
from ispbot.domain.conversations import ContextStore
from ispbot.domain.payments import PaymentStateStore
from ispbot.infra.dedup import DedupGuard
from ispbot.infra.hashing import hash_identifier
from ispbot.infra.message_log import MessageLog, create_message_log
from ispbot.infra.rate_limit import RateLimiter
from ispbot.infra.retry import RetryRunner, Sleep
from ispbot.infra.time import Clock, epoch_seconds, local_today
from ispbot.observability.logging import get_logger
from ispbot.observability.redaction import safe_log_context
from ispbot.whatsapp.outbound import EvolutionTransport, OutboundSender, Transport

from .cleanup import StoreSweeper
from .dispatcher import Dispatcher
from .payments import PaymentOrchestrator
from .pipeline import InboundPipeline

logger = get_logger(__name__)


@dataclass
class BotService:
    contexts: ContextStore
    payment_states: PaymentStateStore
    dedup: DedupGuard
    rate_limiter: RateLimiter
    sender: OutboundSender
    dispatcher: Dispatcher
    pipeline: InboundPipeline
    sweeper: StoreSweeper

    async def clear_chat(self, chat_id: str) -> bool:
        """Forget a chat's dialogue position and cached lookup.

        Used when an agent takes over; the next message starts from the main menu.
        """
        had_context = await self.contexts.clear(chat_id)
        had_payment = await self.payment_states.delete(chat_id)
        logger.info(
            "chat state cleared",
            extra={"extra_fields": safe_log_context(chat_hash=hash_identifier(chat_id))},
        )
        return had_context or had_payment


def build_service(
    *,
    transport: Transport | None = None,
    backend: BillingBackend | None = None,
    message_log: MessageLog | None = None,
    retry: RetryRunner | None = None,
    clock: Clock = epoch_seconds,
    today: Callable[[], date] = local_today,
    sleep: Sleep = asyncio.sleep,
) -> BotService:
    """Assemble a BotService. Missing collaborators come from the environment."""
    message_log = message_log if message_log is not None else create_message_log()

    contexts = ContextStore(clock=clock)
    payment_states = PaymentStateStore(clock=clock)
    dedup = DedupGuard(clock=clock)
    rate_limiter = RateLimiter(clock=clock)

    sender = OutboundSender(
        transport if transport is not None else EvolutionTransport(),
        message_log,
        rate_limiter,
        clock=lambda: int(clock() * 1000),
    )
    payments = PaymentOrchestrator(
        backend if backend is not None else ZcBillingClient(),
        sender,
        contexts,
        payment_states,
        retry=retry or RetryRunner(sleep=sleep),
        today=today,
        sleep=sleep,
    )
    dispatcher = Dispatcher(contexts, payment_states, sender, payments)
    pipeline = InboundPipeline(dispatcher, sender, message_log, dedup, rate_limiter, clock=clock)
    sweeper = StoreSweeper(
        {
            "contexts": contexts.sweep,
            "payment_states": payment_states.sweep,
            "rate_limits": rate_limiter.sweep,
            "dedup": dedup.sweep,
        }
    )

    return BotService(
        contexts=contexts,
        payment_states=payment_states,
        dedup=dedup,
        rate_limiter=rate_limiter,
        sender=sender,
        dispatcher=dispatcher,
        pipeline=pipeline,
        sweeper=sweeper,
    )
