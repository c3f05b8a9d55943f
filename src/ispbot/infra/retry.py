"""Bounded retries and timeouts for upstream calls.

Every billing call goes through RetryRunner.run(): each attempt races a fixed
timeout, failures are retried with a linearly growing pause, and the last
error is re-raised once the budget is spent.

A timed-out attempt is abandoned, not cancelled. The call keeps running in the
background and its late result is discarded, which matches calls executed in
worker threads that cannot be interrupted anyway.
"""

import asyncio
import os
from typing import Any, Awaitable, Callable, TypeVar

from ispbot.domain.errors import NON_RETRYABLE_ERRORS, UpstreamTimeoutError
from ispbot.infra.hashing import hash_identifier
from ispbot.observability.logging import get_logger
from ispbot.observability.redaction import safe_log_context

logger = get_logger(__name__)

T = TypeVar("T")

UPSTREAM_TIMEOUT = float(os.environ.get("UPSTREAM_TIMEOUT", "15"))
MAX_RETRIES = int(os.environ.get("UPSTREAM_MAX_RETRIES", "2"))
RETRY_DELAY = float(os.environ.get("UPSTREAM_RETRY_DELAY", "1.0"))

Sleep = Callable[[float], Awaitable[Any]]


def _consume_result(task: "asyncio.Task[Any]") -> None:
    """Retrieve an abandoned task's outcome so asyncio does not warn about it."""
    if not task.cancelled():
        task.exception()


async def call_with_timeout(fn: Callable[[], Awaitable[T]], timeout: float) -> T:
    """Run fn() and return its result, or raise UpstreamTimeoutError first.

    Whichever settles first wins. The call is not cancelled on timeout.
    """
    task = asyncio.ensure_future(fn())
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        return task.result()

    task.add_done_callback(_consume_result)
    raise UpstreamTimeoutError(f"timeout after {timeout:g}s")


class RetryRunner:
    """Runs upstream calls with a timeout per attempt and bounded retries."""

    def __init__(
        self,
        timeout: float = UPSTREAM_TIMEOUT,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._timeout = timeout
        self._sleep = sleep

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        max_retries: int = MAX_RETRIES,
        base_delay: float = RETRY_DELAY,
        *,
        operation: str = "upstream",
        chat_id: str | None = None,
    ) -> T:
        """Attempt fn() up to max_retries + 1 times.

        Before retry number n (1-based) waits base_delay * n seconds.
        ClientNotFoundError and InvalidDocumentError propagate immediately.

        Raises:
            The last error once every attempt has failed.
        """
        last_error: Exception | None = None

        for attempt in range(max_retries + 1):
            try:
                return await call_with_timeout(fn, self._timeout)
            except NON_RETRYABLE_ERRORS:
                raise
            except Exception as e:
                last_error = e
                if attempt >= max_retries:
                    break

                logger.warning(
                    "upstream call failed, retrying",
                    extra={
                        "extra_fields": safe_log_context(
                            operation=operation,
                            chat_hash=hash_identifier(chat_id) if chat_id else None,
                            attempt=attempt + 1,
                            max_attempts=max_retries + 1,
                            error_type=type(e).__name__,
                        )
                    },
                )
                await self._sleep(base_delay * (attempt + 1))

        logger.error(
            "upstream call failed after retries",
            extra={
                "extra_fields": safe_log_context(
                    operation=operation,
                    chat_hash=hash_identifier(chat_id) if chat_id else None,
                    attempts=max_retries + 1,
                    error_type=type(last_error).__name__,
                )
            },
        )
        if last_error:
            raise last_error
        raise RuntimeError("retry loop ended without an attempt")
