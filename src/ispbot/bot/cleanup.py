"""Periodic eviction of idle per-chat state."""

import asyncio
import os
from typing import Callable

from ispbot.observability.logging import get_logger
from ispbot.observability.redaction import safe_log_context

logger = get_logger(__name__)

CLEANUP_INTERVAL = float(os.environ.get("CLEANUP_INTERVAL", "300"))


class StoreSweeper:
    """Runs each store's sweep() every `interval` seconds.

    A failing sweep is logged and does not stop the others.
    """

    def __init__(
        self,
        sweeps: dict[str, Callable[[], int]],
        interval: float = CLEANUP_INTERVAL,
    ) -> None:
        self._sweeps = sweeps
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    def sweep_once(self) -> dict[str, int]:
        """Sweep every store now. Returns entries removed per store."""
        removed: dict[str, int] = {}
        for name, sweep in self._sweeps.items():
            try:
                removed[name] = sweep()
            except Exception:
                logger.exception(
                    "store sweep failed",
                    extra={"extra_fields": safe_log_context(store=name)},
                )

        if any(removed.values()):
            logger.info("stores swept", extra={"extra_fields": safe_log_context(**removed)})
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.sweep_once()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
