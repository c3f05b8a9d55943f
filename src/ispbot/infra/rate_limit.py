"""Minimum spacing between bot responses per chat."""

import re

from ispbot.infra.state_store import InMemoryStateStore, StateStore
from ispbot.infra.time import Clock, epoch_seconds

MIN_INTERVAL = 1.0
IDLE_EXPIRY = 5 * 60.0

# Single menu digit; these must never be throttled
_MENU_SELECTION = re.compile(r"^[1-9]$")


def is_menu_selection(normalized_text: str) -> bool:
    """True for a normalized input that is a single digit 1-9."""
    return bool(_MENU_SELECTION.match(normalized_text))


class RateLimiter:
    """Remembers when the bot last answered each chat."""

    def __init__(
        self,
        store: StateStore[float] | None = None,
        clock: Clock = epoch_seconds,
    ) -> None:
        self._store: StateStore[float] = store if store is not None else InMemoryStateStore()
        self._clock = clock

    async def can_respond(self, chat_id: str) -> bool:
        """False if the last response to this chat was under a second ago."""
        last_response = await self._store.get(chat_id)
        if last_response is None:
            return True
        return self._clock() - last_response >= MIN_INTERVAL

    async def allows(self, chat_id: str, normalized_text: str) -> bool:
        """can_respond() with the menu-digit bypass applied."""
        if is_menu_selection(normalized_text):
            return True
        return await self.can_respond(chat_id)

    async def record_response(self, chat_id: str) -> None:
        await self._store.set(chat_id, self._clock())

    def sweep(self) -> int:
        """Drop entries idle for more than five minutes."""
        now = self._clock()
        return self._store.sweep(lambda _chat_id, last: now - last > IDLE_EXPIRY)
