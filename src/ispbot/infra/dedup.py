"""Short-window duplicate suppression per chat.

Transports occasionally redeliver the same message, and impatient users
double-send. A (chat, text) pair seen again within DUPLICATE_WINDOW seconds of
its first sighting is a duplicate. Each pair is forgotten EXPIRY seconds
after it was first recorded; repeats do not extend that.

Expiry is lazy (checked on read) plus a periodic sweep, so there is no timer
per message.
"""

from ispbot.infra.state_store import InMemoryStateStore, StateStore
from ispbot.infra.time import Clock, epoch_seconds

DUPLICATE_WINDOW = 5.0
EXPIRY = 10.0


def _dedup_key(chat_id: str, text: str) -> str:
    return f"{chat_id}:{text}"


class DedupGuard:
    """Tracks first-seen timestamps of (chat, text) pairs."""

    def __init__(
        self,
        store: StateStore[float] | None = None,
        clock: Clock = epoch_seconds,
    ) -> None:
        self._store: StateStore[float] = store if store is not None else InMemoryStateStore()
        self._clock = clock

    async def is_duplicate(self, chat_id: str, text: str) -> bool:
        """Return True if this pair was first seen less than 5 seconds ago.

        An unseen (or expired) pair is recorded and reported as new.
        """
        key = _dedup_key(chat_id, text)
        now = self._clock()
        first_seen = await self._store.get(key)

        if first_seen is None or now - first_seen >= EXPIRY:
            await self._store.set(key, now)
            return False

        return now - first_seen < DUPLICATE_WINDOW

    def sweep(self) -> int:
        """Forget pairs older than the expiry. Returns the number removed."""
        now = self._clock()
        return self._store.sweep(lambda _key, first_seen: now - first_seen >= EXPIRY)
