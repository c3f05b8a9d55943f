"""Key-value state stores keyed by chat id.

Every per-chat store (conversation context, payment lookups, rate limiting,
dedup) sits on the StateStore protocol so callers never touch a concrete map.
The in-memory implementation is the default; a shared backend only needs to
provide the same four operations.

Sweeps are best-effort: they snapshot the keys, test each entry and delete the
ones that match. No lock is held across a sweep, so an entry refreshed
concurrently may survive or be evicted one cycle late.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Generic, Protocol, TypeVar

V = TypeVar("V")


class StateStore(Protocol[V]):
    """Protocol for chat-keyed state stores."""

    async def get(self, key: str) -> V | None:
        """Return the stored value or None."""
        ...

    async def set(self, key: str, value: V) -> None:
        """Store value under key, replacing any previous one."""
        ...

    async def delete(self, key: str) -> bool:
        """Delete key. Returns True if it existed."""
        ...

    def sweep(self, predicate: Callable[[str, V], bool]) -> int:
        """Delete every entry matching predicate. Returns the number removed."""
        ...


class InMemoryStateStore(Generic[V]):
    """Dict-backed StateStore for a single service instance."""

    def __init__(self) -> None:
        self._data: dict[str, V] = {}

    async def get(self, key: str) -> V | None:
        return self._data.get(key)

    async def set(self, key: str, value: V) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def sweep(self, predicate: Callable[[str, V], bool]) -> int:
        removed = 0
        for key in list(self._data.keys()):
            value = self._data.get(key)
            if value is None:
                continue
            if predicate(key, value):
                self._data.pop(key, None)
                removed += 1
        return removed

    def clear(self) -> int:
        """Drop every entry. Returns how many were stored."""
        count = len(self._data)
        self._data.clear()
        return count

    def __len__(self) -> int:
        return len(self._data)


class KeyedLocks:
    """One asyncio.Lock per key, created on demand and dropped when unused.

    Waiters on the same key acquire in FIFO order, which keeps per-chat
    operations in arrival order.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
