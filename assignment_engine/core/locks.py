import asyncio
from collections.abc import Hashable
from contextlib import asynccontextmanager

class KeyedLock:
    """In-process mutex per key (e.g. per case).

    Serializes assignment transitions for the same case inside one process;
    cross-process ordering is enforced by the row lock on ``AssignmentSlot``.
    """

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)

case_locks = KeyedLock()
