from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator, Dict


class KeyedLocks:
    """One ``asyncio.Lock`` per key, alive only while someone holds or awaits it.

    Used to serialize read-modify-write cycles of a single workflow without
    making unrelated workflows wait on each other. Holders and waiters are
    counted per key and the entry is dropped when the count reaches zero, so
    the map does not grow with every workflow or proposal ever touched.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def for_key(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
