"""
Core Module - Keyed Async Locks.

============================================================
RESPONSIBILITY
============================================================
Single-writer discipline for state keyed by (subject, scope).

Two coroutines handling violations for the same subject in the
same scope must not both read the same prior violation count.
Different keys proceed concurrently.

============================================================
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


class KeyedLock:
    """
    A lazily-populated map of asyncio locks.

    Locks are dropped once no coroutine holds or waits on them, so
    the map stays bounded by the number of in-flight keys.
    """

    def __init__(self) -> None:
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Acquire the lock for ``key`` for the duration of the block."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1

        try:
            async with lock:
                yield
        finally:
            remaining = self._waiters[key] - 1
            if remaining <= 0:
                self._waiters.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._waiters[key] = remaining

    def __len__(self) -> int:
        return len(self._locks)
