"""
Keyed serial executor.

Operations sharing a key run one at a time in FIFO order; operations on
different keys run concurrently. Multi-key operations acquire their keys in
sorted order.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Iterable, TypeVar

T = TypeVar("T")

# Shared by every write to the allocation ledger and by lifecycle transitions
# that seed or read a baseline.
LEDGER_QUEUE_KEY = "ledger"


class KeyedSerialExecutor:
    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    async def run(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                return await operation()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    async def run_all(self, keys: Iterable[str], operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation` while holding every key"""
        ordered = sorted(set(keys))
        if not ordered:
            return await operation()

        first, rest = ordered[0], ordered[1:]
        return await self.run(first, lambda: self.run_all(rest, operation))

    def is_busy(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
