"""
Per-key asyncio locks.
"""
import asyncio
import contextlib
from collections.abc import AsyncIterator

import structlog

logger = structlog.get_logger(__name__)


class KeyedLock:
    """
    Hands out one asyncio.Lock per key so that work on unrelated keys never
    contends. Locks are created on first use and dropped once nobody holds
    or waits for them.
    """

    def __init__(self, name: str | None = None):
        self.name = name or f"keyed-lock-{id(self)}"
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)
