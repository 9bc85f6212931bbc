"""
rankup.engine.locks — Per-Member asyncio Locks
===============================================

Serialises "re-check then act" sequences for the same member while letting
different members proceed concurrently.  Locks are reference-counted and
discarded once nobody holds or waits on them.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class MemberLocks:
    """A lazily populated map of ``member_id → asyncio.Lock``."""

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._waiters: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, member_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(member_id, asyncio.Lock())
        self._waiters[member_id] = self._waiters.get(member_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[member_id] -= 1
            if self._waiters[member_id] == 0:
                del self._waiters[member_id]
                del self._locks[member_id]
