"""Per-listing mutual exclusion."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from ..errors import LockTimeout


class ListingLocks:
    """One ``asyncio.Lock`` per listing id, so unrelated auctions never contend."""

    def __init__(self, timeout_ms: int) -> None:
        self._timeout_ms = timeout_ms
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, listing_id: str) -> asyncio.Lock:
        lock = self._locks.get(listing_id)
        if lock is None:
            lock = self._locks[listing_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, listing_id: str) -> AsyncIterator[None]:
        lock = self._lock_for(listing_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise LockTimeout(listing_id, self._timeout_ms) from exc
        try:
            yield
        finally:
            lock.release()

    def locked(self, listing_id: str) -> bool:
        lock = self._locks.get(listing_id)
        return bool(lock and lock.locked())
