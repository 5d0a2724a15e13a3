"""Idempotency-key cache so retried bid submissions are not recorded twice."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Deque

from ..errors import IdempotencyConflict
from .canonical_json import canonical_hash
from .timestamps import utcnow


@dataclass
class _Entry:
    key: str
    fingerprint: str
    result: Any
    expires_at: datetime


class IdempotencyCache:
    def __init__(self, ttl_seconds: int) -> None:
        self._ttl = ttl_seconds
        self._entries: Deque[_Entry] = deque()
        self._known: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def fingerprint(request: Any) -> str:
        return canonical_hash(request)

    async def lookup(self, key: str, request: Any, now: datetime | None = None) -> Any | None:
        """Return the stored result for ``key``, or ``None`` if it was never seen."""
        async with self._lock:
            self._evict_expired(now or utcnow())
            entry = self._known.get(key)
            if entry is None:
                return None
            if entry.fingerprint != self.fingerprint(request):
                raise IdempotencyConflict("idempotency key reused with a different request")
            return entry.result

    async def remember(self, key: str, request: Any, result: Any, now: datetime | None = None) -> None:
        ref = now or utcnow()
        async with self._lock:
            self._evict_expired(ref)
            entry = _Entry(key, self.fingerprint(request), result, ref + timedelta(seconds=self._ttl))
            self._entries.append(entry)
            self._known[key] = entry

    def _evict_expired(self, now: datetime) -> None:
        while self._entries and self._entries[0].expires_at <= now:
            expired = self._entries.popleft()
            if self._known.get(expired.key) is expired:
                del self._known[expired.key]
