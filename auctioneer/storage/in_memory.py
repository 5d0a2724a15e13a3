"""In-memory storage backend for bid logs and settlements."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from copy import deepcopy
from typing import Any


class InMemoryStorage:
    def __init__(self) -> None:
        self._bids: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self._settlements: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def append_bid(self, bid: dict[str, Any], expected_count: int) -> bool:
        listing_id = bid["listing_id"]
        async with self._lock:
            if listing_id in self._settlements or len(self._bids[listing_id]) != expected_count:
                return False
            self._bids[listing_id].append(deepcopy(bid))
            return True

    async def list_bids(self, listing_id: str) -> list[dict[str, Any]]:
        async with self._lock:
            return [deepcopy(bid) for bid in self._bids.get(listing_id, [])]

    async def mark_settled(self, listing_id: str, settlement: dict[str, Any], expected_count: int) -> bool:
        async with self._lock:
            if listing_id in self._settlements or len(self._bids.get(listing_id, [])) != expected_count:
                return False
            self._settlements[listing_id] = deepcopy(settlement)
            return True

    async def get_settlement(self, listing_id: str) -> dict[str, Any] | None:
        async with self._lock:
            settlement = self._settlements.get(listing_id)
            return deepcopy(settlement) if settlement else None

    async def list_settlements(self) -> list[dict[str, Any]]:
        async with self._lock:
            return [deepcopy(settlement) for settlement in self._settlements.values()]
