"""Redis storage backend using redis-py asyncio client."""

from __future__ import annotations

from typing import Any

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from ..errors import StorageUnavailable
from ..transport.canonical_json import canonical_dumps, canonical_loads

# KEYS: bids list, settled cell. ARGV: expected bid count, encoded bid.
_APPEND_IF_UNCHANGED = """
if redis.call('EXISTS', KEYS[2]) == 1 then return 0 end
if redis.call('LLEN', KEYS[1]) ~= tonumber(ARGV[1]) then return 0 end
redis.call('RPUSH', KEYS[1], ARGV[2])
return 1
"""

# KEYS: bids list, settled cell. ARGV: expected bid count, encoded settlement.
_SETTLE_IF_UNCHANGED = """
if redis.call('EXISTS', KEYS[2]) == 1 then return 0 end
if redis.call('LLEN', KEYS[1]) ~= tonumber(ARGV[1]) then return 0 end
redis.call('SET', KEYS[2], ARGV[2])
return 1
"""


class RedisStorage:
    def __init__(self, *, url: str, prefix: str = "auctioneer") -> None:
        if not url:
            raise ValueError("redis url missing")
        self._redis = aioredis.from_url(url)
        self._prefix = prefix.rstrip(":")
        self._append_script = self._redis.register_script(_APPEND_IF_UNCHANGED)
        self._settle_script = self._redis.register_script(_SETTLE_IF_UNCHANGED)

    def _bids_key(self, listing_id: str) -> str:
        return f"{self._prefix}:bids:{listing_id}"

    def _settlement_key(self, listing_id: str) -> str:
        return f"{self._prefix}:settled:{listing_id}"

    async def append_bid(self, bid: dict[str, Any], expected_count: int) -> bool:
        listing_id = bid["listing_id"]
        try:
            appended = await self._append_script(
                keys=[self._bids_key(listing_id), self._settlement_key(listing_id)],
                args=[expected_count, canonical_dumps(bid)],
            )
        except RedisError as exc:
            raise StorageUnavailable(f"redis append failed: {exc}") from exc
        return bool(appended)

    async def list_bids(self, listing_id: str) -> list[dict[str, Any]]:
        try:
            values = await self._redis.lrange(self._bids_key(listing_id), 0, -1)
        except RedisError as exc:
            raise StorageUnavailable(f"redis read failed: {exc}") from exc
        return [canonical_loads(value) for value in values]

    async def mark_settled(self, listing_id: str, settlement: dict[str, Any], expected_count: int) -> bool:
        try:
            created = await self._settle_script(
                keys=[self._bids_key(listing_id), self._settlement_key(listing_id)],
                args=[expected_count, canonical_dumps(settlement)],
            )
        except RedisError as exc:
            raise StorageUnavailable(f"redis settle failed: {exc}") from exc
        return bool(created)

    async def get_settlement(self, listing_id: str) -> dict[str, Any] | None:
        try:
            raw = await self._redis.get(self._settlement_key(listing_id))
        except RedisError as exc:
            raise StorageUnavailable(f"redis read failed: {exc}") from exc
        if raw is None:
            return None
        return canonical_loads(raw)

    async def list_settlements(self) -> list[dict[str, Any]]:
        pattern = self._settlement_key("*")
        keys: list[str] = []
        cursor = 0
        try:
            while True:
                cursor, batch = await self._redis.scan(cursor=cursor, match=pattern, count=100)
                keys.extend(batch)
                if cursor == 0:
                    break
            if not keys:
                return []
            values = await self._redis.mget(keys)
        except RedisError as exc:
            raise StorageUnavailable(f"redis scan failed: {exc}") from exc
        return [canonical_loads(value) for value in values if value]
