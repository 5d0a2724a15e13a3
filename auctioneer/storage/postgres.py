"""Postgres storage backend leveraging asyncpg."""

from __future__ import annotations

from typing import Any

import asyncpg

from ..errors import StorageUnavailable
from ..transport.canonical_json import canonical_dumps, canonical_loads


class PostgresStorage:
    def __init__(self, *, dsn: str | None = None, **connect_kwargs: Any) -> None:
        if not dsn and not connect_kwargs:
            raise ValueError("postgres connection details missing")
        self._dsn = dsn
        self._connect_kwargs = connect_kwargs
        self._pool: asyncpg.Pool | None = None

    def _encode(self, payload: dict[str, Any]) -> str:
        return canonical_dumps(payload).decode()

    def _decode(self, value: Any) -> dict[str, Any]:
        if isinstance(value, (bytes, bytearray, str)):
            return canonical_loads(value)
        return value

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(dsn=self._dsn, **self._connect_kwargs)
            async with self._pool.acquire() as conn:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS auction_bids (
                        seq BIGSERIAL PRIMARY KEY,
                        bid_id TEXT NOT NULL UNIQUE,
                        listing_id TEXT NOT NULL,
                        data JSONB NOT NULL
                    );
                    CREATE INDEX IF NOT EXISTS idx_auction_bids_listing
                    ON auction_bids (listing_id, seq);
                    """
                )
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS auction_settlements (
                        listing_id TEXT PRIMARY KEY,
                        data JSONB NOT NULL,
                        settled_at TIMESTAMPTZ DEFAULT NOW()
                    );
                    """
                )
        return self._pool

    async def _unchanged(self, conn: asyncpg.Connection, listing_id: str, expected_count: int) -> bool:
        # Serializes writers of one listing until the surrounding transaction ends.
        await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", listing_id)
        count = await conn.fetchval(
            "SELECT count(*) FROM auction_bids WHERE listing_id=$1",
            listing_id,
        )
        settled = await conn.fetchval(
            "SELECT 1 FROM auction_settlements WHERE listing_id=$1",
            listing_id,
        )
        return settled is None and count == expected_count

    async def append_bid(self, bid: dict[str, Any], expected_count: int) -> bool:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    if not await self._unchanged(conn, bid["listing_id"], expected_count):
                        return False
                    await conn.execute(
                        """INSERT INTO auction_bids(bid_id, listing_id, data) VALUES($1, $2, $3)""",
                        bid["bid_id"],
                        bid["listing_id"],
                        self._encode(bid),
                    )
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageUnavailable(f"postgres append failed: {exc}") from exc
        return True

    async def list_bids(self, listing_id: str) -> list[dict[str, Any]]:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    """SELECT data FROM auction_bids WHERE listing_id=$1 ORDER BY seq""",
                    listing_id,
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageUnavailable(f"postgres read failed: {exc}") from exc
        return [self._decode(row["data"]) for row in rows]

    async def mark_settled(self, listing_id: str, settlement: dict[str, Any], expected_count: int) -> bool:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    if not await self._unchanged(conn, listing_id, expected_count):
                        return False
                    inserted = await conn.fetchval(
                        """INSERT INTO auction_settlements(listing_id, data) VALUES($1, $2)
                           ON CONFLICT (listing_id) DO NOTHING
                           RETURNING listing_id""",
                        listing_id,
                        self._encode(settlement),
                    )
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageUnavailable(f"postgres settle failed: {exc}") from exc
        return inserted is not None

    async def get_settlement(self, listing_id: str) -> dict[str, Any] | None:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    """SELECT data FROM auction_settlements WHERE listing_id=$1""",
                    listing_id,
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageUnavailable(f"postgres read failed: {exc}") from exc
        if not row:
            return None
        return self._decode(row["data"])

    async def list_settlements(self) -> list[dict[str, Any]]:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch("SELECT data FROM auction_settlements ORDER BY listing_id")
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageUnavailable(f"postgres read failed: {exc}") from exc
        return [self._decode(row["data"]) for row in rows]
