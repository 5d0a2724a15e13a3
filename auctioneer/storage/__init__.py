"""Storage backend factory."""

from __future__ import annotations

from typing import Protocol

from ..config import ServerConfig
from .in_memory import InMemoryStorage
from .postgres import PostgresStorage
from .redis import RedisStorage
from .firestore import FirestoreStorage


class AuctionStorage(Protocol):
    """Per-listing append log of bids plus a per-listing settled cell.

    Both writes are conditional on the caller's view of the log, so workers
    sharing one store cannot append against a stale leader or settle a
    listing whose log moved after it was read.
    """

    async def append_bid(self, bid: dict, expected_count: int) -> bool:
        """Append ``bid`` if the log still holds ``expected_count`` bids and is unsettled."""
        ...

    async def list_bids(self, listing_id: str) -> list[dict]:
        """Bids for one listing in submission order."""
        ...

    async def mark_settled(self, listing_id: str, settlement: dict, expected_count: int) -> bool:
        """Store ``settlement`` if the cell is empty and the log still holds ``expected_count`` bids."""
        ...

    async def get_settlement(self, listing_id: str) -> dict | None: ...

    async def list_settlements(self) -> list[dict]: ...


def build_storage(config: ServerConfig) -> AuctionStorage:
    backend = config.storage.backend
    options = dict(config.storage.options)
    if backend == "in_memory":
        return InMemoryStorage()
    if backend == "redis":
        return RedisStorage(**options)
    if backend == "postgres":
        return PostgresStorage(**options)
    if backend == "firestore":
        return FirestoreStorage(**options)
    raise ValueError(f"unknown storage backend {backend}")
