"""Listing catalog backed by YAML seed data plus runtime registrations."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable

import yaml

from ..errors import DuplicateListing, InvalidBid, ListingNotFound
from ..ledger.models import parse_amount
from ..transport.timestamps import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Listing:
    id: str
    starting_price: Decimal
    closes_at: datetime
    title: str = ""
    seller_id: str | None = None
    category: str | None = None

    def is_open(self, now: datetime) -> bool:
        return now < self.closes_at

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "sellerId": self.seller_id,
            "category": self.category,
            "startingPrice": str(self.starting_price),
            "closesAt": format_timestamp(self.closes_at),
        }


def build_listing(item: dict[str, Any]) -> Listing:
    listing_id = item.get("id")
    if not listing_id:
        raise ValueError("listing id is required")
    try:
        starting_price = parse_amount(item.get("starting_price"))
    except InvalidBid as exc:
        raise ValueError(f"listing {listing_id}: starting price {exc}") from exc
    return Listing(
        id=str(listing_id),
        starting_price=starting_price,
        closes_at=parse_timestamp(item.get("closes_at") or ""),
        title=str(item.get("title") or ""),
        seller_id=item.get("seller_id"),
        category=item.get("category"),
    )


class ListingCatalog:
    def __init__(self, config_path: Path | None = None) -> None:
        self._path = config_path
        self._listings: dict[str, Listing] = {}
        self._lock = asyncio.Lock()
        if config_path is not None:
            self.reload()

    def reload(self) -> None:
        if self._path is None or not self._path.exists():
            return
        data = yaml.safe_load(self._path.read_text()) or {}
        listings = dict(self._listings)
        for item in data.get("listings", []):
            listing = build_listing(item)
            listings.setdefault(listing.id, listing)
        self._listings = listings
        logger.info("Loaded %d listings from %s", len(listings), self._path)

    async def register(self, listing: Listing) -> Listing:
        async with self._lock:
            if listing.id in self._listings:
                raise DuplicateListing(listing.id)
            self._listings[listing.id] = listing
        logger.info("Registered listing %s closing at %s", listing.id, format_timestamp(listing.closes_at))
        return listing

    def all(self) -> Iterable[Listing]:
        return list(self._listings.values())

    def get(self, listing_id: str) -> Listing:
        try:
            return self._listings[listing_id]
        except KeyError as exc:
            raise ListingNotFound(listing_id) from exc

    def closed_before(self, now: datetime) -> list[Listing]:
        return [listing for listing in self._listings.values() if not listing.is_open(now)]
