"""Glue between the listing catalog, the bid ledger, and the auction clock."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from ..catalog.registry import Listing, ListingCatalog
from ..config import AuctionConfig
from ..events.dispatcher import EventSink
from ..ledger.book import BidHistory, BidLedger
from ..ledger.models import Bid
from ..storage import AuctionStorage
from ..transport.idempotency import IdempotencyCache
from ..transport.timestamps import format_timestamp, utcnow
from .clock import AuctionClock, SettlementResult
from .fsm import AuctionPhase
from .locks import ListingLocks


class AuctionEngine:
    def __init__(
        self,
        catalog: ListingCatalog,
        storage: AuctionStorage,
        sink: EventSink,
        settings: AuctionConfig,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.catalog = catalog
        self.storage = storage
        self._clock = clock
        locks = ListingLocks(settings.lock_timeout_ms)
        self.ledger = BidLedger(
            storage,
            catalog,
            locks,
            sink,
            bid_increment=settings.bid_increment,
            idempotency=IdempotencyCache(settings.idempotency_ttl_seconds),
            clock=clock,
        )
        self.clock = AuctionClock(catalog, self.ledger, storage, locks, sink, clock=clock)

    def now(self) -> datetime:
        return self._clock()

    async def register_listing(self, listing: Listing) -> Listing:
        return await self.catalog.register(listing)

    async def submit(
        self,
        listing_id: str,
        bidder_id: str,
        amount: Any,
        now: datetime | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> Bid:
        return await self.ledger.submit(
            listing_id, bidder_id, amount, now, idempotency_key=idempotency_key
        )

    async def current_leader(self, listing_id: str) -> Bid | None:
        return await self.ledger.current_leader(listing_id)

    async def history(self, listing_id: str) -> BidHistory:
        return await self.ledger.history(listing_id)

    async def phase(self, listing_id: str, now: datetime | None = None) -> AuctionPhase:
        return await self.clock.phase(listing_id, now)

    async def settle(self, listing_id: str, now: datetime | None = None) -> SettlementResult:
        return await self.clock.settle(listing_id, now)

    async def describe(self, listing_id: str, now: datetime | None = None) -> dict[str, Any]:
        """Listing as the marketplace shows it, with the ledger as the source of the current bid."""
        listing = self.catalog.get(listing_id)
        now = now or self._clock()
        history = await self.ledger.history(listing_id)
        leader = next(iter(history), None)
        payload = listing.to_payload()
        payload.update(
            {
                "phase": (await self.clock.phase(listing_id, now)).value,
                "bidCount": len(history),
                "currentBid": str(leader.amount) if leader else None,
                "leaderId": leader.bidder_id if leader else None,
                "minimumBid": str(self.ledger.minimum_for(listing, leader)),
                "secondsRemaining": max(int((listing.closes_at - now).total_seconds()), 0),
            }
        )
        settlement = await self.storage.get_settlement(listing_id)
        if settlement:
            payload["settlement"] = {
                "result": settlement.get("outcome"),
                "bidderId": settlement.get("bidder_id"),
                "amount": settlement.get("amount"),
                "settledAt": settlement.get("settled_at"),
            }
        return payload


def bid_to_payload(bid: Bid) -> dict[str, Any]:
    return {
        "bidId": bid.id,
        "bidderId": bid.bidder_id,
        "amount": str(bid.amount),
        "submittedAt": format_timestamp(bid.submitted_at),
    }
