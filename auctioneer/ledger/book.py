"""Bid ledger: the append-only, per-listing record of accepted bids."""

from __future__ import annotations

import heapq
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterator, Sequence

from ..catalog.registry import Listing, ListingCatalog
from ..errors import AuctionClosed, BidTooLow, InvalidBid, LedgerConflict
from ..events.dispatcher import EventSink
from ..events.models import Outbid
from ..storage import AuctionStorage
from ..transport.idempotency import IdempotencyCache
from ..transport.timestamps import utcnow
from ..auction.locks import ListingLocks
from .models import Bid, leader_of, parse_amount

logger = logging.getLogger(__name__)

# Appends retried when another writer moved the ledger between read and append.
APPEND_ATTEMPTS = 5


class BidHistory:
    """Snapshot of a listing's bids, iterated highest rank first.

    Ordering is done on each iteration, so the sequence can be walked any
    number of times without touching storage again.
    """

    def __init__(self, bids: Sequence[Bid]) -> None:
        self._bids = tuple(bids)

    def __iter__(self) -> Iterator[Bid]:
        return iter(sorted(self._bids, key=Bid.rank_key))

    def __len__(self) -> int:
        return len(self._bids)

    def head(self, limit: int) -> list[Bid]:
        return heapq.nsmallest(limit, self._bids, key=Bid.rank_key)


class BidLedger:
    def __init__(
        self,
        storage: AuctionStorage,
        catalog: ListingCatalog,
        locks: ListingLocks,
        sink: EventSink,
        *,
        bid_increment: Decimal = Decimal("0.01"),
        idempotency: IdempotencyCache | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._catalog = catalog
        self._locks = locks
        self._sink = sink
        self._increment = bid_increment
        self._idempotency = idempotency
        self._clock = clock

    async def _load(self, listing_id: str) -> list[Bid]:
        records = await self._storage.list_bids(listing_id)
        return [Bid.from_record(record) for record in records]

    def minimum_for(self, listing: Listing, leader: Bid | None) -> Decimal:
        reference = leader.amount if leader else listing.starting_price
        return reference + self._increment

    async def current_leader(self, listing_id: str) -> Bid | None:
        self._catalog.get(listing_id)
        return leader_of(await self._load(listing_id))

    async def history(self, listing_id: str) -> BidHistory:
        self._catalog.get(listing_id)
        return BidHistory(await self._load(listing_id))

    async def submit(
        self,
        listing_id: str,
        bidder_id: str,
        amount: Any,
        now: datetime | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> Bid:
        listing = self._catalog.get(listing_id)
        # Closed auctions reject every bid, well-formed or not.
        if not listing.is_open(now or self._clock()):
            raise AuctionClosed(listing_id)
        if not bidder_id:
            raise InvalidBid("bidder_id is required")
        amount = parse_amount(amount)
        request = {"listing_id": listing_id, "bidder_id": bidder_id, "amount": str(amount)}
        replay_key = f"{listing_id}:{idempotency_key}" if idempotency_key else None

        async with self._locks.hold(listing_id):
            now = now or self._clock()
            if replay_key and self._idempotency is not None:
                previous = await self._idempotency.lookup(replay_key, request, now)
                if previous is not None:
                    logger.info("Replayed bid %s for idempotency key %s", previous.id, idempotency_key)
                    return previous
            for _ in range(APPEND_ATTEMPTS):
                if not listing.is_open(now) or await self._storage.get_settlement(listing_id) is not None:
                    raise AuctionClosed(listing_id)
                bids = await self._load(listing_id)
                leader = leader_of(bids)
                minimum = self.minimum_for(listing, leader)
                if amount < minimum:
                    raise BidTooLow(amount, minimum)
                bid = Bid(
                    id=f"bid_{uuid.uuid4().hex}",
                    listing_id=listing_id,
                    bidder_id=bidder_id,
                    amount=amount,
                    submitted_at=now,
                )
                if await self._storage.append_bid(bid.to_record(), len(bids)):
                    break
                logger.info("Ledger of listing %s moved under bid by %s, re-reading", listing_id, bidder_id)
            else:
                raise LedgerConflict(listing_id, APPEND_ATTEMPTS)
            if replay_key and self._idempotency is not None:
                await self._idempotency.remember(replay_key, request, bid, now)

        logger.info("Accepted bid %s on listing %s: %s by %s", bid.id, listing_id, amount, bidder_id)
        if leader is not None and leader.bidder_id != bidder_id:
            self._sink.emit(
                Outbid(
                    listing_id=listing_id,
                    bidder_id=leader.bidder_id,
                    previous_amount=leader.amount,
                    new_amount=amount,
                    occurred_at=now,
                )
            )
        return bid
