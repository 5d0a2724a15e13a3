"""Auction clock: phase computation and exactly-once settlement."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from ..catalog.registry import ListingCatalog
from ..errors import AuctionStillOpen, LedgerConflict
from ..events.dispatcher import EventSink
from ..events.models import EndedNoBids, Won
from ..ledger.book import APPEND_ATTEMPTS, BidLedger
from ..storage import AuctionStorage
from ..transport.timestamps import format_timestamp, utcnow
from .fsm import AuctionPhase, derive_phase
from .locks import ListingLocks

logger = logging.getLogger(__name__)


class SettlementOutcome(str, Enum):
    WON = "Won"
    ENDED_NO_BIDS = "EndedNoBids"
    ALREADY_SETTLED = "AlreadySettled"


@dataclass(frozen=True)
class SettlementResult:
    listing_id: str
    outcome: SettlementOutcome
    bidder_id: str | None = None
    amount: Decimal | None = None
    bid_id: str | None = None
    settled_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"result": self.outcome.value}
        if self.outcome is SettlementOutcome.WON:
            payload["bidderId"] = self.bidder_id
            payload["amount"] = str(self.amount)
        return payload

    def to_record(self) -> dict[str, Any]:
        return {
            "listing_id": self.listing_id,
            "outcome": self.outcome.value,
            "bidder_id": self.bidder_id,
            "amount": str(self.amount) if self.amount is not None else None,
            "bid_id": self.bid_id,
            "settled_at": format_timestamp(self.settled_at) if self.settled_at else None,
        }


class AuctionClock:
    def __init__(
        self,
        catalog: ListingCatalog,
        ledger: BidLedger,
        storage: AuctionStorage,
        locks: ListingLocks,
        sink: EventSink,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._catalog = catalog
        self._ledger = ledger
        self._storage = storage
        self._locks = locks
        self._sink = sink
        self._clock = clock

    async def phase(self, listing_id: str, now: datetime | None = None) -> AuctionPhase:
        listing = self._catalog.get(listing_id)
        settled = await self._storage.get_settlement(listing_id) is not None
        return derive_phase(listing.closes_at, settled, now or self._clock())

    async def settle(self, listing_id: str, now: datetime | None = None) -> SettlementResult:
        listing = self._catalog.get(listing_id)
        now = now or self._clock()
        if listing.is_open(now):
            raise AuctionStillOpen(listing_id)

        # Same lock as submit: a bid accepted before close is always visible here.
        async with self._locks.hold(listing_id):
            for _ in range(APPEND_ATTEMPTS):
                if await self._storage.get_settlement(listing_id) is not None:
                    won_cas = False
                    break
                history = await self._ledger.history(listing_id)
                leader = next(iter(history), None)
                if leader is None:
                    result = SettlementResult(listing_id, SettlementOutcome.ENDED_NO_BIDS, settled_at=now)
                else:
                    result = SettlementResult(
                        listing_id,
                        SettlementOutcome.WON,
                        bidder_id=leader.bidder_id,
                        amount=leader.amount,
                        bid_id=leader.id,
                        settled_at=now,
                    )
                won_cas = await self._storage.mark_settled(listing_id, result.to_record(), len(history))
                if won_cas:
                    break
                # Either another settler won, or a late append moved the ledger; the next pass tells which.
            else:
                raise LedgerConflict(listing_id, APPEND_ATTEMPTS)

        if not won_cas:
            logger.info("Settlement of listing %s skipped: AlreadySettled", listing_id)
            return SettlementResult(listing_id, SettlementOutcome.ALREADY_SETTLED)

        if result.outcome is SettlementOutcome.WON:
            logger.info("Listing %s settled: won by %s at %s", listing_id, result.bidder_id, result.amount)
            self._sink.emit(
                Won(
                    listing_id=listing_id,
                    bidder_id=result.bidder_id,
                    amount=result.amount,
                    bid_id=result.bid_id,
                    occurred_at=now,
                )
            )
        else:
            logger.info("Listing %s settled with no bids", listing_id)
            self._sink.emit(EndedNoBids(listing_id=listing_id, occurred_at=now))
        return result
