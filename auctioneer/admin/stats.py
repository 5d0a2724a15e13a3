"""Operational stats endpoint."""

from __future__ import annotations

from collections import Counter
from typing import Any

from fastapi import APIRouter, Depends, Request

from ..auction.engine import AuctionEngine

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_engine(request: Request) -> AuctionEngine:
    return request.app.state.engine


@router.get("/stats")
async def stats(engine: AuctionEngine = Depends(_get_engine)) -> dict[str, Any]:
    listings = list(engine.catalog.all())
    settlements = await engine.storage.list_settlements()

    bids_by_bidder: Counter[str] = Counter()
    wins_by_bidder: Counter[str] = Counter()
    total_bids = 0
    for listing in listings:
        history = await engine.history(listing.id)
        total_bids += len(history)
        for bid in history:
            bids_by_bidder[bid.bidder_id] += 1

    no_bid_count = 0
    for settlement in settlements:
        if settlement.get("outcome") == "EndedNoBids":
            no_bid_count += 1
        elif settlement.get("bidder_id"):
            wins_by_bidder[settlement["bidder_id"]] += 1

    total_settled = len(settlements)
    no_bid_rate = (no_bid_count / total_settled) if total_settled else 0.0
    bidder_win_rates = {
        bidder: round(wins_by_bidder[bidder] / bids_by_bidder[bidder], 4)
        for bidder in bids_by_bidder
        if bids_by_bidder[bidder]
    }
    return {
        "total_listings": len(listings),
        "total_bids": total_bids,
        "total_settled": total_settled,
        "no_bid_rate": round(no_bid_rate, 4),
        "wins_by_bidder": dict(wins_by_bidder),
        "bidder_win_rates": bidder_win_rates,
    }
