"""Auction phase state machine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum


class AuctionPhase(str, Enum):
    OPEN = "OPEN"
    CLOSED_UNSETTLED = "CLOSED_UNSETTLED"
    SETTLED = "SETTLED"


class AuctionEvent(str, Enum):
    DEADLINE_PASSED = "deadline_passed"
    SETTLEMENT_WON = "settlement_won"


_TRANSITIONS = {
    (AuctionPhase.OPEN, AuctionEvent.DEADLINE_PASSED): AuctionPhase.CLOSED_UNSETTLED,
    (
        AuctionPhase.CLOSED_UNSETTLED,
        AuctionEvent.SETTLEMENT_WON,
    ): AuctionPhase.SETTLED,
}


def transition(current: AuctionPhase, event: AuctionEvent) -> AuctionPhase:
    try:
        return _TRANSITIONS[(current, event)]
    except KeyError as exc:
        raise ValueError(f"invalid transition from {current} via {event}") from exc


def derive_phase(closes_at: datetime, settled: bool, now: datetime) -> AuctionPhase:
    """Phase is a pure function of the close time and the settled cell."""
    phase = AuctionPhase.OPEN
    if now >= closes_at:
        phase = transition(phase, AuctionEvent.DEADLINE_PASSED)
        if settled:
            phase = transition(phase, AuctionEvent.SETTLEMENT_WON)
    return phase
