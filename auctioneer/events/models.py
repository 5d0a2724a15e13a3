"""Notification events emitted by the ledger and the settlement path."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Union

from ..transport.timestamps import format_timestamp, utcnow


@dataclass(frozen=True)
class Outbid:
    """The previous leader has been overtaken."""

    kind: ClassVar[str] = "Outbid"

    listing_id: str
    bidder_id: str
    previous_amount: Decimal
    new_amount: Decimal
    occurred_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> dict[str, Any]:
        return {
            "event": self.kind,
            "listingId": self.listing_id,
            "bidderId": self.bidder_id,
            "previousAmount": str(self.previous_amount),
            "newAmount": str(self.new_amount),
            "occurredAt": format_timestamp(self.occurred_at),
        }


@dataclass(frozen=True)
class Won:
    kind: ClassVar[str] = "Won"

    listing_id: str
    bidder_id: str
    amount: Decimal
    bid_id: str
    occurred_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> dict[str, Any]:
        return {
            "event": self.kind,
            "listingId": self.listing_id,
            "bidderId": self.bidder_id,
            "amount": str(self.amount),
            "bidId": self.bid_id,
            "occurredAt": format_timestamp(self.occurred_at),
        }


@dataclass(frozen=True)
class EndedNoBids:
    kind: ClassVar[str] = "EndedNoBids"

    listing_id: str
    occurred_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> dict[str, Any]:
        return {
            "event": self.kind,
            "listingId": self.listing_id,
            "occurredAt": format_timestamp(self.occurred_at),
        }


AuctionEvent = Union[Outbid, Won, EndedNoBids]
