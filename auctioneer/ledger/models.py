"""Bid records and the rank ordering that decides the leader."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from ..errors import InvalidBid
from ..transport.timestamps import format_timestamp, parse_timestamp

MINOR_UNIT = Decimal("0.01")


def parse_amount(value: Any) -> Decimal:
    """Parse a positive monetary amount with at most two fractional digits."""
    if isinstance(value, bool) or value is None:
        raise InvalidBid("amount is required")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidBid(f"amount {value!r} is not a number") from exc
    if not amount.is_finite() or amount <= 0:
        raise InvalidBid("amount must be positive")
    try:
        quantized = amount.quantize(MINOR_UNIT)
    except InvalidOperation as exc:
        # More digits than the decimal context can carry.
        raise InvalidBid(f"amount {value} is out of range") from exc
    if amount != quantized:
        raise InvalidBid(f"amount {value} has more precision than {MINOR_UNIT}")
    return quantized


@dataclass(frozen=True)
class Bid:
    id: str
    listing_id: str
    bidder_id: str
    amount: Decimal
    submitted_at: datetime

    def rank_key(self) -> tuple[Decimal, datetime, str]:
        """Sort key, ascending from the best bid: highest amount, then earliest, then lowest id."""
        return (-self.amount, self.submitted_at, self.id)

    def to_record(self) -> dict[str, Any]:
        return {
            "bid_id": self.id,
            "listing_id": self.listing_id,
            "bidder_id": self.bidder_id,
            "amount": str(self.amount),
            "submitted_at": format_timestamp(self.submitted_at),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Bid":
        return cls(
            id=record["bid_id"],
            listing_id=record["listing_id"],
            bidder_id=record["bidder_id"],
            amount=Decimal(record["amount"]),
            submitted_at=parse_timestamp(record["submitted_at"]),
        )


def leader_of(bids: list[Bid]) -> Bid | None:
    return min(bids, key=Bid.rank_key, default=None)
