"""Error taxonomy shared by the ledger, the clock, and the HTTP layer."""

from __future__ import annotations

from decimal import Decimal


class AuctionError(ValueError):
    """Business-rule rejection. Recoverable by the caller."""

    code = "AuctionError"

    def to_payload(self) -> dict[str, str]:
        return {"error": self.code, "detail": str(self)}


class ListingNotFound(AuctionError):
    code = "ListingNotFound"

    def __init__(self, listing_id: str) -> None:
        super().__init__(f"listing {listing_id} not found")
        self.listing_id = listing_id


class DuplicateListing(AuctionError):
    code = "DuplicateListing"

    def __init__(self, listing_id: str) -> None:
        super().__init__(f"listing {listing_id} already registered")
        self.listing_id = listing_id


class InvalidBid(AuctionError):
    code = "InvalidBid"


class IdempotencyConflict(AuctionError):
    """An idempotency key was replayed with a different request body."""

    code = "IdempotencyConflict"


class BidTooLow(AuctionError):
    code = "BidTooLow"

    def __init__(self, amount: Decimal, minimum: Decimal) -> None:
        super().__init__(f"bid {amount} is below the minimum of {minimum}")
        self.amount = amount
        self.minimum = minimum

    def to_payload(self) -> dict[str, str]:
        payload = super().to_payload()
        payload["minimum"] = str(self.minimum)
        return payload


class AuctionClosed(AuctionError):
    code = "AuctionClosed"

    def __init__(self, listing_id: str) -> None:
        super().__init__(f"auction for listing {listing_id} is closed")
        self.listing_id = listing_id


class AuctionStillOpen(AuctionError):
    code = "AuctionOpen"

    def __init__(self, listing_id: str) -> None:
        super().__init__(f"auction for listing {listing_id} has not closed yet")
        self.listing_id = listing_id


class InfrastructureError(RuntimeError):
    """Storage or coordination failure, distinct from business rejections."""


class LockTimeout(InfrastructureError):
    def __init__(self, listing_id: str, timeout_ms: int) -> None:
        super().__init__(f"timed out after {timeout_ms}ms waiting for listing {listing_id}")
        self.listing_id = listing_id


class StorageUnavailable(InfrastructureError):
    """Raised by storage backends when the underlying store cannot be reached."""


class LedgerConflict(InfrastructureError):
    """Another writer kept moving the listing's ledger between read and append."""

    def __init__(self, listing_id: str, attempts: int) -> None:
        super().__init__(f"listing {listing_id} changed under {attempts} consecutive writes")
        self.listing_id = listing_id
