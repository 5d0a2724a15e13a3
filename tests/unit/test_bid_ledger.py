"""Unit tests for bid submission, leader tracking and bid history."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from auctioneer.auction.engine import AuctionEngine
from auctioneer.errors import (
    AuctionClosed,
    BidTooLow,
    IdempotencyConflict,
    InvalidBid,
    LedgerConflict,
    ListingNotFound,
)
from auctioneer.ledger.book import BidHistory
from auctioneer.ledger.models import Bid, leader_of, parse_amount


class TestAuctionScenario:
    @pytest.mark.asyncio
    async def test_outbid_then_win(self, engine, sink, t0):
        first = await engine.submit("L1", "A", "150", t0 + timedelta(minutes=1))
        assert first.amount == Decimal("150.00")
        assert first.submitted_at == t0 + timedelta(minutes=1)
        leader = await engine.current_leader("L1")
        assert (leader.bidder_id, leader.amount) == ("A", Decimal("150.00"))

        with pytest.raises(BidTooLow) as excinfo:
            await engine.submit("L1", "B", "120", t0 + timedelta(minutes=2))
        assert excinfo.value.minimum == Decimal("150.01")

        await engine.submit("L1", "B", "200", t0 + timedelta(minutes=3))
        leader = await engine.current_leader("L1")
        assert (leader.bidder_id, leader.amount) == ("B", Decimal("200.00"))

        outbids = sink.of_kind("Outbid")
        assert len(outbids) == 1
        assert outbids[0].bidder_id == "A"
        assert outbids[0].new_amount == Decimal("200.00")

        result = await engine.settle("L1", t0 + timedelta(hours=2))
        assert result.outcome.value == "Won"
        assert (result.bidder_id, result.amount) == ("B", Decimal("200.00"))
        won = sink.of_kind("Won")
        assert len(won) == 1 and won[0].bidder_id == "B"


class TestSubmitRules:
    @pytest.mark.asyncio
    async def test_first_bid_must_exceed_starting_price(self, engine, t0):
        with pytest.raises(BidTooLow) as excinfo:
            await engine.submit("L1", "A", "100", t0)
        assert excinfo.value.minimum == Decimal("100.01")
        bid = await engine.submit("L1", "A", "100.01", t0)
        assert bid.amount == Decimal("100.01")

    @pytest.mark.asyncio
    async def test_equal_to_leader_is_too_low(self, engine, t0):
        await engine.submit("L1", "A", "150", t0)
        with pytest.raises(BidTooLow) as excinfo:
            await engine.submit("L1", "B", "150.00", t0 + timedelta(seconds=1))
        assert excinfo.value.minimum == Decimal("150.01")
        assert excinfo.value.to_payload()["minimum"] == "150.01"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["101", "1000000", "150.001", "-5", "abc", "1" + "0" * 30])
    async def test_bid_at_or_after_close_is_rejected(self, engine, t0, amount):
        closes_at = t0 + timedelta(hours=1)
        with pytest.raises(AuctionClosed):
            await engine.submit("L1", "A", amount, closes_at)
        with pytest.raises(AuctionClosed):
            await engine.submit("L1", "A", amount, closes_at + timedelta(days=3))

    @pytest.mark.asyncio
    async def test_unknown_listing(self, engine, t0):
        with pytest.raises(ListingNotFound):
            await engine.submit("missing", "A", "10", t0)
        with pytest.raises(ListingNotFound):
            await engine.current_leader("missing")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-5", "abc", "150.001", None, True, "1" + "0" * 30])
    async def test_invalid_amounts(self, engine, t0, amount):
        with pytest.raises(InvalidBid):
            await engine.submit("L1", "A", amount, t0)

    @pytest.mark.asyncio
    async def test_missing_bidder(self, engine, t0):
        with pytest.raises(InvalidBid):
            await engine.submit("L1", "", "150", t0)

    @pytest.mark.asyncio
    async def test_accepted_amounts_strictly_increase(self, engine, t0):
        attempts = ["101", "105", "104", "105", "130.50", "130.49", "200"]
        accepted = []
        for offset, amount in enumerate(attempts):
            try:
                bid = await engine.submit("L1", f"bidder-{offset % 3}", amount, t0 + timedelta(seconds=offset))
            except BidTooLow:
                continue
            accepted.append(bid.amount)
        assert accepted == sorted(set(accepted))
        assert accepted == [Decimal("101.00"), Decimal("105.00"), Decimal("130.50"), Decimal("200.00")]

    @pytest.mark.asyncio
    async def test_no_outbid_for_first_bid_or_self_raise(self, engine, sink, t0):
        await engine.submit("L1", "A", "110", t0)
        await engine.submit("L1", "A", "120", t0 + timedelta(seconds=1))
        assert sink.of_kind("Outbid") == []

    @pytest.mark.asyncio
    async def test_server_assigns_ids(self, engine, t0):
        first = await engine.submit("L1", "A", "110", t0)
        second = await engine.submit("L1", "B", "120", t0)
        assert first.id != second.id
        assert first.id.startswith("bid_")

    @pytest.mark.asyncio
    async def test_listings_do_not_share_leaders(self, engine, t0):
        await engine.submit("L1", "A", "500", t0)
        bid = await engine.submit("L2", "B", "25", t0)
        assert bid.amount == Decimal("25.00")
        assert (await engine.current_leader("L2")).bidder_id == "B"

    @pytest.mark.asyncio
    async def test_submitted_at_is_taken_when_the_lock_is_held(self, catalog, storage, sink, auction_settings, t0):
        now = {"value": t0}
        engine = AuctionEngine(catalog, storage, sink, auction_settings, clock=lambda: now["value"])
        async with engine.ledger._locks.hold("L1"):
            pending = asyncio.ensure_future(engine.submit("L1", "A", "150"))
            await asyncio.sleep(0.01)
            assert not pending.done()
            now["value"] = t0 + timedelta(seconds=5)
        bid = await pending
        assert bid.submitted_at == t0 + timedelta(seconds=5)


class TestSharedStorage:
    @pytest.mark.asyncio
    async def test_workers_sharing_storage_keep_ledger_increasing(self, catalog, storage, sink, auction_settings, t0):
        first = AuctionEngine(catalog, storage, sink, auction_settings, clock=lambda: t0)
        second = AuctionEngine(catalog, storage, sink, auction_settings, clock=lambda: t0)
        results = await asyncio.gather(
            first.submit("L1", "A", "150"),
            second.submit("L1", "B", "120"),
            return_exceptions=True,
        )
        amounts = [Decimal(record["amount"]) for record in await storage.list_bids("L1")]
        assert amounts == sorted(set(amounts))
        accepted = [result for result in results if isinstance(result, Bid)]
        assert len(accepted) == len(amounts)
        if len(accepted) == 2:
            (outbid,) = sink.of_kind("Outbid")
            assert (outbid.bidder_id, outbid.new_amount) == ("B", Decimal("150.00"))
        else:
            assert isinstance(results[1], BidTooLow)
            assert sink.of_kind("Outbid") == []

    @pytest.mark.asyncio
    async def test_stale_append_is_retried_against_new_leader(self, catalog, storage, sink, auction_settings, t0):
        first = AuctionEngine(catalog, storage, sink, auction_settings, clock=lambda: t0)
        second = AuctionEngine(catalog, storage, sink, auction_settings, clock=lambda: t0)
        append_bid = storage.append_bid
        raced = []

        async def other_worker_appends_first(record, expected_count):
            if not raced:
                raced.append(await second.submit("L1", "B", "200"))
            return await append_bid(record, expected_count)

        storage.append_bid = other_worker_appends_first
        with pytest.raises(BidTooLow) as excinfo:
            await first.submit("L1", "A", "150")
        assert excinfo.value.minimum == Decimal("200.01")
        assert [record["bidder_id"] for record in await storage.list_bids("L1")] == ["B"]

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_conflicts(self, engine, storage, t0):
        storage.append_bid = AsyncMock(return_value=False)
        with pytest.raises(LedgerConflict):
            await engine.submit("L1", "A", "150", t0)


class TestConcurrentSubmission:
    @pytest.mark.asyncio
    async def test_same_amount_race_has_one_winner(self, engine, t0):
        results = await asyncio.gather(
            *(engine.submit("L1", f"bidder-{i}", "150", t0) for i in range(5)),
            return_exceptions=True,
        )
        accepted = [result for result in results if isinstance(result, Bid)]
        rejected = [result for result in results if isinstance(result, BidTooLow)]
        assert len(accepted) == 1
        assert len(rejected) == 4
        assert all(error.minimum == Decimal("150.01") for error in rejected)
        assert len(await engine.history("L1")) == 1

    @pytest.mark.asyncio
    async def test_increasing_race_keeps_ledger_monotonic(self, engine, t0):
        amounts = ["110", "140", "120", "160", "130", "150"]
        await asyncio.gather(
            *(engine.submit("L1", f"b{i}", amount, t0) for i, amount in enumerate(amounts)),
            return_exceptions=True,
        )
        records = await engine.storage.list_bids("L1")
        in_order = [Decimal(record["amount"]) for record in records]
        assert in_order == sorted(in_order)
        assert len(set(in_order)) == len(in_order)


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_retry_returns_original_bid(self, engine, sink, t0):
        first = await engine.submit("L1", "A", "150", t0, idempotency_key="k1")
        await engine.submit("L1", "B", "160", t0)
        again = await engine.submit("L1", "A", "150", t0 + timedelta(seconds=5), idempotency_key="k1")
        assert again == first
        assert len(await engine.history("L1")) == 2

    @pytest.mark.asyncio
    async def test_key_reuse_with_different_body(self, engine, t0):
        await engine.submit("L1", "A", "150", t0, idempotency_key="k1")
        with pytest.raises(IdempotencyConflict):
            await engine.submit("L1", "A", "175", t0, idempotency_key="k1")

    @pytest.mark.asyncio
    async def test_keys_are_scoped_per_listing(self, engine, t0):
        first = await engine.submit("L1", "A", "150", t0, idempotency_key="k1")
        second = await engine.submit("L2", "A", "150", t0, idempotency_key="k1")
        assert first.id != second.id


class TestHistory:
    @pytest.mark.asyncio
    async def test_history_is_ordered_and_restartable(self, engine, t0):
        for offset, amount in enumerate(["110", "120", "130", "140", "150", "160"]):
            await engine.submit("L1", f"b{offset}", amount, t0 + timedelta(seconds=offset))
        history = await engine.history("L1")
        amounts = [bid.amount for bid in history]
        assert amounts == sorted(amounts, reverse=True)
        assert [bid.amount for bid in history] == amounts
        assert [bid.amount for bid in history.head(5)] == amounts[:5]
        assert len(history) == 6

    def test_rank_tie_breaks(self, t0):
        early = Bid("bid_b", "L1", "A", Decimal("50.00"), t0)
        late = Bid("bid_a", "L1", "B", Decimal("50.00"), t0 + timedelta(seconds=1))
        same_time = Bid("bid_0", "L1", "C", Decimal("50.00"), t0)
        low = Bid("bid_z", "L1", "D", Decimal("10.00"), t0 - timedelta(hours=1))
        assert leader_of([late, early, low]) is early
        assert leader_of([early, same_time, late]) is same_time
        assert [bid.id for bid in BidHistory([low, late, early, same_time])] == [
            "bid_0",
            "bid_b",
            "bid_a",
            "bid_z",
        ]
        assert leader_of([]) is None

    def test_record_round_trip_keeps_decimal(self, t0):
        bid = Bid("bid_1", "L1", "A", Decimal("150.01"), t0)
        record = bid.to_record()
        assert record["amount"] == "150.01"
        assert record["submitted_at"].endswith("Z")
        assert Bid.from_record(record) == bid


class TestParseAmount:
    def test_accepts_ints_floats_and_strings(self):
        assert parse_amount(150) == Decimal("150.00")
        assert parse_amount(150.5) == Decimal("150.50")
        assert parse_amount(" 99.99 ") == Decimal("99.99")

    def test_out_of_range_amount_is_invalid(self):
        with pytest.raises(InvalidBid):
            parse_amount("1" + "0" * 30)
        assert parse_amount("1" + "0" * 20) == Decimal("1" + "0" * 20)
