"""Firestore storage backend leveraging google-cloud-firestore."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from google.api_core.exceptions import GoogleAPICallError
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2 import service_account

from ..errors import StorageUnavailable


class FirestoreStorage:
    """Bids, settlements and a per-listing ledger head holding ``bid_count``.

    Appends and settlements run in a transaction that reads the head and the
    settlement document first, so concurrent writers retry or lose cleanly.
    """

    def __init__(
        self,
        *,
        project_id: str,
        bids_collection: str = "auction_bids",
        settlements_collection: str = "auction_settlements",
        ledgers_collection: str = "auction_ledgers",
        credentials_path: str | None = None,
    ) -> None:
        if not project_id:
            raise ValueError("project_id required for firestore backend")
        client_kwargs: dict[str, Any] = {"project": project_id}
        if credentials_path:
            client_kwargs["credentials"] = service_account.Credentials.from_service_account_file(
                credentials_path
            )
        self._client = firestore.Client(**client_kwargs)
        self._bids_collection_name = bids_collection
        self._settlements_collection_name = settlements_collection
        self._ledgers_collection_name = ledgers_collection

    def _bids(self):
        return self._client.collection(self._bids_collection_name)

    def _settlements(self):
        return self._client.collection(self._settlements_collection_name)

    def _ledgers(self):
        return self._client.collection(self._ledgers_collection_name)

    async def _run(self, func: Callable, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except GoogleAPICallError as exc:
            raise StorageUnavailable(f"firestore call failed: {exc}") from exc

    def _conditional_write(self, listing_id: str, expected_count: int, write: Callable) -> bool:
        head_ref = self._ledgers().document(listing_id)
        settlement_ref = self._settlements().document(listing_id)

        @firestore.transactional
        def apply(transaction) -> bool:
            head = head_ref.get(transaction=transaction)
            count = head.get("bid_count") if head.exists else 0
            if settlement_ref.get(transaction=transaction).exists or count != expected_count:
                return False
            write(transaction, head_ref, settlement_ref, count)
            return True

        return apply(self._client.transaction())

    async def append_bid(self, bid: dict[str, Any], expected_count: int) -> bool:
        bid_ref = self._bids().document(bid["bid_id"])

        def write(transaction, head_ref, settlement_ref, count):
            # Firestore has no insertion order, so the log position is stored with the bid.
            transaction.create(bid_ref, {**bid, "seq": count})
            transaction.set(head_ref, {"bid_count": count + 1})

        return await self._run(self._conditional_write, bid["listing_id"], expected_count, write)

    async def list_bids(self, listing_id: str) -> list[dict[str, Any]]:
        query = self._bids().where(filter=FieldFilter("listing_id", "==", listing_id))
        docs = await self._run(lambda: list(query.stream()))
        records = sorted((doc.to_dict() for doc in docs), key=lambda record: record["seq"])
        for record in records:
            record.pop("seq", None)
        return records

    async def mark_settled(self, listing_id: str, settlement: dict[str, Any], expected_count: int) -> bool:
        def write(transaction, head_ref, settlement_ref, count):
            transaction.create(settlement_ref, settlement)

        return await self._run(self._conditional_write, listing_id, expected_count, write)

    async def get_settlement(self, listing_id: str) -> dict[str, Any] | None:
        doc = await self._run(self._settlements().document(listing_id).get)
        if not doc.exists:
            return None
        return doc.to_dict()

    async def list_settlements(self) -> list[dict[str, Any]]:
        docs = await self._run(lambda: list(self._settlements().stream()))
        return [doc.to_dict() for doc in docs]
