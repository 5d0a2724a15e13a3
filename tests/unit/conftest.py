"""Shared fixtures for engine and API tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
import yaml
from fastapi.testclient import TestClient

from auctioneer.auction.engine import AuctionEngine
from auctioneer.catalog.registry import ListingCatalog
from auctioneer.config import AuctionConfig, get_server_config
from auctioneer.storage.in_memory import InMemoryStorage

T = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class RecordingSink:
    """Event sink double that keeps every emitted event in order."""

    def __init__(self) -> None:
        self.events = []

    def emit(self, event) -> None:
        self.events.append(event)

    def of_kind(self, kind: str) -> list:
        return [event for event in self.events if event.kind == kind]


def write_listings(path: Path, listings: list[dict]) -> Path:
    path.write_text(yaml.safe_dump({"listings": listings}))
    return path


@pytest.fixture
def t0():
    return T


@pytest.fixture
def listings_file(tmp_path):
    return write_listings(
        tmp_path / "listings.yaml",
        [
            {
                "id": "L1",
                "title": "Professional Camera",
                "starting_price": "100",
                "closes_at": (T + timedelta(hours=1)).isoformat(),
            },
            {
                "id": "L2",
                "title": "Mountain Bike",
                "starting_price": "20.00",
                "closes_at": (T + timedelta(hours=1)).isoformat(),
            },
        ],
    )


@pytest.fixture
def catalog(listings_file):
    return ListingCatalog(listings_file)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def auction_settings():
    return AuctionConfig(
        bid_increment=Decimal("0.01"),
        lock_timeout_ms=500,
        idempotency_ttl_seconds=300,
        sweep_interval_seconds=0,
    )


@pytest.fixture
def engine(catalog, storage, sink, auction_settings):
    return AuctionEngine(catalog, storage, sink, auction_settings, clock=lambda: T)


@pytest.fixture
def client(tmp_path, monkeypatch):
    """TestClient with lifespan running against temporary config files."""
    from auctioneer.main import app

    server_config = tmp_path / "server.yaml"
    server_config.write_text(
        yaml.safe_dump(
            {
                "auction": {"bid_increment": "0.01", "sweep_interval_seconds": 0},
                "storage": {"backend": "in_memory"},
                "notifier": {"backend": "local", "queue_size": 100},
                "logging": {"level": "DEBUG"},
            }
        )
    )
    listings = write_listings(
        tmp_path / "listings.yaml",
        [
            {"id": "open-item", "title": "Camera", "starting_price": "100", "closes_at": "2099-01-01T00:00:00Z"},
            {"id": "closed-item", "title": "Tent", "starting_price": "30", "closes_at": "2000-01-01T00:00:00Z"},
        ],
    )
    monkeypatch.setenv("AUCTIONEER_CONFIG_PATH", str(server_config))
    monkeypatch.setenv("AUCTIONEER_LISTINGS_PATH", str(listings))
    get_server_config.cache_clear()
    with TestClient(app) as test_client:
        yield test_client
    get_server_config.cache_clear()
