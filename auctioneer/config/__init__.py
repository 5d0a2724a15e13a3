"""Configuration helpers for the auction service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml

_DEFAULT_SERVER_CONFIG = Path(__file__).resolve().parent / "server.yaml"
_DEFAULT_LISTINGS_CONFIG = Path(__file__).resolve().parent / "listings.yaml"


@dataclass(frozen=True)
class AuctionConfig:
    bid_increment: Decimal
    lock_timeout_ms: int
    idempotency_ttl_seconds: int
    sweep_interval_seconds: float


@dataclass(frozen=True)
class StorageConfig:
    backend: str
    options: Mapping[str, Any]


@dataclass(frozen=True)
class NotifierConfig:
    backend: str
    queue_size: int
    options: Mapping[str, Any]


@dataclass(frozen=True)
class LoggingConfig:
    level: str


@dataclass(frozen=True)
class ServerConfig:
    listen: Mapping[str, Any]
    auction: AuctionConfig
    storage: StorageConfig
    notifier: NotifierConfig
    logging: LoggingConfig


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    return yaml.safe_load(path.read_text()) or {}


def parse_server_config(data: Mapping[str, Any]) -> ServerConfig:
    auction = data.get("auction", {})
    storage = data.get("storage", {})
    notifier = data.get("notifier", {})
    log_settings = data.get("logging", {})
    increment = Decimal(str(auction.get("bid_increment", "0.01")))
    if increment <= 0:
        raise ValueError("auction.bid_increment must be positive")
    return ServerConfig(
        listen=data.get("listen", {}),
        auction=AuctionConfig(
            bid_increment=increment,
            lock_timeout_ms=int(auction.get("lock_timeout_ms", 2000)),
            idempotency_ttl_seconds=int(auction.get("idempotency_ttl_seconds", 300)),
            sweep_interval_seconds=float(auction.get("sweep_interval_seconds", 30)),
        ),
        storage=StorageConfig(
            backend=str(storage.get("backend", "in_memory")),
            options=dict(storage.get("options") or {}),
        ),
        notifier=NotifierConfig(
            backend=str(notifier.get("backend", "local")),
            queue_size=int(notifier.get("queue_size", 1000)),
            options=dict(notifier.get("pubsub") or {}),
        ),
        logging=LoggingConfig(level=str(log_settings.get("level", "INFO")).upper()),
    )


@lru_cache(maxsize=1)
def get_server_config() -> ServerConfig:
    path = Path(os.getenv("AUCTIONEER_CONFIG_PATH", _DEFAULT_SERVER_CONFIG))
    return parse_server_config(_load_yaml(path))


def get_listings_path() -> Path:
    return Path(os.getenv("AUCTIONEER_LISTINGS_PATH", _DEFAULT_LISTINGS_CONFIG))
