"""Expose currently loaded server config for debugging."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..config import ServerConfig

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_config(request: Request) -> ServerConfig:
    return request.app.state.server_config


@router.get("/config")
async def config(request: Request, config: ServerConfig = Depends(_get_config)) -> dict:
    auction = config.auction
    return {
        "version": request.app.version,
        "bid_increment": str(auction.bid_increment),
        "lock_timeout_ms": auction.lock_timeout_ms,
        "idempotency_ttl_seconds": auction.idempotency_ttl_seconds,
        "sweep_interval_seconds": auction.sweep_interval_seconds,
        "storage_backend": config.storage.backend,
        "notifier_backend": config.notifier.backend,
        "schemas": request.app.state.schema_registry.names(),
    }
