from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from jsonschema import ValidationError

from .admin import config as admin_config
from .admin import health as admin_health
from .admin import stats as admin_stats
from .auction.engine import AuctionEngine, bid_to_payload
from .auction.sweeper import SettlementSweeper
from .catalog.registry import ListingCatalog, build_listing
from .config import ServerConfig, get_listings_path, get_server_config
from .errors import (
    AuctionClosed,
    AuctionError,
    AuctionStillOpen,
    BidTooLow,
    DuplicateListing,
    InfrastructureError,
    ListingNotFound,
)
from .events.dispatcher import EventDispatcher, build_publisher
from .storage import build_storage
from .validation.validator import SchemaRegistry, describe_error, get_schema_registry

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    BidTooLow: status.HTTP_409_CONFLICT,
    AuctionStillOpen: status.HTTP_409_CONFLICT,
    DuplicateListing: status.HTTP_409_CONFLICT,
    AuctionClosed: status.HTTP_410_GONE,
    ListingNotFound: status.HTTP_404_NOT_FOUND,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    server_config = get_server_config()
    logging.basicConfig(level=server_config.logging.level)
    schema_registry = get_schema_registry()
    catalog = ListingCatalog(get_listings_path())
    storage = build_storage(server_config)
    notifier = server_config.notifier
    dispatcher = EventDispatcher(
        build_publisher(notifier.backend, notifier.options),
        queue_size=notifier.queue_size,
    )
    engine = AuctionEngine(catalog, storage, dispatcher, server_config.auction)
    sweeper = SettlementSweeper(engine, server_config.auction.sweep_interval_seconds)

    app.state.server_config = server_config
    app.state.schema_registry = schema_registry
    app.state.dispatcher = dispatcher
    app.state.engine = engine
    app.state.sweeper = sweeper
    app.state.start_time = datetime.now(timezone.utc)

    dispatcher.start()
    sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()
        await dispatcher.stop()


app = FastAPI(
    title="Auctioneer",
    version="1.0.0",
    docs_url="/docs",
    lifespan=lifespan,
)

app.include_router(admin_health.router)
app.include_router(admin_stats.router)
app.include_router(admin_config.router)


@app.exception_handler(AuctionError)
async def auction_error_handler(request: Request, exc: AuctionError) -> JSONResponse:
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_422_UNPROCESSABLE_ENTITY)
    return JSONResponse(status_code=status_code, content=exc.to_payload())


@app.exception_handler(InfrastructureError)
async def infrastructure_error_handler(request: Request, exc: InfrastructureError) -> JSONResponse:
    logger.error("Infrastructure failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": "ServiceUnavailable", "detail": str(exc)},
    )


# Dependency helpers ---------------------------------------------------------


def get_server_settings(request: Request) -> ServerConfig:
    return request.app.state.server_config


def get_schema_service(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


def get_engine(request: Request) -> AuctionEngine:
    return request.app.state.engine


# Routes ---------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root(settings: ServerConfig = Depends(get_server_settings)) -> dict[str, Any]:
    return {
        "service": "auctioneer",
        "version": app.version,
        "auction": {
            "bid_increment": str(settings.auction.bid_increment),
            "sweep_interval_seconds": settings.auction.sweep_interval_seconds,
        },
        "storage_backend": settings.storage.backend,
    }


@app.get("/ping", tags=["meta"])
async def ping() -> dict[str, Any]:
    return {"status": "ok", "version": app.version}


@app.post("/listings", tags=["listings"], status_code=status.HTTP_201_CREATED)
async def register_listing(
    payload: dict[str, Any] = Body(...),
    schemas: SchemaRegistry = Depends(get_schema_service),
    engine: AuctionEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        schemas.validate("listing_request", payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=describe_error(exc)) from exc
    try:
        listing = build_listing(
            {
                "id": payload["id"],
                "title": payload.get("title"),
                "seller_id": payload.get("sellerId"),
                "category": payload.get("category"),
                "starting_price": payload["startingPrice"],
                "closes_at": payload["closesAt"],
            }
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    await engine.register_listing(listing)
    return await engine.describe(listing.id)


@app.get("/listings", tags=["listings"])
async def list_listings(engine: AuctionEngine = Depends(get_engine)) -> list[dict[str, Any]]:
    now = engine.now()
    listings = sorted(engine.catalog.all(), key=lambda listing: listing.closes_at)
    return [await engine.describe(listing.id, now) for listing in listings]


@app.get("/listings/{listing_id}", tags=["listings"])
async def get_listing(listing_id: str, engine: AuctionEngine = Depends(get_engine)) -> dict[str, Any]:
    return await engine.describe(listing_id)


@app.post("/listings/{listing_id}/bids", tags=["bids"], status_code=status.HTTP_201_CREATED)
async def submit_bid(
    listing_id: str,
    payload: dict[str, Any] = Body(...),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    schemas: SchemaRegistry = Depends(get_schema_service),
    engine: AuctionEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        schemas.validate("bid_request", payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=describe_error(exc)) from exc
    bid = await engine.submit(
        listing_id,
        payload["bidderId"],
        payload["amount"],
        idempotency_key=idempotency_key,
    )
    return bid_to_payload(bid)


@app.get("/listings/{listing_id}/bids", tags=["bids"])
async def list_bids(
    listing_id: str,
    limit: int | None = Query(default=None, ge=1),
    engine: AuctionEngine = Depends(get_engine),
) -> list[dict[str, Any]]:
    history = await engine.history(listing_id)
    bids = history.head(limit) if limit else list(history)
    return [bid_to_payload(bid) for bid in bids]


@app.post("/listings/{listing_id}/settle", tags=["settlement"])
async def settle_listing(listing_id: str, engine: AuctionEngine = Depends(get_engine)) -> dict[str, Any]:
    result = await engine.settle(listing_id)
    return result.to_payload()
