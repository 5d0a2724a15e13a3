"""Admin health endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health")
async def health(request: Request) -> dict[str, int | str | bool]:
    state = request.app.state
    start_time = getattr(state, "start_time", None)
    uptime = int((datetime.now(timezone.utc) - start_time).total_seconds()) if start_time else 0
    return {
        "status": "healthy",
        "uptime_seconds": uptime,
        "version": request.app.version,
        "listings": len(state.engine.catalog.all()),
        "sweeper_running": state.sweeper.running,
        "pending_notifications": state.dispatcher.pending,
        "dropped_notifications": state.dispatcher.dropped,
    }
