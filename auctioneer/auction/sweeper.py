"""Periodic settlement of auctions whose close time has passed."""

from __future__ import annotations

import asyncio
import logging

from ..errors import AuctionError, InfrastructureError
from .clock import SettlementOutcome, SettlementResult
from .engine import AuctionEngine
from .fsm import AuctionPhase

logger = logging.getLogger(__name__)


class SettlementSweeper:
    def __init__(self, engine: AuctionEngine, interval_seconds: float) -> None:
        self._engine = engine
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> list[SettlementResult]:
        now = self._engine.now()
        results: list[SettlementResult] = []
        for listing in self._engine.catalog.closed_before(now):
            try:
                if await self._engine.phase(listing.id, now) is AuctionPhase.SETTLED:
                    continue
                result = await self._engine.settle(listing.id, now)
            except (AuctionError, InfrastructureError) as exc:
                # The next sweep retries; settle is idempotent.
                logger.warning("Sweep could not settle listing %s: %s", listing.id, exc)
                continue
            if result.outcome is not SettlementOutcome.ALREADY_SETTLED:
                results.append(result)
        if results:
            logger.info("Sweep settled %d listings", len(results))
        return results

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep_once()
            except Exception:
                logger.error("Settlement sweep failed", exc_info=True)
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._interval <= 0:
            logger.info("Settlement sweeper disabled")
            return
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
