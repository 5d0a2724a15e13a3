"""Queue handoff between the engine and the notification transport."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Protocol

from google.cloud import pubsub_v1

from ..transport.canonical_json import canonical_dumps
from .models import AuctionEvent

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def emit(self, event: AuctionEvent) -> None: ...


class _PublisherProtocol:
    async def publish(self, event: AuctionEvent) -> None:  # pragma: no cover - protocol
        raise NotImplementedError


class _LocalPublisher(_PublisherProtocol):
    async def publish(self, event: AuctionEvent) -> None:
        logger.info("[local-notifier] %s listing=%s delivered", event.kind, event.listing_id)


class _PubSubPublisher(_PublisherProtocol):
    def __init__(self, options: Mapping[str, Any]) -> None:
        self._project_id = options.get("project_id")
        if not self._project_id:
            raise ValueError("pubsub notifier requires project_id")
        self._topic_prefix = options.get("topic_prefix", "auction-events")
        self._publisher = pubsub_v1.PublisherClient()

    def _topic_path(self, kind: str) -> str:
        topic = f"{self._topic_prefix}-{kind.lower()}"
        if topic.startswith("projects/"):
            return topic
        return self._publisher.topic_path(self._project_id, topic)

    async def publish(self, event: AuctionEvent) -> None:
        message = canonical_dumps(event.to_payload())
        future = self._publisher.publish(
            self._topic_path(event.kind),
            message,
            event=event.kind,
            listing_id=event.listing_id,
        )
        await asyncio.to_thread(future.result)


def build_publisher(backend: str, options: Mapping[str, Any] | None = None) -> _PublisherProtocol:
    if backend == "pubsub":
        return _PubSubPublisher(options or {})
    if backend == "local":
        return _LocalPublisher()
    raise ValueError(f"unknown notifier backend {backend}")


class EventDispatcher:
    """Fire-and-forget event sink drained by a background worker.

    ``emit`` never awaits and never raises: a full queue drops the event with a
    warning, and a failing publisher is logged. Neither can undo the bid or
    settlement that produced the event.
    """

    def __init__(self, publisher: _PublisherProtocol, queue_size: int = 1000) -> None:
        self._publisher = publisher
        self._queue: asyncio.Queue[AuctionEvent] = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task | None = None
        self.dropped = 0

    def emit(self, event: AuctionEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Notification queue full, dropping %s for listing %s", event.kind, event.listing_id)

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._drain())

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def join(self) -> None:
        await self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._publisher.publish(event)
            except Exception:
                logger.error("Failed to publish %s for listing %s", event.kind, event.listing_id, exc_info=True)
            finally:
                self._queue.task_done()
