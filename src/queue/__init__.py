"""In-memory queue feeding project card events to the router."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from src.logger import get_logger, log_failure, log_with_context

from .models import CardEvent

logger = get_logger()

CardEventHandler = Callable[[CardEvent], Awaitable[Any]]


class _CardEventQueue:
    def __init__(self) -> None:
        self._queue: asyncio.Queue[CardEvent] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._handler: CardEventHandler | None = None

    def configure_handler(self, handler: CardEventHandler | None) -> None:
        self._handler = handler

    def _ensure_worker(self) -> asyncio.Queue[CardEvent]:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            loop = asyncio.get_running_loop()
            self._worker = loop.create_task(self._worker_loop(self._queue))
        return self._queue

    async def _worker_loop(self, queue: asyncio.Queue[CardEvent]) -> None:
        while True:
            event = await queue.get()
            start_time = time.monotonic()
            ctx_logger = log_with_context(
                logger,
                delivery_id=event.delivery_id,
                card_id=event.card_id,
                action=event.action,
            )
            try:
                if self._handler is None:
                    ctx_logger.debug("No card event handler configured; dropping event")
                else:
                    await self._handler(event)
                    ctx_logger.trace(f"Card event handled in {time.monotonic() - start_time:.3f}s")
            except Exception as exc:  # pragma: no cover - handlers log their own failures
                log_failure(logger, "Unhandled exception while routing card event", exc, delivery_id=event.delivery_id)
                logger.exception("Full exception traceback:")
            finally:
                queue.task_done()

    async def enqueue(self, event: CardEvent) -> None:
        queue = self._ensure_worker()
        await queue.put(event)

    async def join(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    async def shutdown(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:  # pragma: no cover - expected during shutdown
            pass
        finally:
            self._worker = None
            self._queue = None

    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0


_QUEUE = _CardEventQueue()


async def enqueue_card_event(event: CardEvent) -> None:
    """Add an event to the in-memory queue, starting the worker if needed."""

    logger.trace(f"Queueing card {event.card_id} ({event.action}); pending={_QUEUE.pending()}")
    await _QUEUE.enqueue(event)


def configure_card_event_handler(handler: CardEventHandler | None) -> None:
    """Configure the coroutine that processes queued card events."""

    _QUEUE.configure_handler(handler)


async def drain_card_events() -> None:
    """Wait until every queued event has been handled."""

    await _QUEUE.join()


async def shutdown_queue() -> None:
    """Stop the worker task."""

    await _QUEUE.shutdown()


def pending_events() -> int:
    return _QUEUE.pending()
