"""In-process trigger queue.

The mutation path calls `emit` after its own commit and moves on: `emit`
never blocks and never raises. A consumer task drains the queue and runs
each event as an independent task, so events for different entities make
progress concurrently and in no guaranteed order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.utils.datetime_parsing import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerEvent:
    trigger_type: str
    entity_type: str
    entity_id: str
    context: dict[str, Any] = field(default_factory=dict)
    dedupe_key: str | None = None
    emitted_at: datetime = field(default_factory=utcnow)

    def log_context(self) -> dict[str, Any]:
        return build_log_context(
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            trigger_type=self.trigger_type,
        )


EventHandler = Callable[[TriggerEvent], Awaitable[Any]]


class AutomationEventQueue:
    def __init__(self, handler: EventHandler, maxsize: int | None = None) -> None:
        self.handler = handler
        self.maxsize = settings.AUTOMATION_QUEUE_MAXSIZE if maxsize is None else maxsize
        self._queue: asyncio.Queue[TriggerEvent] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._consumer: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._consumer = asyncio.create_task(self._consume(), name="automation-event-consumer")
        logger.info("Automation event queue started")

    def emit(self, event: TriggerEvent) -> bool:
        """Queue an event. Returns False (and logs) when it had to be dropped."""
        if not self.is_running or self._queue is None or self._loop is None:
            logger.warning("Automation queue not running; event dropped", extra=event.log_context())
            return False

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        try:
            if running is self._loop:
                self._queue.put_nowait(event)
            else:
                # Called from a worker thread (sync endpoint)
                self._loop.call_soon_threadsafe(self._put_or_drop, event)
        except asyncio.QueueFull:
            logger.warning("Automation queue full; event dropped", extra=event.log_context())
            return False
        except RuntimeError:
            logger.warning("Automation queue loop closed; event dropped", extra=event.log_context())
            return False
        return True

    def _put_or_drop(self, event: TriggerEvent) -> None:
        if self._queue is None:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Automation queue full; event dropped", extra=event.log_context())

    async def _consume(self) -> None:
        assert self._queue is not None
        while True:
            event = await self._queue.get()
            task = asyncio.create_task(self._run(event))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            self._queue.task_done()

    async def _run(self, event: TriggerEvent) -> None:
        try:
            await self.handler(event)
        except Exception:
            logger.exception("Automation event handler failed", extra=event.log_context())

    async def drain(self) -> None:
        """Wait until every queued and in-flight event has finished."""
        if self._queue is None:
            return
        while True:
            await self._queue.join()
            if not self._in_flight:
                break
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
            if self._queue.empty() and not self._in_flight:
                break

    async def stop(self, *, drain: bool = True) -> None:
        if drain:
            await self.drain()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
        self._consumer = None
        self._queue = None
        self._loop = None
        logger.info("Automation event queue stopped")
