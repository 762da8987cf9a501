"""Single-subscriber progress channel for a sync run.

Producers call ``emit``; one consumer drains ``events()``. Emission never
raises: once the consumer is gone (or stops draining) events are dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from typing import Any, AsyncIterator

from ..schemas.sync import SyncEvent

logger = logging.getLogger(__name__)

EVENT_TYPES = frozenset({
    "progress",
    "account",
    "locations",
    "warning",
    "save-progress",
    "save-complete",
    "save-error",
    "heartbeat",
    "reviews",
    "posts",
    "search-keywords",
    "complete",
    "error",
    "done",
})

_END = None
TOTAL_STEPS = 5


class ProgressEmitter:
    def __init__(self, *, heartbeat_interval: float = 15.0, max_buffered: int = 1000):
        self.heartbeat_interval = heartbeat_interval
        self.max_buffered = max_buffered
        # Unbounded so the end-of-stream marker always fits; capacity is checked in emit().
        self._queue: asyncio.Queue[SyncEvent | None] = asyncio.Queue()
        self._closed = False
        self._disconnected = False
        self._heartbeat_task: asyncio.Task | None = None
        self.close_count = 0
        self.counts: Counter[str] = Counter()

    @property
    def closed(self) -> bool:
        return self._closed or self._disconnected

    def emit(self, event_type: str, payload: dict[str, Any] | None = None) -> bool:
        """Queue an event. Returns False when it was dropped."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type {event_type!r}")
        if self.closed:
            logger.debug("Dropping %s event; stream closed", event_type)
            return False
        if self._queue.qsize() >= self.max_buffered:
            logger.warning("Event subscriber is not draining; dropping further events")
            self._disconnected = True
            return False
        self._queue.put_nowait(SyncEvent(type=event_type, payload=payload or {}))
        self.counts[event_type] += 1
        return True

    def disconnect(self) -> None:
        """Subscriber went away. Processing continues; events are dropped."""
        if not self._disconnected:
            logger.info("Event subscriber disconnected")
        self._disconnected = True

    def start_heartbeat(self) -> None:
        if self._heartbeat_task is None and not self._closed:
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(), name="sync-heartbeat"
            )

    async def _heartbeat_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.heartbeat_interval)
            self.emit("heartbeat", {"ts": int(time.time() * 1000)})

    def close(self) -> None:
        """Stop the heartbeat and end the stream. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self.close_count += 1
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        self._queue.put_nowait(_END)

    async def events(self) -> AsyncIterator[SyncEvent]:
        while True:
            event = await self._queue.get()
            if event is _END:
                return
            yield event

    async def sse(self) -> AsyncIterator[str]:
        async for event in self.events():
            yield event.to_sse()

    def progress(self, step: str, current_step: int, message: str, **details: Any) -> bool:
        return self.emit("progress", {
            "step": step,
            "progress": current_step,
            "total": TOTAL_STEPS,
            "message": message,
            **details,
        })

    def warning(self, message: str, **details: Any) -> bool:
        return self.emit("warning", {"message": message, **details})
