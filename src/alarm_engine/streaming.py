"""Live alarm streams: subscriber registry and the async streamer.

The registry keeps its subscribers in an immutable tuple that is replaced
on every change. Delivery iterates whichever tuple was current when it
started, so subscribing or unsubscribing during delivery never disturbs the
other subscribers.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

from .models import AlarmRecord
from .storage.base import AlarmCursor

logger = logging.getLogger("alarm-engine")

_CLOSED = object()


class Subscriber(Protocol):
    def update(self, record: AlarmRecord) -> None: ...


class StreamRegistry:
    """Copy-on-write set of live subscribers."""

    def __init__(self) -> None:
        self._subscribers: tuple[Subscriber, ...] = ()
        self._lock = threading.Lock()

    def register(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber not in self._subscribers:
                self._subscribers = self._subscribers + (subscriber,)

    def unregister(self, subscriber: Subscriber) -> bool:
        with self._lock:
            if subscriber not in self._subscribers:
                return False
            self._subscribers = tuple(s for s in self._subscribers if s is not subscriber)
            return True

    def snapshot(self) -> tuple[Subscriber, ...]:
        return self._subscribers

    def notify(self, record: AlarmRecord) -> int:
        """Deliver ``record`` to every subscriber. Returns the number reached."""
        delivered = 0
        for subscriber in self._subscribers:
            try:
                subscriber.update(record)
                delivered += 1
            except Exception:
                logger.exception(f"Alarm stream subscriber {subscriber!r} failed")
        return delivered

    def clear(self) -> None:
        with self._lock:
            self._subscribers = ()

    def __len__(self) -> int:
        return len(self._subscribers)


class AlarmStreamer:
    """Async iterator over a query snapshot, optionally followed by live updates.

    Without a registry the stream ends when the snapshot cursor is
    exhausted. With one, the streamer registers itself before reading the
    snapshot so no update published in between is lost, then keeps yielding
    updates until ``close()``.

    ``update()`` may be called from any thread. Updates that overflow the
    queue are dropped with a warning.
    """

    def __init__(
        self,
        cursor: AlarmCursor | None,
        registry: StreamRegistry | None = None,
        predicate: Callable[[AlarmRecord], bool] | None = None,
        max_queue: int = 1000,
    ) -> None:
        self._cursor = cursor
        self._registry = registry
        self._predicate = predicate
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_queue)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._opened = False
        self._closed = False
        self.dropped = 0

    @property
    def live(self) -> bool:
        return self._registry is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> AlarmStreamer:
        if not self._opened:
            self._opened = True
            self._loop = asyncio.get_running_loop()
            if self._registry is not None:
                self._registry.register(self)
        return self

    def update(self, record: AlarmRecord) -> None:
        if self._closed or self._loop is None:
            return
        if self._predicate is not None and not self._predicate(record):
            return
        self._loop.call_soon_threadsafe(self._put, record)

    def _put(self, record: AlarmRecord) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Alarm stream queue full, dropped update {record.uuid}")

    def close(self) -> None:
        """Stop the stream. Call from the event loop thread."""
        if self._closed:
            return
        self._closed = True
        if self._registry is not None:
            self._registry.unregister(self)
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AlarmStreamer:
        return self.open()

    async def __anext__(self) -> AlarmRecord:
        if self._closed:
            raise StopAsyncIteration
        if self._cursor is not None:
            try:
                has_row = self._cursor.next()
            except BaseException:
                self.close()
                raise
            if has_row:
                return self._cursor.record
            self._cursor = None
        if self._registry is None:
            self.close()
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> AlarmStreamer:
        return self.open()

    async def __aexit__(self, *exc: object) -> None:
        self.close()
