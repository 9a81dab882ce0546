"""In-process fan-out of pipeline events to live viewers."""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from typing import Dict, List, Optional

from talkback.models import Event, Fragment

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256

# Queued after the last event to end a subscriber's iteration
_CLOSED = object()


class SubscriberClosed(Exception):
    """Raised by Subscriber.get() once the subscriber is closed and drained."""


class Subscriber:
    """A live viewer connection with its own bounded, ordered channel."""

    def __init__(self, subscriber_id: int, maxsize: int):
        self.id = subscriber_id
        self.cursor = 0  # sequence of the last fragment delivered to this viewer
        self.dropped = 0
        self.closed = False
        # One extra slot so the close marker always fits
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize

    def _offer(self, event: Event) -> None:
        """Enqueue without blocking; drops the oldest queued event when full."""
        if self.closed:
            return
        if self._queue.qsize() >= self._maxsize:
            try:
                self._queue.get_nowait()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning("Subscriber %s is behind; dropped %d events so far", self.id, self.dropped)
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    async def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next event in publish order, or None on timeout.

        Raises SubscriberClosed once the subscriber has been closed and drained.
        """
        if self.closed and self._queue.empty():
            raise SubscriberClosed(self.id)
        if timeout is None:
            item = await self._queue.get()
        else:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout)
            except asyncio.TimeoutError:
                return None
        if item is _CLOSED:
            raise SubscriberClosed(self.id)
        if isinstance(item, Fragment):
            self.cursor = item.sequence
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> Event:
        try:
            return await self.get()
        except SubscriberClosed:
            raise StopAsyncIteration


class EventBus:
    """Topic with one independent queue per subscriber.

    publish() never waits on a subscriber; a slow viewer loses its oldest
    undelivered events instead of stalling the pipeline or other viewers.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self._queue_size = max(1, int(queue_size))
        self._subscribers: Dict[int, Subscriber] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, maxsize: Optional[int] = None) -> Subscriber:
        subscriber = Subscriber(next(self._ids), maxsize or self._queue_size)
        with self._lock:
            if self._closed:
                subscriber.close()
                return subscriber
            self._subscribers[subscriber.id] = subscriber
        logger.info("Viewer %s subscribed (%d live)", subscriber.id, self.subscriber_count)
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            removed = self._subscribers.pop(subscriber.id, None)
        subscriber.close()
        if removed is not None:
            logger.info("Viewer %s unsubscribed (%d live)", subscriber.id, self.subscriber_count)

    def publish(self, event: Event) -> int:
        """Deliver to every current subscriber. Returns the number reached."""
        with self._lock:
            targets: List[Subscriber] = list(self._subscribers.values())
        for subscriber in targets:
            subscriber._offer(event)
        return len(targets)

    def close(self) -> None:
        """Tear down the bus, ending every subscriber's stream."""
        with self._lock:
            self._closed = True
            targets = list(self._subscribers.values())
            self._subscribers.clear()
        for subscriber in targets:
            subscriber.close()
