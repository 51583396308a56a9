"""
In-process publish/subscribe registry for upload outcome events.

Events are ephemeral: a subscriber only sees what is published while it is
registered, and nothing is replayed. Publishing never waits on a subscriber.
Queue-backed subscriptions drop events when their queue is full, and a
callback that raises is unregistered.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from typing import Callable, Dict, Optional

from models import UploadEvent

logger = logging.getLogger(__name__)

Callback = Callable[[UploadEvent], None]


class Subscription:
    """A bounded event queue bound to one connection."""

    def __init__(self, bus: "NotificationBus", max_queue: int) -> None:
        self._bus = bus
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[UploadEvent] = asyncio.Queue(maxsize=max_queue)
        self.dropped = 0
        self.handle = bus.register(self._offer)

    def _put(self, event: UploadEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Subscriber {self.handle} is too slow, dropped event for {event.id}")

    def _offer(self, event: UploadEvent) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._put(event)
        else:
            self._loop.call_soon_threadsafe(self._put, event)

    async def get(self, timeout: Optional[float] = None) -> Optional[UploadEvent]:
        """Next event, or None when the timeout elapses first."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        self._bus.unregister(self.handle)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class NotificationBus:
    """Mapping from subscriber handle to callback, with explicit (un)registration."""

    def __init__(self, max_queue: int = 100) -> None:
        self.max_queue = max_queue
        self._subscribers: Dict[str, Callback] = {}
        self._lock = threading.Lock()
        self._counter = itertools.count(1)

    def register(self, callback: Callback) -> str:
        handle = f"sub_{next(self._counter)}"
        with self._lock:
            self._subscribers[handle] = callback
        logger.debug(f"Registered subscriber {handle}")
        return handle

    def unregister(self, handle: str) -> bool:
        with self._lock:
            removed = self._subscribers.pop(handle, None) is not None
        if removed:
            logger.debug(f"Unregistered subscriber {handle}")
        return removed

    def subscribe(self) -> Subscription:
        """Create a queue-backed subscription; call from inside the event loop."""
        return Subscription(self, self.max_queue)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: UploadEvent) -> int:
        """Fan an event out to every live subscriber. Returns how many were reached."""
        with self._lock:
            subscribers = list(self._subscribers.items())

        delivered = 0
        for handle, callback in subscribers:
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Subscriber {handle} failed, unregistering: {e}")
                self.unregister(handle)

        logger.info(
            f"Published {event.outcome.event_name} for note {event.id} to {delivered} subscriber(s)"
        )
        return delivered
