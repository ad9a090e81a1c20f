"""
In-process publish/subscribe for live todo updates.

Subscribers are keyed by owner id so a user's stream only ever carries that
user's records. Publishing is thread-safe: mutations run in FastAPI's worker
threads while subscribers wait on asyncio queues in the event loop, so every
put is handed to the subscriber's loop with ``call_soon_threadsafe``.
"""
from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import lru_cache
from threading import Lock, RLock
from typing import Any, AsyncIterator, Callable, Dict, List

import structlog

log = structlog.get_logger()

DEFAULT_QUEUE_SIZE = 16


@dataclass(frozen=True)
class TodoEvent:
    """A named event with a JSON-serializable payload."""

    name: str
    data: Any

    def to_sse(self) -> str:
        """Render the event in text/event-stream framing."""
        return f"event: {self.name}\ndata: {json.dumps(self.data, ensure_ascii=False)}\n\n"


class Subscription:
    """One subscriber's queue, bound to the event loop it was created on."""

    def __init__(self, owner_id: str, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self.owner_id = owner_id
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[TodoEvent] = asyncio.Queue(maxsize=maxsize)

    def _put(self, event: TodoEvent) -> None:
        # Events are full snapshots, so a slow reader only needs the newest ones
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(event)

    def deliver(self, event: TodoEvent) -> None:
        self._loop.call_soon_threadsafe(self._put, event)

    async def get(self) -> TodoEvent:
        return await self._queue.get()


# PUBLIC_INTERFACE
class TodoEventBroker:
    """Fan out todo events to the subscribers of each owner."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._lock = Lock()
        # Held across building and delivering a snapshot so deliveries follow read order
        self._publish_lock = RLock()
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._queue_size = queue_size

    def has_subscribers(self, owner_id: str) -> bool:
        with self._lock:
            return bool(self._subscribers.get(owner_id))

    @asynccontextmanager
    async def subscribe(self, owner_id: str) -> AsyncIterator[Subscription]:
        """Register a subscription for the duration of the ``async with`` block."""
        sub = Subscription(owner_id, self._queue_size)
        with self._lock:
            self._subscribers.setdefault(owner_id, []).append(sub)
        log.info("stream_subscribed", user=owner_id)
        try:
            yield sub
        finally:
            with self._lock:
                subs = self._subscribers.get(owner_id, [])
                if sub in subs:
                    subs.remove(sub)
                if not subs:
                    self._subscribers.pop(owner_id, None)
            log.info("stream_unsubscribed", user=owner_id)

    def publish(self, owner_id: str, event: TodoEvent) -> int:
        """Deliver event to every subscriber of owner_id. Returns the number reached."""
        with self._lock:
            subs = list(self._subscribers.get(owner_id, []))
        for sub in subs:
            try:
                sub.deliver(event)
            except RuntimeError:
                # Loop already closed; the subscription is being torn down
                log.debug("stream_delivery_skipped", user=owner_id)
        return len(subs)

    def publish_latest(self, owner_id: str, build: Callable[[], TodoEvent]) -> int:
        """
        Build an event from current state and deliver it as one step. Concurrent
        callers are serialized, so the last event a subscriber receives was built
        after every mutation that preceded it.
        """
        with self._publish_lock:
            if not self.has_subscribers(owner_id):
                return 0
            return self.publish(owner_id, build())


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_broker() -> TodoEventBroker:
    """Return the process-wide event broker."""
    return TodoEventBroker()
