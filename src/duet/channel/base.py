"""Event channel implementation for Duet.

Provides topic pub/sub between the generator and the handler:
- InMemoryChannel: for single-process clusters and tests
- RedisChannel: Redis PUBLISH/SUBSCRIBE for multi-process clusters

Each subscription delivers payloads in order to one callback until it is
closed.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


MessageCallback = Callable[[bytes], Awaitable[None]]


class Subscription(ABC):
    """Handle for one live subscription."""

    def __init__(self, topic: str, on_message: MessageCallback) -> None:
        self.topic = topic
        self._on_message = on_message
        self._closed = False
        self._task: asyncio.Task[None] | None = None

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    async def _deliver(self, payload: bytes) -> None:
        try:
            await self._on_message(payload)
        except Exception:
            # Log error but keep the subscription alive
            logger.exception("Error in message callback for topic %s", self.topic)

    async def _stop_reader(self) -> None:
        """Cancel the reader task unless close() runs inside it."""
        task = self._task
        self._task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @abstractmethod
    async def close(self) -> None:
        """Stop delivery. Safe to call more than once and from the callback."""
        pass


class EventChannel(ABC):
    """Abstract pub/sub channel interface."""

    @abstractmethod
    async def publish(self, topic: str, payload: bytes) -> None:
        """Publish a payload to every current subscriber of topic."""
        pass

    @abstractmethod
    async def subscribe(self, topic: str, on_message: MessageCallback) -> Subscription:
        """Subscribe a callback to a topic."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None


class InMemorySubscription(Subscription):
    """Queue-backed subscription fed by InMemoryChannel."""

    def __init__(
        self, channel: InMemoryChannel, topic: str, on_message: MessageCallback
    ) -> None:
        super().__init__(topic, on_message)
        self._channel = channel
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()

    def _start(self) -> None:
        self._task = asyncio.create_task(self._read_loop())

    def _enqueue(self, payload: bytes) -> None:
        if not self._closed:
            self._queue.put_nowait(payload)

    async def _read_loop(self) -> None:
        while not self._closed:
            try:
                payload = await self._queue.get()
            except asyncio.CancelledError:
                break
            await self._deliver(payload)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel._remove(self)
        await self._stop_reader()


class InMemoryChannel(EventChannel):
    """In-process pub/sub. Publishing with no subscribers drops the payload."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[InMemorySubscription]] = {}
        self.published_count = 0

    async def publish(self, topic: str, payload: bytes) -> None:
        self.published_count += 1
        for subscription in list(self._subscriptions.get(topic, [])):
            subscription._enqueue(payload)

    async def subscribe(self, topic: str, on_message: MessageCallback) -> Subscription:
        subscription = InMemorySubscription(self, topic, on_message)
        self._subscriptions.setdefault(topic, []).append(subscription)
        subscription._start()
        return subscription

    def subscriber_count(self, topic: str) -> int:
        """Number of live subscriptions on topic."""
        return len(self._subscriptions.get(topic, []))

    def _remove(self, subscription: InMemorySubscription) -> None:
        subscribers = self._subscriptions.get(subscription.topic, [])
        if subscription in subscribers:
            subscribers.remove(subscription)

    async def close(self) -> None:
        for subscribers in list(self._subscriptions.values()):
            for subscription in list(subscribers):
                await subscription.close()
        self._subscriptions.clear()
