"""Redis pub/sub event channel.

Publishing uses the shared client; every subscription gets its own
PubSub connection and a reader task that forwards messages to the
callback in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from duet.channel.base import EventChannel, MessageCallback, Subscription
from duet.cluster.errors import ChannelUnavailable
from duet.directory.redis import get_redis

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from redis.asyncio.client import PubSub

logger = logging.getLogger(__name__)

# Seconds to wait for a message before re-checking the closed flag
POLL_TIMEOUT = 1.0


class RedisSubscription(Subscription):
    """Subscription backed by a redis-py PubSub connection."""

    def __init__(self, pubsub: PubSub, topic: str, on_message: MessageCallback) -> None:
        super().__init__(topic, on_message)
        self._pubsub = pubsub

    def _start(self) -> None:
        self._task = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        while not self._closed:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=POLL_TIMEOUT,
                )
            except asyncio.CancelledError:
                break
            except RedisError as e:
                logger.error(f"Error reading from topic {self.topic}: {e}")
                await asyncio.sleep(POLL_TIMEOUT)  # Back off on error
                continue

            if not message or message.get("type") != "message":
                continue

            data = message["data"]
            await self._deliver(data.encode() if isinstance(data, str) else data)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._stop_reader()
        try:
            await self._pubsub.unsubscribe(self.topic)
            await self._pubsub.aclose()
        except RedisError as e:
            # The connection is dropped either way
            logger.warning(f"Error closing subscription to {self.topic}: {e}")


class RedisChannel(EventChannel):
    """Event channel using Redis PUBLISH/SUBSCRIBE."""

    def __init__(self, client: Redis | None = None, url: str | None = None) -> None:
        self._client = client
        self._url = url

    async def _get_client(self) -> Redis:
        if self._client is None:
            self._client = await get_redis(self._url)
        return self._client

    async def publish(self, topic: str, payload: bytes) -> None:
        client = await self._get_client()
        try:
            await client.publish(topic, payload)
        except RedisError as e:
            raise ChannelUnavailable(f"publish {topic}", str(e)) from e

    async def subscribe(self, topic: str, on_message: MessageCallback) -> Subscription:
        client = await self._get_client()
        pubsub = client.pubsub()
        try:
            await pubsub.subscribe(topic)
        except RedisError as e:
            await pubsub.aclose()
            raise ChannelUnavailable(f"subscribe {topic}", str(e)) from e

        subscription = RedisSubscription(pubsub, topic, on_message)
        subscription._start()
        logger.debug(f"Subscribed to topic {topic}")
        return subscription
