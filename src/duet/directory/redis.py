"""Redis-backed Shared Directory.

Uses the redis-py async client with a module-level connection pool shared
by the directory and the event channel.
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import TYPE_CHECKING, cast

import redis.asyncio as redis
from redis.exceptions import RedisError

from duet.cluster.errors import DirectoryUnavailable
from duet.config import get_settings
from duet.directory.base import SharedDirectory

if TYPE_CHECKING:
    from redis.asyncio import Redis

# Module-level connection pools, one per server URL
_redis_clients: dict[str, Redis] = {}

# Keys fetched per SCAN round trip
SCAN_COUNT = 100


async def get_redis(url: str | None = None) -> Redis:
    """Get or create the pooled Redis client for url.

    Args:
        url: Server URL; defaults to the configured effective_redis_url
    """
    url = url or get_settings().effective_redis_url
    client = _redis_clients.get(url)
    if client is None:
        client = redis.from_url(  # type: ignore[no-untyped-call]
            url,
            encoding="utf-8",
            decode_responses=True,
        )
        _redis_clients[url] = client
    return client


async def close_redis() -> None:
    """Close all pooled Redis connections."""
    while _redis_clients:
        _, client = _redis_clients.popitem()
        await client.aclose()


class RedisDirectory(SharedDirectory):
    """Directory operations on plain Redis string keys."""

    def __init__(self, client: Redis | None = None, url: str | None = None) -> None:
        self._client = client
        self._url = url
        self._owns_client = client is None

    async def _get_client(self) -> Redis:
        if self._client is None:
            self._client = await get_redis(self._url)
        return self._client

    async def get(self, key: str) -> str | None:
        client = await self._get_client()
        try:
            value = await client.get(key)
        except RedisError as e:
            raise DirectoryUnavailable(f"get {key}", str(e)) from e
        if isinstance(value, bytes):
            return value.decode()
        return cast(str | None, value)

    async def set(self, key: str, value: str) -> None:
        client = await self._get_client()
        try:
            await client.set(key, value)
        except RedisError as e:
            raise DirectoryUnavailable(f"set {key}", str(e)) from e

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        try:
            await client.delete(key)
        except RedisError as e:
            raise DirectoryUnavailable(f"delete {key}", str(e)) from e

    async def list_keys(self, pattern: str) -> list[str]:
        client = await self._get_client()
        keys: list[str] = []
        try:
            # Use SCAN to avoid blocking on large keyspaces
            async for key in client.scan_iter(match=pattern, count=SCAN_COUNT):
                keys.append(key.decode() if isinstance(key, bytes) else key)
        except RedisError as e:
            raise DirectoryUnavailable(f"list_keys {pattern}", str(e)) from e
        return keys

    async def close(self) -> None:
        if self._owns_client:
            await close_redis()
        self._client = None

    async def health_check(self) -> bool:
        """Check Redis connectivity."""
        try:
            client = await self._get_client()
            await cast(Awaitable[bool], client.ping())
            return True
        except RedisError:
            return False
