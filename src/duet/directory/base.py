"""Shared Directory interface.

The directory is the single source of cluster-wide truth: a plain
key-value store with no transactions and no TTL. Two backends exist:
- InMemoryDirectory: for single-process runs and tests
- RedisDirectory: for multi-process clusters
"""

from __future__ import annotations

import asyncio
import fnmatch
from abc import ABC, abstractmethod


class SharedDirectory(ABC):
    """Abstract key-value directory shared by all nodes."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored at key, or None if absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store value at key, overwriting any previous value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Deleting an absent key is a no-op."""
        pass

    @abstractmethod
    async def list_keys(self, pattern: str) -> list[str]:
        """Return all keys matching a glob-style pattern."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None

    async def health_check(self) -> bool:
        """Check directory connectivity."""
        return True


class InMemoryDirectory(SharedDirectory):
    """Dictionary-backed directory.

    Several coordinators in one process can share an instance to form a
    cluster without Redis.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._data[key] = str(value)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def list_keys(self, pattern: str) -> list[str]:
        async with self._lock:
            return [key for key in self._data if fnmatch.fnmatchcase(key, pattern)]

    def snapshot(self) -> dict[str, str]:
        """Copy of the current contents."""
        return dict(self._data)
