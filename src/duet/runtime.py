"""Runtime wiring for Duet nodes."""

from __future__ import annotations

import logging

from duet.channel.base import EventChannel, InMemoryChannel
from duet.channel.redis import RedisChannel
from duet.cluster.coordinator import CoordinatorConfig, NodeCoordinator, SyncObserver
from duet.config import Settings, get_settings
from duet.directory.base import InMemoryDirectory, SharedDirectory
from duet.directory.redis import RedisDirectory

logger = logging.getLogger(__name__)

MEMORY_BACKENDS = {"memory", "inmemory", "in_memory"}
REDIS_BACKENDS = {"redis"}


def _backend(config: Settings) -> str:
    backend = config.backend.lower()
    if backend not in MEMORY_BACKENDS | REDIS_BACKENDS:
        raise ValueError("Unsupported backend. Supported values: memory, redis.")
    return backend


def create_directory(config: Settings | None = None) -> SharedDirectory:
    """Create a shared directory based on configuration."""
    config = config or get_settings()
    if _backend(config) in MEMORY_BACKENDS:
        return InMemoryDirectory()
    return RedisDirectory(url=config.effective_redis_url)


def create_channel(config: Settings | None = None) -> EventChannel:
    """Create an event channel based on configuration."""
    config = config or get_settings()
    if _backend(config) in MEMORY_BACKENDS:
        return InMemoryChannel()
    return RedisChannel(url=config.effective_redis_url)


def create_coordinator(
    config: Settings | None = None,
    on_sync: SyncObserver | None = None,
) -> NodeCoordinator:
    """Create a coordinator with directory and channel from configuration."""
    config = config or get_settings()
    coordinator = NodeCoordinator(
        directory=create_directory(config),
        channel=create_channel(config),
        node_id=config.node_id,
        config=CoordinatorConfig.from_settings(config),
        on_sync=on_sync,
    )
    logger.debug(f"Created coordinator {coordinator.node_id} ({config.backend} backend)")
    return coordinator


async def close_coordinator(coordinator: NodeCoordinator) -> None:
    """Stop a coordinator and release its backends."""
    await coordinator.stop()
    await coordinator.channel.close()
    await coordinator.directory.close()
