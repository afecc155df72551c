"""Global pytest configuration and fixtures.

Provides an in-memory cluster (shared directory, event channel, manual
clock) so coordinators can be driven tick by tick.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import pytest
import pytest_asyncio

import duet.config
from duet.channel.base import InMemoryChannel
from duet.cluster.coordinator import CoordinatorConfig, NodeCoordinator
from duet.directory.base import InMemoryDirectory

# Periods long enough that the background loops never fire during a test;
# tests drive the cycle with sync_once() and publish_once().
IDLE_INTERVAL_MS = 60_000
EXPIRY_MS = 1_000


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: tests that need a running Redis server"
    )


class ManualClock:
    """Epoch-millisecond clock advanced explicitly by tests."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop process-wide settings installed by a previous test."""
    monkeypatch.setattr(duet.config, "_settings", None)


@pytest.fixture
def clock() -> ManualClock:
    """Create a manual clock."""
    return ManualClock()


@pytest.fixture
def directory() -> InMemoryDirectory:
    """Create a fresh shared directory."""
    return InMemoryDirectory()


@pytest.fixture
def channel() -> InMemoryChannel:
    """Create a fresh event channel."""
    return InMemoryChannel()


@pytest.fixture
def coordinator_config() -> CoordinatorConfig:
    """Timing that leaves every tick to the test."""
    return CoordinatorConfig(
        sync_interval_ms=IDLE_INTERVAL_MS,
        publish_interval_ms=IDLE_INTERVAL_MS,
        online_expiry_ms=EXPIRY_MS,
    )


@pytest_asyncio.fixture
async def make_node(
    directory: InMemoryDirectory,
    channel: InMemoryChannel,
    clock: ManualClock,
    coordinator_config: CoordinatorConfig,
) -> AsyncIterator[Callable[..., NodeCoordinator]]:
    """Factory for coordinators sharing one directory, channel and clock.

    Every node created is stopped at teardown.
    """
    nodes: list[NodeCoordinator] = []

    def factory(node_id: str, **kwargs) -> NodeCoordinator:
        node = NodeCoordinator(
            directory=kwargs.pop("directory", directory),
            channel=kwargs.pop("channel", channel),
            node_id=node_id,
            config=kwargs.pop("config", coordinator_config),
            clock=clock,
            **kwargs,
        )
        nodes.append(node)
        return node

    yield factory

    for node in nodes:
        await node.stop()
