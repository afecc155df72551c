"""Integration test fixtures using Docker.

Provides a containerized Redis for running coordinators against the real
directory and channel backends. Set DUET_TEST_REDIS_URL to use an
existing server instead of starting a container.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import AsyncIterator, Iterator
from uuid import uuid4

import pytest
import pytest_asyncio
import redis.asyncio as redis

from tests.integration.docker_utils import get_docker_client, run_redis

TEST_REDIS_URL_ENV = "DUET_TEST_REDIS_URL"


def pytest_collection_modifyitems(items):
    """Mark every test in this directory as an integration test."""
    for item in items:
        if "tests/integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def docker_client():
    """Create a Docker client or skip if Docker is unavailable."""
    try:
        client = get_docker_client()
        client.ping()
    except Exception as exc:
        pytest.skip(f"Docker not available: {exc}")
    yield client
    client.close()


@pytest.fixture(scope="session")
def redis_url(request: pytest.FixtureRequest) -> Iterator[str]:
    """URL of the Redis server used by the test session."""
    external = os.environ.get(TEST_REDIS_URL_ENV)
    if external:
        yield external
        return

    docker_client = request.getfixturevalue("docker_client")
    with run_redis(docker_client) as container:
        yield container.url


@pytest_asyncio.fixture
async def redis_client(redis_url: str) -> AsyncIterator[redis.Redis]:
    """Create a Redis client for tests."""
    client = redis.from_url(redis_url, decode_responses=True)
    await _wait_for_redis(client)
    yield client
    await client.aclose()


@pytest.fixture
def key_prefix() -> str:
    """Unique key namespace so tests never see each other's keys."""
    return f"duet-test-{uuid4().hex[:8]}"


async def _wait_for_redis(client, timeout: float = 30.0) -> None:
    """Wait for Redis to accept connections."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            await client.ping()
            return
        except Exception:
            if time.monotonic() >= deadline:
                raise
            await asyncio.sleep(0.5)
