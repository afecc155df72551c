"""Per-node coordination loop.

A NodeCoordinator keeps this node's heartbeat fresh, tracks membership,
runs the election policy and gates messaging:
- Only the node the directory names as generator publishes
- Only the node named as handler holds a subscription

Two periodic activities run on the event loop (sync every
sync_interval_ms, publish every publish_interval_ms). They and message
intake serialize on one per-node lock, so the LocalView and the
subscription handle have a single writer at a time.

Example:
    coordinator = NodeCoordinator(RedisDirectory(), RedisChannel())
    await coordinator.start()
    ...
    await coordinator.stop()  # heartbeat is left to expire
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from types import TracebackType

from duet.channel.base import EventChannel, Subscription
from duet.channel.schemas import Message, deserialize_message, serialize_message
from duet.cluster.election import RoleAssignment, elect, find_inconsistencies
from duet.cluster.errors import ChannelUnavailable, CoordinationError
from duet.cluster.membership import MembershipChange, MembershipTracker
from duet.config import Settings, generate_node_id
from duet.directory.base import SharedDirectory
from duet.directory.keys import DirectoryKeys
from duet.observability.logging import node_id_var, role_var
from duet.observability.metrics import (
    record_cluster_state,
    record_message_published,
    record_message_received,
    record_role_change,
    record_stale_subscription,
    record_sync_tick,
)

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL_MS = 250
DEFAULT_PUBLISH_INTERVAL_MS = 500
DEFAULT_TOPIC = "message"

MessageConsumer = Callable[[Message], Awaitable[None]]
SyncObserver = Callable[["NodeSnapshot"], None]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class NodeState(str, Enum):
    """Lifecycle state of a coordinator."""

    INITIALIZING = "initializing"
    SYNCHRONIZING = "synchronizing"
    TERMINATED = "terminated"


@dataclass
class CoordinatorConfig:
    """Coordinator timing and naming. All durations in milliseconds."""

    sync_interval_ms: int = DEFAULT_SYNC_INTERVAL_MS
    publish_interval_ms: int = DEFAULT_PUBLISH_INTERVAL_MS
    online_expiry_ms: int | None = None
    topic: str = DEFAULT_TOPIC
    key_prefix: str = ""

    def __post_init__(self) -> None:
        if self.sync_interval_ms <= 0 or self.publish_interval_ms <= 0:
            raise ValueError("intervals must be positive")
        if self.online_expiry_ms is None:
            self.online_expiry_ms = int(self.sync_interval_ms * 1.5)
        elif self.online_expiry_ms <= 0:
            raise ValueError("online_expiry_ms must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> CoordinatorConfig:
        return cls(
            sync_interval_ms=settings.sync_interval_ms,
            publish_interval_ms=settings.publish_interval_ms,
            online_expiry_ms=settings.online_expiry_ms,
            topic=settings.channel_topic,
            key_prefix=settings.key_prefix,
        )


@dataclass(frozen=True, slots=True)
class LocalView:
    """This node's latest belief about the cluster. Never authoritative."""

    generator: str | None = None
    handler: str | None = None
    online_nodes: frozenset[str] = frozenset()


@dataclass
class NodeStats:
    """Counters for the console state and tests."""

    messages_published: int = 0
    messages_received: int = 0
    sync_ticks: int = 0
    failed_ticks: int = 0
    stale_subscriptions: int = 0
    last_sync_at: int | None = None


@dataclass(frozen=True)
class NodeSnapshot:
    """Point-in-time copy of a coordinator's state."""

    node_id: str
    state: NodeState
    view: LocalView
    stats: NodeStats = field(default_factory=NodeStats)
    subscribed: bool = False

    def render(self) -> str:
        """Multi-line console rendering of the node state."""
        online = ", ".join(sorted(self.view.online_nodes))
        return (
            f"Current node: {self.node_id} ({self.state.value})\n"
            f"State:\n"
            f"    generator: {self.view.generator}\n"
            f"    handler: {self.view.handler}\n"
            f"    online nodes ({len(self.view.online_nodes)}): {online}\n"
            f"\n"
            f"Sent messages: {self.stats.messages_published}\n"
            f"Received messages: {self.stats.messages_received}\n"
        )


class NodeCoordinator:
    """Runs membership, election and messaging for one node.

    Args:
        directory: Shared directory holding heartbeats and roles
        channel: Event channel carrying generated messages
        node_id: This node's identifier (minted if None)
        config: Timing and naming (defaults if None)
        clock: Returns current epoch milliseconds
        on_message: Called with each message consumed as handler
        on_sync: Called with a snapshot after each completed sync tick
    """

    def __init__(
        self,
        directory: SharedDirectory,
        channel: EventChannel,
        node_id: str | None = None,
        config: CoordinatorConfig | None = None,
        clock: Callable[[], int] = now_ms,
        on_message: MessageConsumer | None = None,
        on_sync: SyncObserver | None = None,
    ) -> None:
        self.directory = directory
        self.channel = channel
        self.node_id = node_id or generate_node_id()
        self.config = config or CoordinatorConfig()
        self.keys = DirectoryKeys(self.config.key_prefix)
        self.tracker = MembershipTracker(self.keys)
        self.stats = NodeStats()

        self._clock = clock
        self._on_message = on_message
        self._on_sync = on_sync

        self._state = NodeState.INITIALIZING
        self._view = LocalView()
        self._subscription: Subscription | None = None
        self._lock = asyncio.Lock()
        self._tasks: list[asyncio.Task[None]] = []
        self._stopped = asyncio.Event()
        self._sequence = 0

    @property
    def state(self) -> NodeState:
        return self._state

    @property
    def view(self) -> LocalView:
        return self._view

    @property
    def is_generator(self) -> bool:
        return self._view.generator == self.node_id

    @property
    def is_handler(self) -> bool:
        return self._view.handler == self.node_id

    @property
    def subscribed(self) -> bool:
        """Whether this node holds an open subscription."""
        return self._subscription is not None and not self._subscription.closed

    def snapshot(self) -> NodeSnapshot:
        return NodeSnapshot(
            node_id=self.node_id,
            state=self._state,
            view=self._view,
            stats=replace(self.stats),
            subscribed=self.subscribed,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Initialize from the directory and start both periodic activities.

        A subscription that cannot be opened yet is retried by the sync loop.

        Raises:
            DirectoryUnavailable: If the directory cannot be reached.
            RuntimeError: If the node was already stopped.
        """
        if self._state is NodeState.SYNCHRONIZING:
            return
        if self._state is NodeState.TERMINATED:
            raise RuntimeError(f"Node {self.node_id} is terminated and cannot restart")

        node_id_var.set(self.node_id)
        async with self._lock:
            await self._write_heartbeat()
            try:
                await self._synchronize()
            except ChannelUnavailable as e:
                # Roles are settled; the next sync tick opens the subscription
                logger.warning(f"Subscription not opened, retrying next sync tick: {e}")

        self._state = NodeState.SYNCHRONIZING
        self._tasks = [
            asyncio.create_task(
                self._run_periodic("sync", self.config.sync_interval_ms, self._sync_tick)
            ),
            asyncio.create_task(
                self._run_periodic(
                    "publish", self.config.publish_interval_ms, self._publish_tick
                )
            ),
        ]
        logger.info(
            f"Node {self.node_id} started: generator={self._view.generator} "
            f"handler={self._view.handler} online={len(self._view.online_nodes)}"
        )

    async def stop(self) -> None:
        """Stop both periodic activities and close any subscription.

        The heartbeat is not removed; other nodes notice the departure once
        it expires, exactly as they would after a crash.
        """
        if self._state is NodeState.TERMINATED:
            return
        self._state = NodeState.TERMINATED

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        async with self._lock:
            await self._close_subscription()

        self._stopped.set()
        logger.info(f"Node {self.node_id} stopped")

    async def wait_stopped(self) -> None:
        """Block until stop() has completed."""
        await self._stopped.wait()

    async def __aenter__(self) -> NodeCoordinator:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # -------------------------------------------------------------------------
    # Synchronization
    # -------------------------------------------------------------------------

    async def sync_once(self) -> LocalView:
        """Run one synchronization cycle.

        Raises:
            DirectoryUnavailable: If a directory call fails; the LocalView
                is left as it was.
            ChannelUnavailable: If opening the subscription fails.
        """
        async with self._lock:
            await self._write_heartbeat()
            await self._synchronize()
            return self._view

    async def _write_heartbeat(self) -> None:
        await self.directory.set(self.keys.heartbeat(self.node_id), str(self._clock()))

    async def _synchronize(self) -> None:
        change = await self.tracker.refresh(
            self.directory, self._clock(), self.config.online_expiry_ms or 0, commit=False
        )
        stored = RoleAssignment(
            generator=await self.directory.get(self.keys.generator),
            handler=await self.directory.get(self.keys.handler),
        )

        for finding in find_inconsistencies(change.online, stored.generator, stored.handler):
            if finding.node_id not in change.left:
                logger.warning(f"Inconsistent role state: {finding}")

        assignment = elect(change.online, stored.generator, stored.handler)
        await self._persist(assignment, stored)
        self.tracker.commit(change)

        previous = self._view
        self._view = LocalView(
            generator=assignment.generator,
            handler=assignment.handler,
            online_nodes=change.online,
        )
        self._log_changes(previous, change)
        record_cluster_state(len(change.online), self.is_generator, self.is_handler)

        await self._reconcile_subscription()

    async def _persist(self, assignment: RoleAssignment, stored: RoleAssignment) -> None:
        """Write the roles that differ from the stored ones."""
        for role in sorted(assignment.changes(stored)):
            key = self.keys.generator if role == "generator" else self.keys.handler
            value = getattr(assignment, role)
            if value is None:
                await self.directory.delete(key)
                logger.info(f"Cleared {role} (was {getattr(stored, role)})")
            else:
                await self.directory.set(key, value)
                logger.info(f"Elected {value} as {role} (was {getattr(stored, role)})")
            record_role_change(role)

    def _log_changes(self, previous: LocalView, change: MembershipChange) -> None:
        for node in sorted(change.joined):
            if node != self.node_id:
                logger.info(f"Node {node} joined")
        for node in sorted(change.left):
            logger.info(f"Node {node} left")

        was_generator = previous.generator == self.node_id
        was_handler = previous.handler == self.node_id
        if self.is_generator != was_generator:
            logger.info("Became generator" if self.is_generator else "Lost generator role")
        if self.is_handler != was_handler:
            logger.info("Became handler" if self.is_handler else "Lost handler role")

        role_var.set(
            "generator" if self.is_generator else "handler" if self.is_handler else ""
        )

    async def _reconcile_subscription(self) -> None:
        """Hold a subscription exactly while this node is handler."""
        if self._subscription is not None and self._subscription.closed:
            self._subscription = None

        if self.is_handler and self._subscription is None:
            self._subscription = await self.channel.subscribe(self.config.topic, self._receive)
            logger.info(f"Subscribed to {self.config.topic}")
        elif not self.is_handler and self._subscription is not None:
            await self._close_subscription()

    async def _close_subscription(self) -> None:
        subscription = self._subscription
        self._subscription = None
        if subscription is not None:
            await subscription.close()
            logger.info(f"Unsubscribed from {subscription.topic}")

    # -------------------------------------------------------------------------
    # Messaging
    # -------------------------------------------------------------------------

    async def publish_once(self) -> bool:
        """Publish one message if this node is generator.

        Returns:
            True if a message was published.

        Raises:
            ChannelUnavailable: If the publish call fails.
        """
        async with self._lock:
            if not self.is_generator:
                return False

            message = Message.generate(self.node_id, self._sequence + 1)
            await self.channel.publish(self.config.topic, serialize_message(message))
            self._sequence = message.sequence
            self.stats.messages_published += 1
            record_message_published()
            return True

    async def _receive(self, payload: bytes) -> None:
        """Consume a message, or drop the subscription if no longer handler."""
        async with self._lock:
            if not self.is_handler:
                # Role was lost between sync ticks
                logger.info("Message received after losing handler role, unsubscribing")
                self.stats.stale_subscriptions += 1
                record_stale_subscription()
                await self._close_subscription()
                return

            try:
                message = deserialize_message(payload)
            except ValueError as e:
                logger.warning(f"Dropping malformed message: {e}")
                return

            self.stats.messages_received += 1
            record_message_received()
            logger.debug(f"Received message {message.sequence} from {message.sender}")

            if self._on_message is not None:
                await self._on_message(message)

    # -------------------------------------------------------------------------
    # Periodic activities
    # -------------------------------------------------------------------------

    async def _sync_tick(self) -> None:
        try:
            await self.sync_once()
        except CoordinationError as e:
            self.stats.failed_ticks += 1
            record_sync_tick("skipped")
            logger.warning(f"Sync tick skipped, retrying next period: {e}")
            return

        self.stats.sync_ticks += 1
        self.stats.last_sync_at = self._clock()
        record_sync_tick("ok")
        if self._on_sync is not None:
            self._on_sync(self.snapshot())

    async def _publish_tick(self) -> None:
        try:
            await self.publish_once()
        except CoordinationError as e:
            logger.warning(f"Publish tick skipped, retrying next period: {e}")

    async def _run_periodic(
        self, name: str, interval_ms: int, tick: Callable[[], Awaitable[None]]
    ) -> None:
        """Run tick every interval_ms until the node stops."""
        node_id_var.set(self.node_id)
        interval = interval_ms / 1000
        loop = asyncio.get_running_loop()
        next_run = loop.time() + interval

        while self._state is NodeState.SYNCHRONIZING:
            await asyncio.sleep(max(0.0, next_run - loop.time()))
            next_run += interval
            if next_run < loop.time():
                # Skip missed periods instead of bursting to catch up
                next_run = loop.time() + interval

            try:
                await tick()
            except Exception:
                if name == "sync":
                    record_sync_tick("error")
                logger.exception(f"Unexpected error in {name} tick")
