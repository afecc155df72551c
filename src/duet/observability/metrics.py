"""Prometheus metrics for Duet nodes.

Provides metrics collection and exposure:
- Message metrics (published by the generator, received by the handler)
- Coordination metrics (sync tick outcomes, role changes)
- Cluster state gauges (online nodes, current roles of this node)

Usage:
    from duet.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.messages_published_total.inc()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import REGISTRY, Counter, Gauge, generate_latest, start_http_server

from duet.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    # Message metrics
    messages_published_total: Any = None
    messages_received_total: Any = None

    # Coordination metrics
    sync_ticks_total: Any = None
    role_changes_total: Any = None
    stale_subscriptions_total: Any = None

    # Cluster state
    online_nodes: Any = None
    is_generator: Any = None
    is_handler: Any = None

    # Internal state
    _initialized: bool = field(default=False, repr=False)
    _registry: Any = field(default=None, repr=False)

    def initialize(self) -> None:
        """Initialize Prometheus metrics."""
        if self._initialized:
            return

        if not get_settings().enable_metrics:
            logger.info("Metrics are disabled")
            self._initialized = True
            return

        self._registry = REGISTRY

        self.messages_published_total = Counter(
            "duet_messages_published_total",
            "Messages published while this node was generator",
        )

        self.messages_received_total = Counter(
            "duet_messages_received_total",
            "Messages consumed while this node was handler",
        )

        self.sync_ticks_total = Counter(
            "duet_sync_ticks_total",
            "Synchronization ticks by outcome",
            ["outcome"],
        )

        self.role_changes_total = Counter(
            "duet_role_changes_total",
            "Role assignments written to the directory by this node",
            ["role"],
        )

        self.stale_subscriptions_total = Counter(
            "duet_stale_subscriptions_total",
            "Subscriptions dropped on message intake after losing the handler role",
        )

        self.online_nodes = Gauge(
            "duet_online_nodes",
            "Online nodes as seen by this node",
        )

        self.is_generator = Gauge(
            "duet_is_generator",
            "1 while this node believes it is the generator",
        )

        self.is_handler = Gauge(
            "duet_is_handler",
            "1 while this node believes it is the handler",
        )

        self._initialized = True
        logger.info("Prometheus metrics initialized")

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if not get_settings().enable_metrics or self._registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self._registry)


# Global metrics registry
metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry.

    Initializes metrics on first access.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry


def start_metrics_server(port: int) -> None:
    """Expose metrics over HTTP on the given port."""
    get_metrics()
    start_http_server(port)
    logger.info(f"Metrics exporter listening on port {port}")


def record_message_published() -> None:
    """Record a message published by the generator."""
    metrics = get_metrics()
    if metrics.messages_published_total:
        metrics.messages_published_total.inc()


def record_message_received() -> None:
    """Record a message consumed by the handler."""
    metrics = get_metrics()
    if metrics.messages_received_total:
        metrics.messages_received_total.inc()


def record_sync_tick(outcome: str) -> None:
    """Record a sync tick outcome (ok, skipped, error)."""
    metrics = get_metrics()
    if metrics.sync_ticks_total:
        metrics.sync_ticks_total.labels(outcome=outcome).inc()


def record_role_change(role: str) -> None:
    """Record a role assignment written by this node."""
    metrics = get_metrics()
    if metrics.role_changes_total:
        metrics.role_changes_total.labels(role=role).inc()


def record_stale_subscription() -> None:
    """Record a stale subscription dropped on message intake."""
    metrics = get_metrics()
    if metrics.stale_subscriptions_total:
        metrics.stale_subscriptions_total.inc()


def record_cluster_state(online: int, is_generator: bool, is_handler: bool) -> None:
    """Record this node's view of the cluster."""
    metrics = get_metrics()
    if metrics.online_nodes:
        metrics.online_nodes.set(online)
    if metrics.is_generator:
        metrics.is_generator.set(1 if is_generator else 0)
    if metrics.is_handler:
        metrics.is_handler.set(1 if is_handler else 0)
