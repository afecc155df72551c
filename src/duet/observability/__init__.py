"""Logging and metrics for Duet nodes."""

from duet.observability.logging import LogContext, configure_logging
from duet.observability.metrics import get_metrics, start_metrics_server

__all__ = [
    "LogContext",
    "configure_logging",
    "get_metrics",
    "start_metrics_server",
]
