"""CLI command for running a node.

Usage:
    duet run
    duet run --node-id a --sync-interval 250 --publish-interval 500
    duet run --backend memory --watch
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any

import typer
from pydantic import ValidationError

from duet.cluster.coordinator import NodeSnapshot
from duet.cluster.errors import CoordinationError
from duet.config import Settings, use_settings
from duet.observability.logging import LogContext, configure_logging
from duet.observability.metrics import start_metrics_server
from duet.runtime import close_coordinator, create_coordinator

app = typer.Typer(help="Run a Duet node")


def _print_snapshot(snapshot: NodeSnapshot) -> None:
    typer.echo(snapshot.render())


async def _run_node(config: Settings, watch: bool) -> None:
    coordinator = create_coordinator(config, on_sync=_print_snapshot if watch else None)

    with LogContext(node_id=coordinator.node_id):
        try:
            await coordinator.start()
        except CoordinationError as e:
            await close_coordinator(coordinator)
            typer.echo(f"Cannot join the cluster: {e}", err=True)
            raise typer.Exit(code=1) from e

        stop_requested = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_requested.set)

        try:
            await stop_requested.wait()
        finally:
            await close_coordinator(coordinator)


@app.callback(invoke_without_command=True)
def run(
    node_id: str | None = typer.Option(
        None,
        "--node-id",
        "-n",
        help="Node identifier (generated when omitted)",
    ),
    backend: str | None = typer.Option(
        None,
        "--backend",
        "-b",
        help="Directory/channel backend: redis or memory",
    ),
    sync_interval: int | None = typer.Option(
        None,
        "--sync-interval",
        help="Synchronization period in milliseconds",
    ),
    publish_interval: int | None = typer.Option(
        None,
        "--publish-interval",
        help="Publish period in milliseconds",
    ),
    expiry: int | None = typer.Option(
        None,
        "--expiry",
        help="Heartbeat expiry window in milliseconds",
    ),
    watch: bool = typer.Option(
        False,
        "--watch",
        "-w",
        help="Print the node state after every sync tick",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level: debug, info, warning, error",
    ),
    json_logs: bool | None = typer.Option(
        None,
        "--json-logs/--console-logs",
        help="Log format",
    ),
) -> None:
    """Run a node until SIGINT or SIGTERM.

    The heartbeat is left in place on shutdown; other nodes notice the
    departure once it expires.
    """
    overrides: dict[str, Any] = {
        "node_id": node_id,
        "backend": backend,
        "sync_interval_ms": sync_interval,
        "publish_interval_ms": publish_interval,
        "online_expiry_ms": expiry,
        "log_level": log_level,
        "log_json": json_logs,
    }
    try:
        config = Settings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=2) from e

    use_settings(config)
    configure_logging(json_format=config.log_json, level=config.log_level)
    if config.enable_metrics and config.metrics_port:
        start_metrics_server(config.metrics_port)

    typer.echo(f"Starting Duet node {config.node_id}...")
    typer.echo(f"  Backend: {config.backend}")
    typer.echo(f"  Sync interval: {config.sync_interval_ms}ms")
    typer.echo(f"  Publish interval: {config.publish_interval_ms}ms")
    typer.echo(f"  Heartbeat expiry: {config.online_expiry_ms}ms")
    typer.echo()

    asyncio.run(_run_node(config, watch))
