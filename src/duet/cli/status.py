"""CLI command for inspecting cluster state.

Reads the shared directory without writing to it: no heartbeat is
written and stale heartbeats are reported, not deleted.

Usage:
    duet status
    duet status --key-prefix staging
"""

from __future__ import annotations

import asyncio

import typer
from pydantic import ValidationError

from duet.cluster.coordinator import now_ms
from duet.cluster.errors import DirectoryUnavailable
from duet.cluster.membership import parse_timestamp
from duet.config import Settings, use_settings
from duet.directory.base import SharedDirectory
from duet.directory.keys import DirectoryKeys
from duet.runtime import create_directory

app = typer.Typer(help="Show generator, handler and heartbeats")


async def collect_status(
    directory: SharedDirectory, keys: DirectoryKeys, now: int, expiry_ms: int
) -> list[str]:
    """Render the directory contents as output lines."""
    generator = await directory.get(keys.generator)
    handler = await directory.get(keys.handler)

    lines = [f"generator: {generator}", f"handler: {handler}", "nodes:"]

    heartbeats = []
    for key in await directory.list_keys(keys.heartbeat_pattern):
        node_id = keys.parse_heartbeat(key)
        if node_id is not None:
            heartbeats.append((node_id, parse_timestamp(await directory.get(key))))

    for node_id, timestamp in sorted(heartbeats):
        if timestamp is None:
            lines.append(f"  {node_id}  invalid heartbeat")
            continue
        age = now - timestamp
        state = "online" if age < expiry_ms else "stale"
        lines.append(f"  {node_id}  {state}  last seen {age}ms ago")

    if not heartbeats:
        lines.append("  (none)")
    return lines


async def _status(config: Settings) -> list[str]:
    directory = create_directory(config)
    try:
        return await collect_status(
            directory,
            DirectoryKeys(config.key_prefix),
            now_ms(),
            config.online_expiry_ms or 0,
        )
    finally:
        await directory.close()


@app.callback(invoke_without_command=True)
def status(
    key_prefix: str | None = typer.Option(
        None,
        "--key-prefix",
        help="Cluster key namespace",
    ),
) -> None:
    """Print the cluster state stored in the shared directory."""
    overrides = {"key_prefix": key_prefix} if key_prefix is not None else {}
    try:
        config = use_settings(Settings(**overrides))
    except ValidationError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=2) from e

    try:
        lines = asyncio.run(_status(config))
    except DirectoryUnavailable as e:
        typer.echo(f"Cannot reach the shared directory: {e}", err=True)
        raise typer.Exit(code=1) from e

    for line in lines:
        typer.echo(line)
