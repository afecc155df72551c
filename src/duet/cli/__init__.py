"""CLI commands for Duet.

Provides command-line interface using Typer:
- duet run: Start a node and keep it in the cluster until interrupted
- duet status: Print the cluster state held in the shared directory

Usage:
    duet --help
    duet run --node-id a
    duet status
"""

import typer
from pydantic import ValidationError

from duet.cli.run import app as run_app
from duet.cli.status import app as status_app

# Main CLI application
app = typer.Typer(
    name="duet",
    help="Duet: generator/handler role coordination over a shared directory",
    no_args_is_help=True,
)

# Add subcommands
app.add_typer(run_app, name="run")
app.add_typer(status_app, name="status")


@app.callback()
def callback() -> None:
    """Duet: generator/handler role coordination over a shared directory."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except ValidationError as e:
        # Settings read from the environment outside a command
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise SystemExit(2) from e


if __name__ == "__main__":
    main()
