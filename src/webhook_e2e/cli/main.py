"""Main CLI entry point using Typer."""

from __future__ import annotations

import typer
from rich.console import Console

from webhook_e2e import __version__
from webhook_e2e.cli.commands import check
from webhook_e2e.logging.config import configure_logging

app = typer.Typer(
    name="webhook-e2e",
    help="End-to-end checks for the managed-cluster validating webhook.",
    add_completion=True,
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"webhook-e2e version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit logs as JSON lines.",
    ),
) -> None:
    """Validating webhook end-to-end checks."""
    configure_logging(verbose=verbose, debug=debug, json_output=json_logs)


app.command()(check.check)
app.command("wait-daemonset")(check.wait_daemonset)


if __name__ == "__main__":
    app()
