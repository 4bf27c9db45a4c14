"""Main Typer application — imports and registers all CLI commands.

Entry point: ``vendorsync`` (configured via pyproject.toml project.scripts).

Commands: sync, cache stats, cache clear, version.
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from vendorsync import __version__
from vendorsync.cli.commands.cache_cmd import cache_app
from vendorsync.cli.commands.sync import sync_cmd
from vendorsync.config import SyncSettings

app = typer.Typer(
    name="vendorsync",
    help="vendorsync: declarative, reproducible vendoring of third-party content.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def configure_logging(level: str) -> None:
    """Send library logs to stderr through Rich at *level*."""
    root = logging.getLogger("vendorsync")
    root.handlers.clear()
    root.addHandler(
        RichHandler(console=Console(stderr=True), show_time=False, show_path=False)
    )
    root.setLevel(level.upper())


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Log level (default: VENDORSYNC_LOG_LEVEL or WARNING).",
    ),
) -> None:
    """vendorsync: declarative, reproducible vendoring of third-party content."""
    configure_logging(log_level or SyncSettings().log_level)


# Register subcommands
app.command(name="sync", help="Sync directories described by a manifest.")(sync_cmd)
app.add_typer(cache_app, name="cache")


@app.command(name="version", help="Print the vendorsync version.")
def version_cmd() -> None:
    """Print the vendorsync version."""
    Console().print(f"vendorsync {__version__}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
