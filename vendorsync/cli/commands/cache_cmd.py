"""``vendorsync cache`` — inspect or clear the shared content cache."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from vendorsync.config import SyncSettings
from vendorsync.core.content_cache import ContentCache

console = Console()

cache_app = typer.Typer(
    name="cache",
    help="Inspect or clear the shared content cache.",
    no_args_is_help=True,
    add_completion=False,
)


def _open_cache() -> ContentCache:
    config = SyncSettings().cache_config()
    if config is None:
        console.print("[yellow]Caching is disabled:[/yellow] set VENDORSYNC_CACHE_DIR to enable it.")
        raise typer.Exit(code=1)
    return ContentCache(config)


def _human(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1000:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1000
    return f"{value:.1f} TB"


@cache_app.command(name="stats", help="Show cache location, entry count and size.")
def stats_cmd() -> None:
    cache = _open_cache()
    stats = cache.stats()

    table = Table(title="Content Cache", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Directory", str(cache.directory))
    table.add_row("Entries", str(stats.entries))
    table.add_row("Size", f"{_human(stats.total_bytes)} / {_human(stats.max_bytes)}")
    console.print(table)


@cache_app.command(name="clear", help="Remove every cached artifact.")
def clear_cmd() -> None:
    removed = _open_cache().clear()
    console.print(f"[green]Removed {removed} cache entries.[/green]")
