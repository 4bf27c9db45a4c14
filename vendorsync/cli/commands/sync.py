"""``vendorsync sync`` — fetch every directory of a manifest into place.

Reads the manifest from a file (or stdin with ``-f -``), syncs all or a
subset of its directories, and writes the lock file next to the manifest.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from vendorsync.config import SyncSettings
from vendorsync.core.content_cache import ContentCache
from vendorsync.core.orchestrator import SyncOrchestrator
from vendorsync.errors import VendorSyncError
from vendorsync.manifest import load_lock_file, load_manifest
from vendorsync.models.lock import LockDocument
from vendorsync.reporting import SyncReporter

logger = logging.getLogger(__name__)

err_console = Console(stderr=True)

DEFAULT_MANIFEST = "vendorsync.yml"
DEFAULT_LOCK_FILE = "vendorsync.lock.yml"


def format_error(exc: BaseException) -> str:
    """Render an exception with its chain of causes, outermost first."""
    parts: list[str] = []
    current: BaseException | None = exc
    while current is not None:
        text = str(current)
        if text and text not in parts:
            parts.append(text)
        current = current.__cause__
    return "\n  ".join(parts)


def _read_manifest_text(file: str) -> str:
    if file == "-":
        return sys.stdin.read()
    try:
        return Path(file).read_text(encoding="utf-8")
    except OSError as exc:
        raise VendorSyncError(f"Reading manifest {file}: {exc}") from exc


def _default_lock_path(file: str) -> Path:
    if file == "-":
        return Path(DEFAULT_LOCK_FILE)
    return Path(file).parent / DEFAULT_LOCK_FILE


def run_sync(
    *,
    file: str,
    lock_file: Path | None,
    locked: bool,
    directories: list[str],
    reporter: SyncReporter,
    settings: SyncSettings,
) -> LockDocument:
    """Load inputs, run the orchestrator, and write the lock file."""
    manifest, resources = load_manifest(_read_manifest_text(file))
    lock_path = lock_file or _default_lock_path(file)

    previous: LockDocument | None = None
    if lock_path.exists():
        previous = load_lock_file(lock_path)

    cache_config = settings.cache_config()
    cache = ContentCache(cache_config) if cache_config is not None else None

    orchestrator = SyncOrchestrator(
        manifest,
        resources,
        settings=settings,
        working_dir=Path.cwd(),
        reporter=reporter,
        cache=cache,
        previous_lock=previous,
        locked=locked,
    )
    return orchestrator.sync(directories or None, lock_path=lock_path)


def sync_cmd(
    file: str = typer.Option(
        DEFAULT_MANIFEST,
        "--file",
        "-f",
        help="Manifest path, or '-' to read from stdin.",
    ),
    lock_file: Path = typer.Option(
        None,
        "--lock-file",
        help=f"Lock file path (default: {DEFAULT_LOCK_FILE} next to the manifest).",
    ),
    locked: bool = typer.Option(
        False,
        "--locked",
        help="Fetch exactly the identities recorded in the lock file.",
    ),
    directories: list[str] = typer.Option(
        None,
        "--directory",
        "-d",
        help="Sync only this directory (repeatable).",
    ),
    chdir: Path = typer.Option(
        None,
        "--chdir",
        help="Change to this directory before doing anything else.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit one JSON object per action on stdout.",
    ),
    exit_zero: bool = typer.Option(
        False,
        "--exit-zero",
        help="Report failures but exit with status 0.",
    ),
) -> None:
    """Sync directories described by a manifest and record a lock file."""
    if chdir is not None:
        os.chdir(chdir)

    reporter = SyncReporter(err_console, json_lines=json_output)
    try:
        settings = SyncSettings()
        doc = run_sync(
            file=file,
            lock_file=lock_file,
            locked=locked,
            directories=directories,
            reporter=reporter,
            settings=settings,
        )
    except (VendorSyncError, ValidationError) as exc:
        message = format_error(exc)
        logger.debug("Sync failed.", exc_info=True)
        if json_output:
            reporter.emit("error", message)
        err_console.print(f"[bold red]vendorsync: Error:[/bold red] {escape(message)}")
        raise typer.Exit(code=0 if exit_zero else 1)

    if not json_output:
        synced = sum(len(d.contents) for d in doc.directories)
        err_console.print(
            f"[bold green]Succeeded[/bold green] ({len(doc.directories)} directories, "
            f"{synced} contents locked)"
        )
