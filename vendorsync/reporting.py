"""User-facing progress reporting.

Two renderings of the same event stream:

- human: one Rich console line per action, ``<path> | <action>: <message>``
- ``--json``: one JSON object per line on stdout (NDJSON), with keys
  ``action``, ``path`` and ``message``

Cache reuse is reported with action ``unbundle``; a network retrieval with
``pull`` (OCI) or ``fetch`` (everything else).
"""

from __future__ import annotations

import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO

from pydantic import BaseModel, ConfigDict
from rich.console import Console
from rich.markup import escape

ACTION_UNBUNDLE = "unbundle"

_ACTION_STYLES: dict[str, str] = {
    "fetch": "cyan",
    "pull": "cyan",
    ACTION_UNBUNDLE: "magenta",
    "verify": "green",
    "skip": "dim",
    "place": "green",
    "lock": "bold green",
    "error": "bold red",
}


class SyncEvent(BaseModel):
    """A single reported action."""

    model_config = ConfigDict(frozen=True)

    action: str
    path: str = ""
    message: str = ""


class SyncReporter:
    """Collects and renders sync events.

    Parameters
    ----------
    console:
        Rich console for human output.  A stderr console is created if omitted.
    json_lines:
        Emit NDJSON to *stream* instead of console lines.
    stream:
        Destination for NDJSON output (defaults to stdout).
    quiet:
        Record events without rendering them.
    """

    def __init__(
        self,
        console: Console | None = None,
        *,
        json_lines: bool = False,
        stream: TextIO | None = None,
        quiet: bool = False,
    ) -> None:
        self.console = console or Console(stderr=True)
        self._json_lines = json_lines
        self._stream = stream
        self._quiet = quiet
        self._path = ""
        self.events: list[SyncEvent] = []

    @contextmanager
    def scope(self, path: str) -> Iterator[None]:
        """Attribute events emitted inside the block to *path*."""
        previous, self._path = self._path, path
        try:
            yield
        finally:
            self._path = previous

    def emit(self, action: str, message: str) -> SyncEvent:
        event = SyncEvent(action=action, path=self._path, message=message)
        self.events.append(event)
        if not self._quiet:
            self._render(event)
        return event

    def _render(self, event: SyncEvent) -> None:
        if self._json_lines:
            stream = self._stream or sys.stdout
            stream.write(json.dumps(event.model_dump(), sort_keys=True) + "\n")
            stream.flush()
            return
        style = _ACTION_STYLES.get(event.action, "white")
        prefix = f"[dim]{escape(event.path)}[/dim] | " if event.path else ""
        self.console.print(
            f"{prefix}[{style}]{event.action}[/{style}]: {escape(event.message)}"
        )

    def lines(self) -> list[str]:
        """Events flattened to ``action: message`` strings."""
        return [f"{e.action}: {e.message}" for e in self.events]

    def reused_cache(self) -> bool:
        """Whether any cached artifact was unbundled in this run."""
        return any(e.action == ACTION_UNBUNDLE for e in self.events)
