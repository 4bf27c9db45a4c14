"""Lock recording — projects a successful run into a ``LockDocument``.

The recorder never fetches.  It orders entries by the manifest, not by
completion, so the same run always produces the same document.  Directories
not synced in this run (``--directory`` subsets) carry their previous lock
entries forward unchanged.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from vendorsync.core.hasher import content_address
from vendorsync.errors import LockError
from vendorsync.manifest import dump_document
from vendorsync.models.lock import LockContent, LockDirectory, LockDocument
from vendorsync.models.manifest import ContentSpec, DirectorySpec, Manifest
from vendorsync.models.results import FetchResult

logger = logging.getLogger(__name__)


def config_digest(content: ContentSpec) -> str:
    """Content-address a content's configuration (used by ``lazy``)."""
    return content_address(content.model_dump(mode="json", by_alias=True, exclude_none=True))


class LockRecorder:
    """Accumulates fetch results and renders the lock document.

    Parameters
    ----------
    manifest:
        The manifest of this run; defines entry order.
    previous:
        The lock document from the prior run, if any.  Entries for
        directories or lazy contents that were not fetched come from here.
    """

    def __init__(self, manifest: Manifest, previous: LockDocument | None = None) -> None:
        self._manifest = manifest
        self._previous = previous
        self._entries: dict[tuple[str, str], LockContent] = {}
        self._synced: set[str] = set()

    def record(self, directory: DirectorySpec, content: ContentSpec, result: FetchResult) -> LockContent:
        """Record the resolved identity of one fetched content."""
        entry = LockContent.build(
            content.path, result.resolved, config_digest=config_digest(content)
        )
        self._entries[(directory.path, content.path)] = entry
        self._synced.add(directory.path)
        return entry

    def carry_forward(self, directory: DirectorySpec, content: ContentSpec) -> LockContent:
        """Reuse the previous entry for a content that was skipped."""
        previous = (
            self._previous.find_content(directory.path, content.path)
            if self._previous is not None
            else None
        )
        if previous is None:
            raise LockError(
                f"Expected previous lock entry for '{directory.path}/{content.path}' to carry forward"
            )
        self._entries[(directory.path, content.path)] = previous
        self._synced.add(directory.path)
        return previous

    def document(self) -> LockDocument:
        """Build the lock document in manifest order."""
        directories: list[LockDirectory] = []
        for directory in self._manifest.directories:
            if directory.path not in self._synced:
                previous = self._previous.find_directory(directory.path) if self._previous else None
                if previous is not None:
                    directories.append(previous)
                continue
            contents = [
                self._entries[(directory.path, c.path)]
                for c in directory.contents
                if (directory.path, c.path) in self._entries
            ]
            directories.append(LockDirectory(path=directory.path, contents=contents))
        return LockDocument(directories=directories)

    def write(self, path: Path) -> LockDocument:
        """Atomically write the lock document as YAML to *path*."""
        doc = self.document()
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".lock-", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(dump_document(doc))
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.info("Wrote lock file %s.", path)
        return doc

