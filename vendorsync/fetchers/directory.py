"""Local directory fetcher."""

from __future__ import annotations

from pathlib import Path

from vendorsync.errors import ConfigError
from vendorsync.core.path_filter import copy_tree
from vendorsync.fetchers.base import FetchContext, source_block
from vendorsync.models.lock import DirectoryLock
from vendorsync.models.manifest import ContentSpec, SourceKind
from vendorsync.models.results import FetchResult


class DirectoryFetcher:
    kind = SourceKind.DIRECTORY

    def __init__(self, ctx: FetchContext) -> None:
        self._ctx = ctx

    def fetch(self, content: ContentSpec, staging_dir: Path) -> FetchResult:
        source = source_block(content, self.kind)

        src = (self._ctx.working_dir / source.path).resolve()
        if not src.is_dir():
            raise ConfigError(f"Expected directory '{source.path}' to exist")

        staging_dir.rmdir()
        copy_tree(src, staging_dir)
        return FetchResult(staging_path=staging_dir, resolved=DirectoryLock())
