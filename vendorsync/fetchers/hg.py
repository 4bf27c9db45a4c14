"""Mercurial source fetcher."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from vendorsync.errors import RefNotFoundError, SourceUnreachableError
from vendorsync.fetchers.base import FetchContext, run_command, source_block
from vendorsync.models.lock import HgLock
from vendorsync.models.manifest import ContentSpec, SourceKind
from vendorsync.models.results import FetchResult

logger = logging.getLogger(__name__)


class HgFetcher:
    kind = SourceKind.HG

    def __init__(self, ctx: FetchContext) -> None:
        self._ctx = ctx

    def fetch(self, content: ContentSpec, staging_dir: Path) -> FetchResult:
        source = source_block(content, self.kind)
        hg = self._ctx.settings.hg_binary
        env = {"HGPLAIN": "1"}

        self._ctx.reporter.emit("fetch", f"Cloning {source.url}")
        with self._ctx.scratch("hg-") as tmp:
            repo = tmp / "repo"
            run_command([hg, "clone", "-q", "--noupdate", source.url, str(repo)],
                        env=env, error_type=SourceUnreachableError)
            run_command([hg, "update", "-q", "-r", source.ref], cwd=repo, env=env,
                        error_type=RefNotFoundError)
            ident = run_command([hg, "id", "--debug", "-i", "-r", source.ref], cwd=repo, env=env,
                                error_type=RefNotFoundError)
            sha = ident.stdout.decode("utf-8").strip().rstrip("+")

            shutil.rmtree(repo / ".hg")
            staging_dir.rmdir()
            shutil.move(str(repo), str(staging_dir))

        logger.info("Fetched %s at %s.", source.url, sha)
        return FetchResult(staging_path=staging_dir, resolved=HgLock(sha=sha))
