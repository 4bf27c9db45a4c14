"""HTTP archive fetcher."""

from __future__ import annotations

import hashlib
import logging
import shutil
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import httpx

from vendorsync.errors import ChecksumMismatchError, FetchError, RefNotFoundError, SourceUnreachableError
from vendorsync.fetchers.base import FetchContext, source_block
from vendorsync.models.lock import HttpLock
from vendorsync.models.manifest import ContentSpec, SourceKind
from vendorsync.models.results import FetchResult
from vendorsync.oci.layers import apply_layer

logger = logging.getLogger(__name__)


def _extract_zip(archive: Path, dest: Path) -> None:
    with zipfile.ZipFile(archive) as zf:
        for info in zf.infolist():
            parts = PurePosixPath(info.filename).parts
            if info.filename.startswith("/") or ".." in parts:
                raise FetchError(f"Refusing unsafe zip entry {info.filename!r}")
        zf.extractall(dest)


class HttpFetcher:
    kind = SourceKind.HTTP

    def __init__(self, ctx: FetchContext) -> None:
        self._ctx = ctx

    def _download(self, url: str, dest: Path) -> str:
        hasher = hashlib.sha256()
        try:
            with self._ctx.http_client.stream("GET", url) as resp:
                if resp.status_code == 404:
                    raise RefNotFoundError(f"Downloading {url}: HTTP 404")
                resp.raise_for_status()
                with dest.open("wb") as fh:
                    for chunk in resp.iter_bytes():
                        hasher.update(chunk)
                        fh.write(chunk)
        except httpx.HTTPError as exc:
            raise SourceUnreachableError(f"Downloading {url}: {exc}") from exc
        return hasher.hexdigest()

    def fetch(self, content: ContentSpec, staging_dir: Path) -> FetchResult:
        source = source_block(content, self.kind)

        self._ctx.reporter.emit("fetch", f"Downloading {source.url}")
        with self._ctx.scratch("http-") as tmp:
            archive = tmp / "download"
            actual = self._download(source.url, archive)

            expected = source.sha256.lower().removeprefix("sha256:")
            if expected and expected != actual:
                raise ChecksumMismatchError(
                    f"Expected sha256 '{expected}' for {source.url}, but got '{actual}'"
                )

            if not source.disable_unpack and tarfile.is_tarfile(archive):
                apply_layer(archive, staging_dir, whiteouts=False)
            elif not source.disable_unpack and zipfile.is_zipfile(archive):
                _extract_zip(archive, staging_dir)
            else:
                name = PurePosixPath(urlparse(source.url).path).name or "download"
                shutil.copyfile(archive, staging_dir / name)

        logger.info("Fetched %s (sha256:%s).", source.url, actual)
        return FetchResult(staging_path=staging_dir, resolved=HttpLock(sha256=actual))
