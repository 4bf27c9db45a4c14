"""OCI image fetcher — flattens an image's filesystem layers into staging."""

from __future__ import annotations

import logging
from pathlib import Path

from vendorsync.fetchers.base import FetchContext, source_block
from vendorsync.models.lock import ImageLock
from vendorsync.models.manifest import ContentSpec, SourceKind
from vendorsync.models.results import FetchResult
from vendorsync.oci.puller import pull_layers, select_reference
from vendorsync.oci.reference import ImageReference

logger = logging.getLogger(__name__)


class ImageFetcher:
    kind = SourceKind.IMAGE

    def __init__(self, ctx: FetchContext) -> None:
        self._ctx = ctx

    def fetch(self, content: ContentSpec, staging_dir: Path) -> FetchResult:
        source = source_block(content, self.kind)
        registry = self._ctx.registry

        ref = select_reference(registry, ImageReference.parse(source.url), source.tag_selection)
        manifest = registry.resolve(ref)
        pinned = ref.with_digest(manifest.digest)

        self._ctx.reporter.emit("pull", f"Pulling image {pinned.pinned()}")
        with self._ctx.scratch("image-") as tmp:
            pull_layers(registry, pinned, manifest, staging_dir, tmp)

        logger.info("Fetched image %s.", pinned.pinned())
        return FetchResult(staging_path=staging_dir, resolved=ImageLock(url=pinned.pinned()))
