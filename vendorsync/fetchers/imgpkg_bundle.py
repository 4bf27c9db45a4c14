"""imgpkg bundle fetcher — cache-aware, optionally recursive.

A bundle is an OCI image whose config carries the
``dev.carvel.imgpkg.bundle`` label and whose content includes
``.imgpkg/images.yml``, a lock of the images (and nested bundles) it
references.

Each bundle's extracted tree is cached as a tar keyed by its manifest
digest.  A cache hit extracts that tar ("unbundle") without pulling any
layer.  In recursive mode nested bundles land in
``.imgpkg/bundles/<algo>-<hex>/`` and are resolved depth-first; the set of
digests on the current path is passed down explicitly, so a revisit is a
cycle.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from vendorsync.core.hasher import fingerprint
from vendorsync.errors import CycleDetectedError, FetchError
from vendorsync.fetchers.base import FetchContext, source_block
from vendorsync.models.lock import ImgpkgBundleLock
from vendorsync.models.manifest import ContentSpec, SourceKind
from vendorsync.models.results import FetchResult
from vendorsync.oci.layers import archive_tree, extract_tree
from vendorsync.oci.puller import pull_layers, select_reference
from vendorsync.oci.reference import ImageReference

logger = logging.getLogger(__name__)

BUNDLE_LABEL = "dev.carvel.imgpkg.bundle"
IMAGES_LOCK_PATH = Path(".imgpkg") / "images.yml"
NESTED_BUNDLES_DIR = Path(".imgpkg") / "bundles"


def nested_bundle_dir(digest: str) -> Path:
    return NESTED_BUNDLES_DIR / digest.replace(":", "-")


def read_images_lock(bundle_root: Path) -> list[str]:
    """Return the image references listed in a bundle's ``images.yml``."""
    path = bundle_root / IMAGES_LOCK_PATH
    if not path.exists():
        return []
    try:
        doc = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise FetchError(f"Parsing {IMAGES_LOCK_PATH}: {exc}") from exc
    return [str(entry["image"]) for entry in doc.get("images") or [] if entry.get("image")]


class ImgpkgBundleFetcher:
    kind = SourceKind.IMGPKG_BUNDLE

    def __init__(self, ctx: FetchContext) -> None:
        self._ctx = ctx

    # ------------------------------------------------------------------
    # Single bundle
    # ------------------------------------------------------------------

    def _is_bundle(self, ref: ImageReference) -> bool:
        registry = self._ctx.registry
        manifest = registry.resolve(ref)
        config = registry.get_config(ref, manifest)
        labels = (config.get("config") or {}).get("Labels") or {}
        return BUNDLE_LABEL in labels

    def _unbundle_cached(self, ref: ImageReference, dest: Path) -> bool:
        cache = self._ctx.cache
        if cache is None:
            return False
        with self._ctx.scratch("bundle-") as tmp:
            archive = tmp / "bundle.tar"
            if not cache.get_to_path(fingerprint("imgpkgBundle", ref.digest), archive):
                return False
            extract_tree(archive, dest)
        self._ctx.reporter.emit("unbundle", f"Unbundling cached bundle {ref.pinned()}")
        return True

    def _pull(self, ref: ImageReference, dest: Path) -> None:
        registry = self._ctx.registry
        manifest = registry.resolve(ref)
        config = registry.get_config(ref, manifest)
        labels = (config.get("config") or {}).get("Labels") or {}
        if BUNDLE_LABEL not in labels:
            raise FetchError(f"Expected image '{ref}' to be a bundle, but it is a plain image")

        self._ctx.reporter.emit("pull", f"Pulling bundle {ref.pinned()}")
        with self._ctx.scratch("bundle-") as tmp:
            pull_layers(registry, ref, manifest, dest, tmp)
            if self._ctx.cache is not None:
                archive = tmp / "bundle.tar"
                archive_tree(dest, archive)
                self._ctx.cache.put_file(fingerprint("imgpkgBundle", ref.digest), archive)

    def _materialize(self, ref: ImageReference, dest: Path) -> bool:
        """Place one bundle's own content at *dest*.  Returns ``True`` on a cache hit."""
        dest.mkdir(parents=True, exist_ok=True)
        if self._unbundle_cached(ref, dest):
            return True
        self._pull(ref, dest)
        return False

    # ------------------------------------------------------------------
    # Recursion
    # ------------------------------------------------------------------

    def _resolve_nested(self, bundle_root: Path, path: frozenset[str]) -> None:
        for image in read_images_lock(bundle_root):
            nested = ImageReference.parse(image)
            if not nested.digest:
                nested = nested.with_digest(self._ctx.registry.resolve(nested).digest)

            if nested.digest in path:
                raise CycleDetectedError(
                    f"Bundle cycle detected: {nested.pinned()} is already being resolved "
                    f"on this path ({len(path)} level(s) deep)"
                )

            cache = self._ctx.cache
            known_bundle = cache is not None and cache.contains(
                fingerprint("imgpkgBundle", nested.digest)
            )
            if not known_bundle and not self._is_bundle(nested):
                continue

            target = bundle_root / nested_bundle_dir(nested.digest)
            self._materialize(nested, target)
            self._resolve_nested(target, path | {nested.digest})

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch(self, content: ContentSpec, staging_dir: Path) -> FetchResult:
        source = source_block(content, self.kind)
        registry = self._ctx.registry

        ref = select_reference(registry, ImageReference.parse(source.image), source.tag_selection)
        if not ref.digest:
            ref = ref.with_digest(registry.resolve(ref).digest)

        cache_hit = self._materialize(ref, staging_dir)
        if source.recursive:
            self._resolve_nested(staging_dir, frozenset({ref.digest}))

        logger.info("Fetched bundle %s (cache_hit=%s).", ref.pinned(), cache_hit)
        return FetchResult(
            staging_path=staging_dir,
            resolved=ImgpkgBundleLock(image=ref.pinned(), tag=ref.tag),
            cache_hit=cache_hit,
        )
