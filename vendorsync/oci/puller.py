"""Reference resolution and layer pulling shared by image and bundle fetchers."""

from __future__ import annotations

import logging
from pathlib import Path

from vendorsync.core.version_selection import select_highest
from vendorsync.errors import ConfigError, FetchError
from vendorsync.models.manifest import VersionSelection
from vendorsync.oci.layers import apply_layer
from vendorsync.oci.reference import ImageReference
from vendorsync.oci.registry import ImageManifest, RegistryClient

logger = logging.getLogger(__name__)


def select_reference(
    registry: RegistryClient,
    ref: ImageReference,
    tag_selection: VersionSelection | None,
) -> ImageReference:
    """Apply tag selection when *ref* names neither a tag nor a digest."""
    if ref.digest or ref.tag:
        if tag_selection is not None:
            raise ConfigError(f"tagSelection cannot be combined with a tag or digest in '{ref}'")
        return ref
    if tag_selection is None:
        return ref.with_tag("latest")

    tags = registry.list_tags(ref)
    try:
        tag = select_highest(tags, tag_selection, what=ref.name)
    except ValueError as exc:
        raise ConfigError(f"Invalid tagSelection for {ref.name}: {exc}") from exc
    logger.info("Selected tag %s for %s.", tag, ref.name)
    return ref.with_tag(tag)


def pull_layers(
    registry: RegistryClient,
    ref: ImageReference,
    manifest: ImageManifest,
    dest: Path,
    scratch: Path,
) -> None:
    """Download each layer of *manifest* and apply them in order to *dest*."""
    for index, layer in enumerate(manifest.layers):
        blob = scratch / f"layer-{index}"
        registry.download_blob(ref, layer.digest, blob)
        try:
            apply_layer(blob, dest)
        except FetchError as exc:
            raise FetchError(f"Applying layer {layer.digest} of {ref}: {exc}") from exc
        finally:
            blob.unlink(missing_ok=True)
