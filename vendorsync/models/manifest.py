"""Manifest models — directories, contents, and per-source parameters.

Every ``ContentSpec`` carries exactly one source block.  The set of source
kinds is closed (``SourceKind``); fetcher dispatch is keyed on it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

API_VERSION = "vendorsync.dev/v1alpha1"


class SpecModel(BaseModel):
    """Base for manifest models: immutable, camelCase on the wire."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="forbid",
    )


class SourceKind(str, Enum):
    """Closed set of source types, valued by their manifest key."""

    GIT = "git"
    HG = "hg"
    HTTP = "http"
    IMAGE = "image"
    IMGPKG_BUNDLE = "imgpkgBundle"
    HELM_CHART = "helmChart"
    INLINE = "inline"
    DIRECTORY = "directory"

    @property
    def field_name(self) -> str:
        """Python attribute name of this kind's block on ``ContentSpec``."""
        return _FIELD_NAMES[self]


_FIELD_NAMES: dict[SourceKind, str] = {
    SourceKind.GIT: "git",
    SourceKind.HG: "hg",
    SourceKind.HTTP: "http",
    SourceKind.IMAGE: "image",
    SourceKind.IMGPKG_BUNDLE: "imgpkg_bundle",
    SourceKind.HELM_CHART: "helm_chart",
    SourceKind.INLINE: "inline",
    SourceKind.DIRECTORY: "directory",
}


# ---------------------------------------------------------------------------
# Shared building blocks
# ---------------------------------------------------------------------------


class ResourceRef(SpecModel):
    """Reference to a Secret or ConfigMap document in the same input stream."""

    name: str
    directory_path: str = ""


class PrereleaseSelection(SpecModel):
    """Allow prerelease versions, optionally only with given identifiers."""

    identifiers: list[str] = Field(default_factory=list)


class SemverSelection(SpecModel):
    constraints: str = ""
    prereleases: PrereleaseSelection | None = None


class VersionSelection(SpecModel):
    """Tag selection via a semantic-version constraint expression."""

    semver: SemverSelection


# ---------------------------------------------------------------------------
# Source blocks
# ---------------------------------------------------------------------------


class GitVerification(SpecModel):
    public_keys_secret_ref: ResourceRef


class GitSource(SpecModel):
    url: str
    ref: str = ""
    ref_selection: VersionSelection | None = None
    verification: GitVerification | None = None
    depth: int | None = None
    disable_submodules: bool = False
    lfs_skip_smudge: bool = False

    @model_validator(mode="after")
    def _ref_or_selection(self) -> GitSource:
        if not self.ref and self.ref_selection is None:
            raise ValueError("git requires either 'ref' or 'refSelection'")
        if self.ref and self.ref_selection is not None:
            raise ValueError("git accepts only one of 'ref' and 'refSelection'")
        return self


class HgSource(SpecModel):
    url: str
    ref: str = "default"


class HttpSource(SpecModel):
    url: str
    sha256: str = ""
    disable_unpack: bool = False


class ImageSource(SpecModel):
    url: str
    tag_selection: VersionSelection | None = None


class ImgpkgBundleSource(SpecModel):
    image: str
    recursive: bool = False
    tag_selection: VersionSelection | None = None


class HelmRepository(SpecModel):
    url: str


class HelmChartSource(SpecModel):
    name: str
    version: str = ""
    repository: HelmRepository | None = None
    render: bool = False
    release_name: str = ""
    namespace: str = "default"
    values_files: list[str] = Field(default_factory=list)


class InlineSourceRef(SpecModel):
    secret_ref: ResourceRef | None = None
    config_map_ref: ResourceRef | None = None

    @model_validator(mode="after")
    def _exactly_one_ref(self) -> InlineSourceRef:
        if (self.secret_ref is None) == (self.config_map_ref is None):
            raise ValueError("pathsFrom entries need exactly one of secretRef, configMapRef")
        return self


class InlineSource(SpecModel):
    paths: dict[str, str] = Field(default_factory=dict)
    paths_from: list[InlineSourceRef] = Field(default_factory=list)


class DirectorySource(SpecModel):
    path: str


# ---------------------------------------------------------------------------
# Content and directory specs
# ---------------------------------------------------------------------------


class ContentSpec(SpecModel):
    """One source-to-destination mapping within a directory."""

    path: str
    git: GitSource | None = None
    hg: HgSource | None = None
    http: HttpSource | None = None
    image: ImageSource | None = None
    imgpkg_bundle: ImgpkgBundleSource | None = None
    helm_chart: HelmChartSource | None = None
    inline: InlineSource | None = None
    directory: DirectorySource | None = None

    include_paths: list[str] = Field(default_factory=list)
    exclude_paths: list[str] = Field(default_factory=list)
    new_root_path: str = ""
    lazy: bool = False

    @model_validator(mode="after")
    def _exactly_one_source(self) -> ContentSpec:
        present = [k for k in SourceKind if getattr(self, k.field_name) is not None]
        if len(present) != 1:
            names = ", ".join(k.value for k in SourceKind)
            raise ValueError(
                f"content '{self.path}' must specify exactly one of: {names} "
                f"(found {len(present)})"
            )
        return self

    @property
    def kind(self) -> SourceKind:
        """The source kind of this content."""
        for k in SourceKind:
            if getattr(self, k.field_name) is not None:
                return k
        raise AssertionError("unreachable: validated to have one source")

    @property
    def source(self) -> Any:
        """The populated source block."""
        return getattr(self, self.kind.field_name)

    def with_source(self, source: Any) -> ContentSpec:
        """Return a copy with the source block replaced."""
        return self.model_copy(update={self.kind.field_name: source})


class DirectorySpec(SpecModel):
    """A destination directory assembled from ordered contents."""

    path: str
    contents: list[ContentSpec]


class Manifest(SpecModel):
    """Top-level ``kind: Config`` document."""

    api_version: str = API_VERSION
    kind: str = "Config"
    minimum_required_version: str | None = None
    directories: list[DirectorySpec]
