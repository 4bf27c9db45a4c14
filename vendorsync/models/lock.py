"""Lock document models — resolved, immutable identity per content entry.

The lock mirrors the manifest's directory/content structure.  Locked mode
feeds these identifiers back in place of floating references.
"""

from __future__ import annotations

from pydantic import Field

from vendorsync.models.manifest import API_VERSION, SourceKind, SpecModel


class GitLock(SpecModel):
    sha: str
    tags: list[str] = Field(default_factory=list)
    commit_title: str = ""


class HgLock(SpecModel):
    sha: str


class HttpLock(SpecModel):
    sha256: str


class ImageLock(SpecModel):
    url: str  # repository@digest


class ImgpkgBundleLock(SpecModel):
    image: str  # repository@digest
    tag: str = ""


class HelmChartLock(SpecModel):
    version: str
    app_version: str = ""


class InlineLock(SpecModel):
    pass


class DirectoryLock(SpecModel):
    pass


ResolvedVersion = (
    GitLock
    | HgLock
    | HttpLock
    | ImageLock
    | ImgpkgBundleLock
    | HelmChartLock
    | InlineLock
    | DirectoryLock
)

LOCK_TYPES: dict[SourceKind, type[SpecModel]] = {
    SourceKind.GIT: GitLock,
    SourceKind.HG: HgLock,
    SourceKind.HTTP: HttpLock,
    SourceKind.IMAGE: ImageLock,
    SourceKind.IMGPKG_BUNDLE: ImgpkgBundleLock,
    SourceKind.HELM_CHART: HelmChartLock,
    SourceKind.INLINE: InlineLock,
    SourceKind.DIRECTORY: DirectoryLock,
}


class LockContent(SpecModel):
    """Resolved identity of one content entry."""

    path: str
    config_digest: str = ""  # content_address of the ContentSpec that produced it
    git: GitLock | None = None
    hg: HgLock | None = None
    http: HttpLock | None = None
    image: ImageLock | None = None
    imgpkg_bundle: ImgpkgBundleLock | None = None
    helm_chart: HelmChartLock | None = None
    inline: InlineLock | None = None
    directory: DirectoryLock | None = None

    @classmethod
    def build(
        cls, path: str, resolved: ResolvedVersion, *, config_digest: str = ""
    ) -> LockContent:
        """Place *resolved* under the block matching its lock type."""
        for kind, lock_type in LOCK_TYPES.items():
            if type(resolved) is lock_type:
                return cls(
                    path=path,
                    config_digest=config_digest,
                    **{kind.field_name: resolved},
                )
        raise TypeError(f"Unsupported resolved version type: {type(resolved).__name__}")

    def resolved_for(self, kind: SourceKind) -> ResolvedVersion | None:
        """Return the resolved block for *kind*, if recorded."""
        return getattr(self, kind.field_name)


class LockDirectory(SpecModel):
    path: str
    contents: list[LockContent] = Field(default_factory=list)


class LockDocument(SpecModel):
    """Top-level ``kind: LockConfig`` document."""

    api_version: str = API_VERSION
    kind: str = "LockConfig"
    directories: list[LockDirectory] = Field(default_factory=list)

    def find_directory(self, path: str) -> LockDirectory | None:
        for directory in self.directories:
            if directory.path == path:
                return directory
        return None

    def find_content(self, directory_path: str, content_path: str) -> LockContent | None:
        """Return the lock entry for a content, or ``None`` if absent."""
        directory = self.find_directory(directory_path)
        if directory is None:
            return None
        for content in directory.contents:
            if content.path == content_path:
                return content
        return None
