"""vendorsync data models — all Pydantic v2, all frozen (immutable)."""

from vendorsync.models.lock import (
    DirectoryLock,
    GitLock,
    HelmChartLock,
    HgLock,
    HttpLock,
    ImageLock,
    ImgpkgBundleLock,
    InlineLock,
    LockContent,
    LockDirectory,
    LockDocument,
    ResolvedVersion,
)
from vendorsync.models.manifest import (
    API_VERSION,
    ContentSpec,
    DirectorySource,
    DirectorySpec,
    GitSource,
    GitVerification,
    HelmChartSource,
    HgSource,
    HttpSource,
    ImageSource,
    ImgpkgBundleSource,
    InlineSource,
    Manifest,
    ResourceRef,
    SourceKind,
    VersionSelection,
)
from vendorsync.models.resources import ResourceBundle, TrustedKeySet
from vendorsync.models.results import FetchResult

__all__ = [
    # manifest
    "API_VERSION",
    "SourceKind",
    "Manifest",
    "DirectorySpec",
    "ContentSpec",
    "GitSource",
    "GitVerification",
    "HgSource",
    "HttpSource",
    "ImageSource",
    "ImgpkgBundleSource",
    "HelmChartSource",
    "InlineSource",
    "DirectorySource",
    "ResourceRef",
    "VersionSelection",
    # resources
    "ResourceBundle",
    "TrustedKeySet",
    # lock
    "LockDocument",
    "LockDirectory",
    "LockContent",
    "ResolvedVersion",
    "GitLock",
    "HgLock",
    "HttpLock",
    "ImageLock",
    "ImgpkgBundleLock",
    "HelmChartLock",
    "InlineLock",
    "DirectoryLock",
    # results
    "FetchResult",
]
