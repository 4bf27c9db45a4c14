"""Exception taxonomy for vendorsync.

Every error that aborts a sync run derives from ``VendorSyncError``.  Cache
write failures have no exception type: the content cache logs and absorbs
them (see ``vendorsync.core.content_cache``).
"""

from __future__ import annotations


class VendorSyncError(RuntimeError):
    """Base class for all sync-aborting errors."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigError(VendorSyncError):
    """Raised when the manifest or a referenced resource is invalid."""


class ConfigConflictError(ConfigError):
    """Raised when destination paths overlap or nest.

    Detected before any fetch begins.
    """


class LockError(VendorSyncError):
    """Raised when locked mode cannot pin a content entry."""


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


class FetchError(VendorSyncError):
    """Raised when a source fetcher cannot produce a result."""


class SourceUnreachableError(FetchError):
    """Raised when a repository, registry, or URL cannot be reached."""


class RefNotFoundError(FetchError):
    """Raised when a ref, tag, or digest does not exist at the source."""


class ChecksumMismatchError(FetchError):
    """Raised when downloaded bytes do not match the declared checksum."""


class CycleDetectedError(FetchError):
    """Raised when recursive bundle resolution revisits a digest on its path."""


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class VerificationError(VendorSyncError):
    """Raised when a version-control reference fails signature verification."""


class MissingSignatureError(VerificationError):
    """The commit or tag object carries no PGP signature section."""


class UnknownSignerError(VerificationError):
    """A signature is present but no trusted key produced it."""
