"""vendorsync: declarative, reproducible vendoring of third-party content.

Syncs directories from Git and Mercurial repositories, HTTP archives, OCI
images and imgpkg bundles, Helm charts, inline text and local directories,
as described by a YAML manifest, and records what was fetched in a lock
file:
  - Closed set of source kinds, one fetcher per kind
  - Size-bounded LRU content cache shared across processes
  - PGP verification of Git commits and tags against trusted keys
  - Locked mode replays the exact identities of a previous run
  - Atomic per-directory placement
"""

__version__ = "0.4.0"
__description__ = "Declarative, reproducible vendoring of third-party content"

from vendorsync.core.orchestrator import SyncOrchestrator
from vendorsync.manifest import load_lock_file, load_manifest, load_manifest_file
from vendorsync.cli.app import app as cli

__all__ = [
    "SyncOrchestrator",
    "cli",
    "load_lock_file",
    "load_manifest",
    "load_manifest_file",
    "__version__",
]
