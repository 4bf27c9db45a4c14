"""Fetcher protocol and the shared context every fetcher is built with."""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import httpx

from vendorsync.config import SyncSettings
from vendorsync.core.content_cache import ContentCache
from vendorsync.core.ref_verifier import RefVerifier
from vendorsync.errors import FetchError
from vendorsync.models.manifest import ContentSpec, SourceKind
from vendorsync.models.resources import ResourceBundle
from vendorsync.models.results import FetchResult
from vendorsync.oci.registry import RegistryClient
from vendorsync.reporting import SyncReporter

logger = logging.getLogger(__name__)


@runtime_checkable
class Fetcher(Protocol):
    """Retrieves one content entry into a staging directory.

    Implementations must leave *staging_dir* holding exactly the fetched
    tree and must not touch anything outside it except their own scratch
    space.  Any failure raises a ``FetchError`` or ``VerificationError``.
    """

    kind: SourceKind

    def fetch(self, content: ContentSpec, staging_dir: Path) -> FetchResult:
        ...


def source_block(content: ContentSpec, kind: SourceKind) -> Any:
    """Return the *kind* source block of *content*.

    Raises ``FetchError`` when the content carries a different kind of source,
    which means it was routed to the wrong fetcher.
    """
    source = getattr(content, kind.field_name)
    if source is None:
        raise FetchError(
            f"Content '{content.path}' has no {kind.value} source (it is {content.kind.value})"
        )
    return source


class FetchContext:
    """Collaborators shared by all fetchers in one sync run.

    Parameters
    ----------
    settings:
        Process settings (binaries, timeouts).
    resources:
        Secrets and ConfigMaps from the input stream.
    reporter:
        Progress sink; fetchers emit ``fetch``/``pull``/``unbundle`` events.
    scratch_root:
        Directory for temporary files; fetchers never write elsewhere.
    working_dir:
        Base for resolving relative local paths (``directory`` sources,
        Helm values files).
    cache:
        Shared content cache, or ``None`` when caching is disabled.
    """

    def __init__(
        self,
        *,
        settings: SyncSettings,
        resources: ResourceBundle,
        reporter: SyncReporter,
        scratch_root: Path,
        working_dir: Path,
        cache: ContentCache | None = None,
        verifier: RefVerifier | None = None,
        registry: RegistryClient | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.settings = settings
        self.resources = resources
        self.reporter = reporter
        self.scratch_root = scratch_root
        self.working_dir = working_dir
        self.cache = cache
        self.verifier = verifier or RefVerifier()
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.Client(
            timeout=settings.http_timeout_seconds, follow_redirects=True
        )
        self.registry = registry or RegistryClient(
            self.http_client, timeout=settings.http_timeout_seconds
        )

    @contextmanager
    def scratch(self, prefix: str = "scratch-") -> Iterator[Path]:
        """A temporary directory removed when the block exits."""
        self.scratch_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix=prefix, dir=self.scratch_root) as tmp:
            yield Path(tmp)

    def close(self) -> None:
        """Release the HTTP client if this context created it."""
        if self._owns_http_client:
            self.http_client.close()


def run_command(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    check: bool = True,
    error_type: type[FetchError] = FetchError,
) -> subprocess.CompletedProcess[bytes]:
    """Run an external tool, wrapping failures with its stderr.

    With ``check=False`` a non-zero exit is returned rather than raised.
    """
    full_env = {**os.environ, **(env or {})}
    logger.debug("Running %s (cwd=%s)", " ".join(args), cwd)
    try:
        completed = subprocess.run(
            list(args), cwd=cwd, env=full_env, capture_output=True, check=False
        )
    except FileNotFoundError as exc:
        raise FetchError(f"Executable '{args[0]}' not found; is it installed?") from exc

    if check and completed.returncode != 0:
        stderr = completed.stderr.decode("utf-8", errors="replace").strip()
        raise error_type(
            f"Running '{' '.join(args)}' failed (exit {completed.returncode}): {stderr}"
        )
    return completed
