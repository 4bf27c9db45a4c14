"""Sync orchestrator — the central coordinator for a vendorsync run.

Per directory, in manifest order::

    Resolve -> Fetch -> Filter -> Place   (for each content)
    Swap                                  (once every content succeeded)

then the lock document is written.  The first error aborts the run.

Every directory is assembled in a staging area under the working directory
and swapped into place only when complete, so a failed or interrupted run
never leaves a half-written destination.  Staging is removed on success,
on failure, and on ``KeyboardInterrupt``.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterable
from pathlib import Path, PurePosixPath

import httpx

from vendorsync.config import SyncSettings
from vendorsync.core.content_cache import ContentCache
from vendorsync.core.lock_recorder import LockRecorder, config_digest
from vendorsync.core.path_filter import apply_filters, reroot
from vendorsync.core.ref_verifier import RefVerifier
from vendorsync.errors import ConfigConflictError, ConfigError, LockError
from vendorsync.fetchers import FetchContext, Fetcher, build_fetchers
from vendorsync.models.lock import LockContent, LockDocument
from vendorsync.models.manifest import ContentSpec, DirectorySpec, Manifest, SourceKind
from vendorsync.models.resources import ResourceBundle
from vendorsync.oci.registry import RegistryClient
from vendorsync.reporting import SyncReporter

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Path checks
# ---------------------------------------------------------------------------


def _normalize(path: str, what: str) -> PurePosixPath:
    rel = PurePosixPath(path)
    if rel.is_absolute() or ".." in rel.parts:
        raise ConfigError(f"{what} '{path}' must be a relative path without '..'")
    return rel


def _overlaps(a: PurePosixPath, b: PurePosixPath) -> bool:
    """Whether *a* and *b* are equal or one contains the other."""
    n = min(len(a.parts), len(b.parts))
    return a.parts[:n] == b.parts[:n]


def check_conflicts(manifest: Manifest, staging_dir_name: str = ".vendorsync-tmp") -> None:
    """Reject overlapping destinations before anything is fetched.

    Directory paths must be distinct and non-nested, and must not be the
    working directory itself.  Within a directory the same holds for content
    paths, except that ``.`` is allowed for a directory's only content.
    """
    seen: list[PurePosixPath] = []
    for directory in manifest.directories:
        rel = _normalize(directory.path, "Directory path")
        if not rel.parts:
            raise ConfigConflictError("Directory path must not be the working directory itself")
        if rel.parts[0] == staging_dir_name:
            raise ConfigConflictError(f"Directory path '{directory.path}' is inside the staging area")
        for other in seen:
            if _overlaps(rel, other):
                raise ConfigConflictError(
                    f"Expected directory paths to be unique and non-overlapping, "
                    f"but '{rel}' conflicts with '{other}'"
                )
        seen.append(rel)

        content_paths: list[PurePosixPath] = []
        for content in directory.contents:
            crel = _normalize(content.path, "Content path")
            if not crel.parts and len(directory.contents) > 1:
                raise ConfigConflictError(
                    f"Content path '.' in directory '{rel}' must be the directory's only content"
                )
            for other in content_paths:
                if _overlaps(crel, other):
                    raise ConfigConflictError(
                        f"Expected content paths in directory '{rel}' to be unique and "
                        f"non-overlapping, but '{crel}' conflicts with '{other}'"
                    )
            content_paths.append(crel)


# ---------------------------------------------------------------------------
# Locked mode
# ---------------------------------------------------------------------------


def pin_content(content: ContentSpec, entry: LockContent) -> ContentSpec:
    """Replace a content's floating reference with its recorded identity.

    ``inline`` and ``directory`` contents have no reference and pass through.
    """
    kind = content.kind
    resolved = entry.resolved_for(kind)
    if resolved is None:
        raise LockError(
            f"Expected lock entry for content '{content.path}' to record a {kind.value} source"
        )
    source = content.source

    if kind is SourceKind.GIT:
        source = source.model_copy(update={"ref": resolved.sha, "ref_selection": None})
    elif kind is SourceKind.HG:
        source = source.model_copy(update={"ref": resolved.sha})
    elif kind is SourceKind.HTTP:
        source = source.model_copy(update={"sha256": resolved.sha256})
    elif kind is SourceKind.IMAGE:
        source = source.model_copy(update={"url": resolved.url, "tag_selection": None})
    elif kind is SourceKind.IMGPKG_BUNDLE:
        image = resolved.image
        if resolved.tag:
            image = image.replace("@", f":{resolved.tag}@", 1)
        source = source.model_copy(update={"image": image, "tag_selection": None})
    elif kind is SourceKind.HELM_CHART:
        source = source.model_copy(update={"version": resolved.version})

    return content.with_source(source)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SyncOrchestrator:
    """Runs one sync of a manifest into a working directory.

    Parameters
    ----------
    manifest:
        Parsed ``Config`` document.
    resources:
        Secrets and ConfigMaps from the same input stream.
    settings:
        Process settings.  Defaults are used if not provided.
    working_dir:
        Directory that manifest paths are relative to.
    reporter:
        Progress sink.  A quiet reporter is used if not provided.
    cache:
        Shared content cache, or ``None`` to disable caching.
    previous_lock:
        Lock document from a prior run.  Required in locked mode; otherwise
        used for ``lazy`` contents and for directories outside ``only_dirs``.
    locked:
        Replace every floating reference with its identity in
        *previous_lock*.
    fetcher_overrides:
        Replace the fetcher for specific kinds (tests).
    """

    def __init__(
        self,
        manifest: Manifest,
        resources: ResourceBundle | None = None,
        *,
        settings: SyncSettings | None = None,
        working_dir: Path | None = None,
        reporter: SyncReporter | None = None,
        cache: ContentCache | None = None,
        previous_lock: LockDocument | None = None,
        locked: bool = False,
        fetcher_overrides: dict[SourceKind, Fetcher] | None = None,
        registry: RegistryClient | None = None,
        http_client: httpx.Client | None = None,
        verifier: RefVerifier | None = None,
    ) -> None:
        self.manifest = manifest
        self.resources = resources or ResourceBundle()
        self.settings = settings or SyncSettings()
        self.working_dir = Path(working_dir or Path.cwd()).resolve()
        self.reporter = reporter or SyncReporter(quiet=True)
        self.cache = cache
        self.previous_lock = previous_lock
        self.locked = locked
        self._fetcher_overrides = fetcher_overrides
        self._registry = registry
        self._http_client = http_client
        self._verifier = verifier

        if locked and previous_lock is None:
            raise LockError("Locked mode requires an existing lock file")
        check_conflicts(manifest, self.settings.staging_dir_name)

    @property
    def staging_root(self) -> Path:
        return self.working_dir / self.settings.staging_dir_name

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _select_directories(self, only_dirs: Iterable[str] | None) -> list[DirectorySpec]:
        if not only_dirs:
            return list(self.manifest.directories)
        wanted = {str(PurePosixPath(p)) for p in only_dirs}
        known = {str(PurePosixPath(d.path)) for d in self.manifest.directories}
        unknown = sorted(wanted - known)
        if unknown:
            raise ConfigError(f"Expected to find directory '{unknown[0]}' in the manifest")
        return [d for d in self.manifest.directories if str(PurePosixPath(d.path)) in wanted]

    def sync(
        self,
        only_dirs: Iterable[str] | None = None,
        *,
        lock_path: Path | None = None,
    ) -> LockDocument:
        """Sync the selected directories and return the new lock document.

        The lock document is written to *lock_path* when given.
        """
        directories = self._select_directories(only_dirs)
        recorder = LockRecorder(self.manifest, self.previous_lock)

        self.staging_root.mkdir(parents=True, exist_ok=True)
        run_dir = Path(tempfile.mkdtemp(prefix="run-", dir=self.staging_root))
        ctx = FetchContext(
            settings=self.settings,
            resources=self.resources,
            reporter=self.reporter,
            scratch_root=run_dir / "scratch",
            working_dir=self.working_dir,
            cache=self.cache,
            verifier=self._verifier,
            registry=self._registry,
            http_client=self._http_client,
        )
        try:
            fetchers = build_fetchers(ctx, self._fetcher_overrides)
            for index, directory in enumerate(directories):
                self._sync_directory(index, directory, fetchers, recorder, run_dir)
        finally:
            ctx.close()
            shutil.rmtree(run_dir, ignore_errors=True)
            try:
                self.staging_root.rmdir()
            except OSError:
                pass  # shared with a concurrent run, or not empty

        if lock_path is not None:
            document = recorder.write(lock_path)
            self.reporter.emit("lock", f"Wrote {lock_path}")
            return document
        return recorder.document()

    # ------------------------------------------------------------------
    # One directory
    # ------------------------------------------------------------------

    def _lock_entry(self, directory: DirectorySpec, content: ContentSpec) -> LockContent | None:
        if self.previous_lock is None:
            return None
        return self.previous_lock.find_content(directory.path, content.path)

    def _can_skip_lazy(self, directory: DirectorySpec, content: ContentSpec, final_dir: Path) -> bool:
        if not content.lazy:
            return False
        entry = self._lock_entry(directory, content)
        if entry is None or entry.config_digest != config_digest(content):
            return False
        return (final_dir / content.path).exists()

    def _sync_directory(
        self,
        index: int,
        directory: DirectorySpec,
        fetchers: dict[SourceKind, Fetcher],
        recorder: LockRecorder,
        run_dir: Path,
    ) -> None:
        final_dir = self.working_dir / directory.path
        dir_stage = run_dir / f"dir-{index}"
        dir_stage.mkdir()

        with self.reporter.scope(directory.path):
            for cindex, content in enumerate(directory.contents):
                target = dir_stage / content.path

                if self._can_skip_lazy(directory, content, final_dir):
                    self.reporter.emit("skip", f"Skipping lazy content '{content.path}' (unchanged)")
                    self._copy_existing(final_dir / content.path, target)
                    recorder.carry_forward(directory, content)
                    continue

                effective = content
                if self.locked:
                    entry = self._lock_entry(directory, content)
                    if entry is None:
                        raise LockError(
                            f"Expected to find lock entry for content "
                            f"'{directory.path}/{content.path}', but did not"
                        )
                    effective = pin_content(content, entry)

                content_stage = run_dir / f"content-{index}-{cindex}"
                content_stage.mkdir()
                result = fetchers[effective.kind].fetch(effective, content_stage)

                root = result.staging_path
                if content.new_root_path:
                    root = reroot(root, content.new_root_path)
                apply_filters(root, content.include_paths, content.exclude_paths)

                self._place(root, target)
                shutil.rmtree(content_stage, ignore_errors=True)
                recorder.record(directory, content, result)

            self._swap(dir_stage, final_dir, run_dir / f"old-{index}")
            self.reporter.emit("place", f"Synced {len(directory.contents)} content(s)")

    @staticmethod
    def _copy_existing(src: Path, target: Path) -> None:
        """Carry a skipped content's current tree into the staged directory."""
        if src.is_dir() and not src.is_symlink():
            if target.exists():
                target.rmdir()
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(src, target, symlinks=True)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, target, follow_symlinks=False)

    @staticmethod
    def _place(root: Path, target: Path) -> None:
        """Move a fetched (and filtered) tree to its slot in the staged directory."""
        if target.exists():
            target.rmdir()  # only the '.' content, into an empty staged directory
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(root), str(target))

    @staticmethod
    def _swap(staged: Path, final: Path, old: Path) -> None:
        """Replace *final* with *staged*; *old* receives the previous tree."""
        final.parent.mkdir(parents=True, exist_ok=True)
        try:
            if final.exists() or final.is_symlink():
                os.replace(final, old)
            os.replace(staged, final)
        except BaseException:
            # Also on KeyboardInterrupt: the previous tree goes back in place.
            if old.exists() and not (final.exists() or final.is_symlink()):
                os.replace(old, final)
            raise
        shutil.rmtree(old, ignore_errors=True)
        logger.info("Placed directory %s.", final)
