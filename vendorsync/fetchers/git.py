"""Git source fetcher.

Flow
----
1. ``git init`` in the staging directory and add ``origin``.
2. If a content cache is configured, restore the repository from a cached
   ``git bundle`` (reported as ``unbundle``).
3. Resolve the ref locally when the cached copy can answer it (exact SHA or
   existing tag); otherwise fetch from ``origin``, resolve, and refresh the
   cached bundle.
4. Verify the commit, or the annotated tag the ref names, against the
   trusted key set when ``verification`` is configured.
5. Check out the commit, initialize submodules recursively (unless
   disabled), record tags and commit title, and strip ``.git`` metadata.
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from vendorsync.core.hasher import fingerprint
from vendorsync.core.ref_verifier import ObjectKind, SignedObject
from vendorsync.core.version_selection import select_highest
from vendorsync.errors import FetchError, RefNotFoundError, SourceUnreachableError
from vendorsync.fetchers.base import FetchContext, run_command, source_block
from vendorsync.models.lock import GitLock
from vendorsync.models.manifest import ContentSpec, GitSource, GitVerification, SourceKind
from vendorsync.models.results import FetchResult

logger = logging.getLogger(__name__)

_SHA_RE = re.compile(r"^[0-9a-f]{7,64}$")
_FETCH_REFSPECS = ("+refs/heads/*:refs/remotes/origin/*", "+refs/tags/*:refs/tags/*")
_BUNDLE_REFSPECS = ("+refs/remotes/origin/*:refs/remotes/origin/*", "+refs/tags/*:refs/tags/*")


def _is_local_url(url: str) -> bool:
    return url.startswith("file://") or "://" not in url and not re.match(r"^[\w.-]+@", url)


class GitFetcher:
    kind = SourceKind.GIT

    def __init__(self, ctx: FetchContext) -> None:
        self._ctx = ctx

    # ------------------------------------------------------------------
    # git plumbing
    # ------------------------------------------------------------------

    def _git(self, repo: Path, *args: str, check: bool = True, source: GitSource | None = None,
             error_type: type[FetchError] = FetchError) -> str:
        env = {
            "GIT_TERMINAL_PROMPT": "0",
            "GIT_CONFIG_NOSYSTEM": "1",
        }
        if source is not None and source.lfs_skip_smudge:
            env["GIT_LFS_SKIP_SMUDGE"] = "1"
        completed = run_command(
            [self._ctx.settings.git_binary, *args],
            cwd=repo, env=env, check=check, error_type=error_type,
        )
        if not check and completed.returncode != 0:
            return ""
        return completed.stdout.decode("utf-8", errors="replace").strip()

    def _git_bytes(self, repo: Path, *args: str) -> bytes:
        return run_command([self._ctx.settings.git_binary, *args], cwd=repo).stdout

    def _rev_parse(self, repo: Path, candidate: str) -> str:
        return self._git(repo, "rev-parse", "--verify", "-q", f"{candidate}^{{commit}}", check=False)

    def _try_resolve(self, repo: Path, ref: str) -> str | None:
        candidates = [f"refs/tags/{ref}", f"refs/remotes/origin/{ref}", ref]
        if _SHA_RE.match(ref):
            candidates.insert(0, ref)
        for candidate in candidates:
            sha = self._rev_parse(repo, candidate)
            if sha:
                return sha
        return None

    def _is_stable_ref(self, repo: Path, source: GitSource) -> bool:
        """Whether a locally resolvable ref can be trusted without a fetch."""
        if source.ref_selection is not None:
            return False
        if _SHA_RE.match(source.ref):
            return True
        return bool(self._git(repo, "rev-parse", "--verify", "-q", f"refs/tags/{source.ref}",
                              check=False))

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _restore_from_cache(self, repo: Path, cache_key: str, url: str) -> bool:
        cache = self._ctx.cache
        if cache is None:
            return False
        with self._ctx.scratch("git-bundle-") as tmp:
            bundle = tmp / "repo.bundle"
            if not cache.get_to_path(cache_key, bundle):
                return False
            restored = run_command(
                [self._ctx.settings.git_binary, "fetch", "-q", str(bundle), *_BUNDLE_REFSPECS],
                cwd=repo, check=False,
            )
        if restored.returncode != 0:
            logger.warning("Cached bundle for %s could not be restored; ignoring it.", url)
            return False
        self._ctx.reporter.emit("unbundle", f"Unbundling cached repository {url}")
        return True

    def _store_in_cache(self, repo: Path, cache_key: str) -> None:
        cache = self._ctx.cache
        if cache is None:
            return
        with self._ctx.scratch("git-bundle-") as tmp:
            bundle = tmp / "repo.bundle"
            created = run_command(
                [self._ctx.settings.git_binary, "bundle", "create", "-q", str(bundle), "--all"],
                cwd=repo, check=False,
            )
            if created.returncode != 0 or not bundle.exists():
                logger.warning("Could not create git bundle for caching: %s",
                               created.stderr.decode("utf-8", errors="replace").strip())
                return
            cache.put_file(cache_key, bundle)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _fetch_remote(self, repo: Path, source: GitSource) -> None:
        self._ctx.reporter.emit("fetch", f"Fetching {source.url}")
        args = ["fetch", "-q", "--prune"]
        if source.depth:
            args.append(f"--depth={source.depth}")
        self._git(repo, *args, "origin", *_FETCH_REFSPECS, source=source,
                  error_type=SourceUnreachableError)

        # An exact SHA that no branch or tag reaches needs an explicit fetch.
        if source.ref and _SHA_RE.match(source.ref) and not self._rev_parse(repo, source.ref):
            self._git(repo, "fetch", "-q", "origin", source.ref, source=source, check=False)

    def _select_ref(self, repo: Path, source: GitSource) -> str:
        if source.ref_selection is None:
            return source.ref
        tags = self._git(repo, "tag", "--list").splitlines()
        try:
            return select_highest(tags, source.ref_selection, what=source.url)
        except ValueError as exc:
            raise FetchError(f"Invalid refSelection for {source.url}: {exc}") from exc

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _verify(self, repo: Path, verification: GitVerification, ref: str, sha: str) -> None:
        keys = self._ctx.resources.trusted_keys(verification.public_keys_secret_ref.name)

        tag_ref = f"refs/tags/{ref}"
        if self._git(repo, "cat-file", "-t", tag_ref, check=False) == "tag":
            obj = SignedObject(
                kind=ObjectKind.TAG, name=ref, raw=self._git_bytes(repo, "cat-file", "tag", tag_ref)
            )
        else:
            obj = SignedObject(
                kind=ObjectKind.COMMIT, name=sha, raw=self._git_bytes(repo, "cat-file", "commit", sha)
            )

        self._ctx.verifier.verify(obj, keys)
        self._ctx.reporter.emit("verify", f"Verified {obj.kind.value} signature for {obj.name}")

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch(self, content: ContentSpec, staging_dir: Path) -> FetchResult:
        source = source_block(content, self.kind)
        repo = staging_dir
        repo.mkdir(parents=True, exist_ok=True)

        self._git(repo, "init", "-q")
        self._git(repo, "remote", "add", "origin", source.url)

        cache_key = fingerprint("git", source.url)
        cache_hit = self._restore_from_cache(repo, cache_key, source.url)

        ref, sha = source.ref, None
        if cache_hit and self._is_stable_ref(repo, source):
            sha = self._try_resolve(repo, ref)

        if sha is None:
            cache_hit = False
            self._fetch_remote(repo, source)
            ref = self._select_ref(repo, source)
            sha = self._try_resolve(repo, ref)
            if sha is None:
                raise RefNotFoundError(f"Expected to find ref '{ref}' in {source.url}, but did not")
            self._store_in_cache(repo, cache_key)

        if source.verification is not None:
            self._verify(repo, source.verification, ref, sha)

        self._git(repo, "-c", "advice.detachedHead=false", "checkout", "-q", sha, source=source)

        if not source.disable_submodules:
            args = ["submodule", "update", "--init", "--recursive", "-q"]
            if _is_local_url(source.url):
                args = ["-c", "protocol.file.allow=always", *args]
            self._git(repo, *args, source=source, error_type=SourceUnreachableError)

        tags = sorted(self._git(repo, "tag", "--points-at", sha).splitlines())
        title = self._git(repo, "log", "-1", "--format=%s", sha)

        self._strip_metadata(repo)
        logger.info("Fetched %s at %s.", source.url, sha)
        return FetchResult(
            staging_path=repo,
            resolved=GitLock(sha=sha, tags=tags, commit_title=title),
            cache_hit=cache_hit,
        )

    @staticmethod
    def _strip_metadata(repo: Path) -> None:
        """Remove ``.git`` dirs and submodule ``.git`` files from the tree."""
        for path in sorted(repo.rglob(".git"), key=lambda p: len(p.parts), reverse=True):
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink(missing_ok=True)
