"""Shared test fixtures for vendorsync."""

from __future__ import annotations

import gzip
import hashlib
import io
import json
import os
import shutil
import subprocess
import tarfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
import yaml

from vendorsync.config import CacheConfig, SyncSettings
from vendorsync.core.content_cache import ContentCache
from vendorsync.fetchers.base import FetchContext
from vendorsync.models.resources import ResourceBundle
from vendorsync.oci.registry import RegistryClient
from vendorsync.reporting import SyncReporter


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> SyncSettings:
    """Settings isolated from the developer's environment and .env file."""
    for name in ("CACHE_DIR", "CACHE_MAX_SIZE", "LOG_LEVEL"):
        monkeypatch.delenv(f"VENDORSYNC_{name}", raising=False)
    return SyncSettings(_env_file=None)


@pytest.fixture
def cache(tmp_path: Path) -> ContentCache:
    """Provide a fresh 1 MB ContentCache in a temp directory."""
    return ContentCache(CacheConfig(directory=tmp_path / "cache", max_size_bytes=1_000_000))


@pytest.fixture
def reporter() -> SyncReporter:
    """A reporter that records events without rendering them."""
    return SyncReporter(quiet=True)


@pytest.fixture
def make_context(
    tmp_path: Path, settings: SyncSettings, reporter: SyncReporter
) -> Callable[..., FetchContext]:
    """Factory fixture: build a FetchContext with sensible defaults."""

    def _factory(**overrides: Any) -> FetchContext:
        kwargs: dict[str, Any] = {
            "settings": settings,
            "resources": ResourceBundle(),
            "reporter": reporter,
            "scratch_root": tmp_path / "scratch",
            "working_dir": tmp_path,
        }
        kwargs.update(overrides)
        return FetchContext(**kwargs)

    return _factory


# ---------------------------------------------------------------------------
# In-memory OCI registry served through httpx.MockTransport
# ---------------------------------------------------------------------------


def make_layer(files: dict[str, bytes], *, gzipped: bool = True) -> bytes:
    """Build a (gzipped) tar layer from a mapping of path -> content."""
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w") as tar:
        for name, data in sorted(files.items()):
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    body = raw.getvalue()
    return gzip.compress(body, mtime=0) if gzipped else body


def digest_of(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


class FakeRegistry:
    """A tiny OCI distribution API over a dict of blobs and manifests.

    Requests are counted per path so tests can assert what was pulled.
    """

    def __init__(self, host: str = "registry.test") -> None:
        self.host = host
        self.blobs: dict[str, bytes] = {}
        self.manifests: dict[str, dict[str, bytes]] = {}  # repo -> ref -> body
        self.requests: list[str] = []

    def push_image(
        self,
        repo: str,
        files: dict[str, bytes],
        *,
        tags: tuple[str, ...] = (),
        labels: dict[str, str] | None = None,
    ) -> str:
        """Store a single-layer image; returns its manifest digest."""
        layer = make_layer(files)
        config = json.dumps(
            {"architecture": "amd64", "os": "linux", "config": {"Labels": labels or {}}},
            sort_keys=True,
        ).encode()
        self.blobs[digest_of(layer)] = layer
        self.blobs[digest_of(config)] = config
        manifest = json.dumps(
            {
                "schemaVersion": 2,
                "mediaType": "application/vnd.oci.image.manifest.v1+json",
                "config": {
                    "mediaType": "application/vnd.oci.image.config.v1+json",
                    "digest": digest_of(config),
                    "size": len(config),
                },
                "layers": [
                    {
                        "mediaType": "application/vnd.oci.image.layer.v1.tar+gzip",
                        "digest": digest_of(layer),
                        "size": len(layer),
                    }
                ],
            },
            sort_keys=True,
        ).encode()
        digest = digest_of(manifest)
        refs = self.manifests.setdefault(repo, {})
        refs[digest] = manifest
        for tag in tags:
            refs[tag] = manifest
        return digest

    def push_bundle(
        self, repo: str, files: dict[str, bytes], *, images: list[str] | None = None, tags: tuple[str, ...] = ()
    ) -> str:
        """Store an imgpkg bundle whose images.yml lists *images*."""
        lock = {
            "apiVersion": "imgpkg.carvel.dev/v1alpha1",
            "kind": "ImagesLock",
            "images": [{"image": image} for image in images or []],
        }
        content = {**files, ".imgpkg/images.yml": yaml.safe_dump(lock).encode()}
        return self.push_image(
            repo, content, tags=tags, labels={"dev.carvel.imgpkg.bundle": "true"}
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)
        parts = path.split("/")
        # /v2/<repo...>/<kind>/<ref>
        if len(parts) < 5 or parts[1] != "v2":
            return httpx.Response(404)
        if parts[-1] == "list" and parts[-2] == "tags":
            repo = "/".join(parts[2:-2])
            tags = sorted(r for r in self.manifests.get(repo, {}) if not r.startswith("sha256:"))
            return httpx.Response(200, json={"name": repo, "tags": tags})
        repo, kind, ref = "/".join(parts[2:-2]), parts[-2], parts[-1]
        if kind == "manifests":
            body = self.manifests.get(repo, {}).get(ref)
            if body is None:
                return httpx.Response(404)
            return httpx.Response(
                200,
                content=body,
                headers={
                    "Content-Type": "application/vnd.oci.image.manifest.v1+json",
                    "Docker-Content-Digest": digest_of(body),
                },
            )
        if kind == "blobs":
            blob = self.blobs.get(ref)
            if blob is None:
                return httpx.Response(404)
            return httpx.Response(200, content=blob)
        return httpx.Response(404)

    def blob_pulls(self) -> int:
        return sum(1 for p in self.requests if "/blobs/" in p)

    def client(self) -> RegistryClient:
        return RegistryClient(httpx.Client(transport=httpx.MockTransport(self.handler)))


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


# ---------------------------------------------------------------------------
# Local git repositories
# ---------------------------------------------------------------------------


class GitRepos:
    """Builds throwaway git repositories with a fixed identity."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.env = {
            **os.environ,
            "GIT_AUTHOR_NAME": "Test Author",
            "GIT_AUTHOR_EMAIL": "author@example.com",
            "GIT_COMMITTER_NAME": "Test Author",
            "GIT_COMMITTER_EMAIL": "author@example.com",
            "GIT_CONFIG_NOSYSTEM": "1",
            "GIT_CONFIG_GLOBAL": os.devnull,
        }

    def git(self, repo: Path, *args: str) -> str:
        """Run git in *repo* and return stripped stdout."""
        completed = subprocess.run(
            ["git", *args], cwd=repo, env=self.env, capture_output=True, check=True, text=True
        )
        return completed.stdout.strip()

    def commit(self, repo: Path, files: dict[str, str], message: str, *sign: str) -> str:
        """Write *files*, commit them, and return the new commit SHA."""
        for name, text in files.items():
            target = repo / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text)
        self.git(repo, "add", "-A")
        self.git(repo, *sign, "commit", "-q", "-m", message)
        return self.git(repo, "rev-parse", "HEAD")

    def create(self, name: str, files: dict[str, str]) -> Path:
        """Create a repository with one commit holding *files*."""
        repo = self.root / name
        repo.mkdir(parents=True)
        self.git(repo, "init", "-q", "-b", "main")
        self.commit(repo, files, "initial commit")
        return repo


@pytest.fixture
def git_repos(tmp_path: Path) -> GitRepos:
    if shutil.which("git") is None:
        pytest.skip("git binary not available")
    return GitRepos(tmp_path / "repos")
