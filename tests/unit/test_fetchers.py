"""Tests for the HTTP, inline, directory and Helm chart fetchers and the fetcher table."""

from __future__ import annotations

import hashlib
import io
import stat
import tarfile
import zipfile
from pathlib import Path

import httpx
import pytest

from vendorsync.errors import ChecksumMismatchError, ConfigError, FetchError, RefNotFoundError
from vendorsync.fetchers import FETCHER_TYPES, build_fetchers, check_exhaustive
from vendorsync.fetchers.base import source_block
from vendorsync.fetchers.directory import DirectoryFetcher
from vendorsync.fetchers.helm_chart import HelmChartFetcher, read_chart_metadata
from vendorsync.fetchers.http import HttpFetcher
from vendorsync.fetchers.inline import InlineFetcher
from vendorsync.models.lock import DirectoryLock, HttpLock, InlineLock
from vendorsync.models.manifest import ContentSpec, SourceKind
from vendorsync.models.resources import ResourceBundle


def make_tarball(files: dict[str, bytes], modes: dict[str, int] | None = None) -> bytes:
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = (modes or {}).get(name, 0o644)
            tar.addfile(info, io.BytesIO(data))
    return raw.getvalue()


def _stage(tmp_path: Path, name: str = "stage") -> Path:
    path = tmp_path / name
    path.mkdir()
    return path


def _http_client(routes: dict[str, bytes]) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        body = routes.get(request.url.path)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)

    return httpx.Client(transport=httpx.MockTransport(handler))


def _http_content(url: str, **extra) -> ContentSpec:
    return ContentSpec.model_validate({"path": "dl", "http": {"url": url, **extra}})


class TestHttpFetcher:
    def test_tarball_unpacked(self, make_context, tmp_path: Path):
        archive = make_tarball({"pkg/readme.txt": b"hello"})
        ctx = make_context(http_client=_http_client({"/pkg.tgz": archive}))
        result = HttpFetcher(ctx).fetch(_http_content("https://dl.test/pkg.tgz"), _stage(tmp_path))
        assert (result.staging_path / "pkg" / "readme.txt").read_bytes() == b"hello"
        assert result.resolved == HttpLock(sha256=hashlib.sha256(archive).hexdigest())

    def test_tarball_keeps_executable_bit(self, make_context, tmp_path: Path):
        archive = make_tarball({"bin/tool": b"#!/bin/sh\n"}, modes={"bin/tool": 0o755})
        ctx = make_context(http_client=_http_client({"/tool.tgz": archive}))
        result = HttpFetcher(ctx).fetch(_http_content("https://dl.test/tool.tgz"), _stage(tmp_path))
        assert stat.S_IMODE((result.staging_path / "bin" / "tool").stat().st_mode) == 0o755

    def test_tarball_whiteout_names_are_plain_files(self, make_context, tmp_path: Path):
        archive = make_tarball({"a.txt": b"a", ".wh.a.txt": b"marker"})
        ctx = make_context(http_client=_http_client({"/pkg.tgz": archive}))
        result = HttpFetcher(ctx).fetch(_http_content("https://dl.test/pkg.tgz"), _stage(tmp_path))
        assert (result.staging_path / "a.txt").read_bytes() == b"a"
        assert (result.staging_path / ".wh.a.txt").read_bytes() == b"marker"

    def test_zip_unpacked(self, make_context, tmp_path: Path):
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            zf.writestr("a/b.txt", "zipped")
        ctx = make_context(http_client=_http_client({"/x.zip": buf.getvalue()}))
        result = HttpFetcher(ctx).fetch(_http_content("https://dl.test/x.zip"), _stage(tmp_path))
        assert (result.staging_path / "a" / "b.txt").read_text() == "zipped"

    def test_plain_file_placed_by_name(self, make_context, tmp_path: Path):
        ctx = make_context(http_client=_http_client({"/tools/install.sh": b"echo hi\n"}))
        result = HttpFetcher(ctx).fetch(
            _http_content("https://dl.test/tools/install.sh"), _stage(tmp_path)
        )
        assert (result.staging_path / "install.sh").read_bytes() == b"echo hi\n"

    def test_disable_unpack(self, make_context, tmp_path: Path):
        archive = make_tarball({"f": b"x"})
        ctx = make_context(http_client=_http_client({"/a.tgz": archive}))
        result = HttpFetcher(ctx).fetch(
            _http_content("https://dl.test/a.tgz", disableUnpack=True), _stage(tmp_path)
        )
        assert (result.staging_path / "a.tgz").read_bytes() == archive

    def test_checksum_verified(self, make_context, tmp_path: Path):
        body = b"payload"
        ctx = make_context(http_client=_http_client({"/f": body}))
        good = hashlib.sha256(body).hexdigest()
        HttpFetcher(ctx).fetch(_http_content("https://dl.test/f", sha256=good), _stage(tmp_path, "a"))
        with pytest.raises(ChecksumMismatchError, match="Expected sha256"):
            HttpFetcher(ctx).fetch(
                _http_content("https://dl.test/f", sha256="0" * 64), _stage(tmp_path, "b")
            )

    def test_not_found(self, make_context, tmp_path: Path):
        ctx = make_context(http_client=_http_client({}))
        with pytest.raises(RefNotFoundError):
            HttpFetcher(ctx).fetch(_http_content("https://dl.test/missing"), _stage(tmp_path))


class TestInlineFetcher:
    def test_paths_and_resources(self, make_context, tmp_path: Path):
        resources = ResourceBundle(
            secrets={"creds": {"token": b"s3cret"}},
            config_maps={"settings": {"app.yml": "debug: true\n"}},
        )
        content = ContentSpec.model_validate(
            {
                "path": "inline",
                "inline": {
                    "paths": {"README.md": "# hi\n", "nested/file.txt": "n"},
                    "pathsFrom": [
                        {"secretRef": {"name": "creds", "directoryPath": "secrets"}},
                        {"configMapRef": {"name": "settings"}},
                    ],
                },
            }
        )
        result = InlineFetcher(make_context(resources=resources)).fetch(content, _stage(tmp_path))
        root = result.staging_path
        assert (root / "README.md").read_text() == "# hi\n"
        assert (root / "nested" / "file.txt").read_text() == "n"
        assert (root / "secrets" / "token").read_bytes() == b"s3cret"
        assert (root / "app.yml").read_text() == "debug: true\n"
        assert result.resolved == InlineLock()

    def test_missing_secret(self, make_context, tmp_path: Path):
        content = ContentSpec.model_validate(
            {"path": "i", "inline": {"pathsFrom": [{"secretRef": {"name": "nope"}}]}}
        )
        with pytest.raises(ConfigError, match="Secret 'nope'"):
            InlineFetcher(make_context()).fetch(content, _stage(tmp_path))

    def test_escaping_path_rejected(self, make_context, tmp_path: Path):
        content = ContentSpec.model_validate({"path": "i", "inline": {"paths": {"../x": "y"}}})
        with pytest.raises(ConfigError):
            InlineFetcher(make_context()).fetch(content, _stage(tmp_path))


class TestDirectoryFetcher:
    def test_copies_tree_with_symlinks(self, make_context, tmp_path: Path):
        src = tmp_path / "local"
        (src / "sub").mkdir(parents=True)
        (src / "sub" / "a.txt").write_text("a")
        (src / "link").symlink_to("sub/a.txt")
        content = ContentSpec.model_validate({"path": "d", "directory": {"path": "local"}})
        result = DirectoryFetcher(make_context()).fetch(content, _stage(tmp_path))
        assert (result.staging_path / "sub" / "a.txt").read_text() == "a"
        assert (result.staging_path / "link").is_symlink()
        assert result.resolved == DirectoryLock()

    def test_missing_source(self, make_context, tmp_path: Path):
        content = ContentSpec.model_validate({"path": "d", "directory": {"path": "absent"}})
        with pytest.raises(ConfigError):
            DirectoryFetcher(make_context()).fetch(content, _stage(tmp_path))


class TestHelmChartFetcher:
    def _fetcher(self, make_context) -> HelmChartFetcher:
        return HelmChartFetcher(make_context())

    def test_pull_args_with_repository(self, make_context, tmp_path: Path):
        content = ContentSpec.model_validate(
            {
                "path": "c",
                "helmChart": {
                    "name": "redis",
                    "version": "17.0.0",
                    "repository": {"url": "https://charts.example.com"},
                },
            }
        )
        args = self._fetcher(make_context)._pull_args(content.helm_chart, tmp_path)
        assert args[:2] == ["helm", "pull"]
        assert "--untar" in args
        assert args[args.index("--repo") + 1] == "https://charts.example.com"
        assert args[args.index("--version") + 1] == "17.0.0"

    def test_pull_args_with_oci_repository(self, make_context, tmp_path: Path):
        content = ContentSpec.model_validate(
            {"path": "c", "helmChart": {"name": "app", "repository": {"url": "oci://reg.test/charts/"}}}
        )
        args = self._fetcher(make_context)._pull_args(content.helm_chart, tmp_path)
        assert "oci://reg.test/charts/app" in args
        assert "--repo" not in args
        assert "--version" not in args

    def test_chart_metadata(self, tmp_path: Path):
        (tmp_path / "Chart.yaml").write_text("apiVersion: v2\nname: app\nversion: 1.2.3\nappVersion: '4.5'\n")
        assert read_chart_metadata(tmp_path) == ("1.2.3", "4.5")

    def test_chart_without_version(self, tmp_path: Path):
        (tmp_path / "Chart.yaml").write_text("name: app\n")
        with pytest.raises(FetchError):
            read_chart_metadata(tmp_path)


class TestFetcherTable:
    def test_every_kind_has_a_fetcher(self):
        assert set(FETCHER_TYPES) == set(SourceKind)

    def test_build_fetchers_is_exhaustive(self, make_context):
        table = build_fetchers(make_context())
        assert {kind: f.kind for kind, f in table.items()} == {k: k for k in SourceKind}

    def test_missing_kind_rejected(self, make_context):
        table = build_fetchers(make_context())
        del table[SourceKind.HG]
        with pytest.raises(TypeError, match="hg"):
            check_exhaustive(table)

    def test_mismatched_kind_rejected(self, make_context):
        table = build_fetchers(make_context())
        table[SourceKind.HG] = table[SourceKind.GIT]
        with pytest.raises(TypeError):
            check_exhaustive(table)


class TestSourceBlock:
    def test_returns_block_of_kind(self):
        content = _http_content("https://dl.test/a.tgz")
        assert source_block(content, SourceKind.HTTP).url == "https://dl.test/a.tgz"

    def test_wrong_kind_raises_fetch_error(self, make_context, tmp_path: Path):
        content = ContentSpec.model_validate({"path": "i", "inline": {"paths": {"a": "b"}}})
        with pytest.raises(FetchError, match="has no http source"):
            HttpFetcher(make_context()).fetch(content, _stage(tmp_path))
