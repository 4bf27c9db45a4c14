"""Inline content fetcher — literal paths and Secret/ConfigMap documents."""

from __future__ import annotations

from pathlib import Path, PurePosixPath

from vendorsync.errors import ConfigError
from vendorsync.fetchers.base import FetchContext, source_block
from vendorsync.models.lock import InlineLock
from vendorsync.models.manifest import ContentSpec, SourceKind
from vendorsync.models.results import FetchResult


def _safe_target(root: Path, prefix: str, name: str) -> Path:
    rel = PurePosixPath(prefix) / name if prefix else PurePosixPath(name)
    if rel.is_absolute() or ".." in rel.parts or not rel.parts:
        raise ConfigError(f"Inline path '{rel}' must be relative and stay inside the content")
    return root.joinpath(*rel.parts)


def _write(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)


class InlineFetcher:
    kind = SourceKind.INLINE

    def __init__(self, ctx: FetchContext) -> None:
        self._ctx = ctx

    def fetch(self, content: ContentSpec, staging_dir: Path) -> FetchResult:
        source = source_block(content, self.kind)
        resources = self._ctx.resources

        for name, text in source.paths.items():
            _write(_safe_target(staging_dir, "", name), text.encode("utf-8"))

        for ref in source.paths_from:
            if ref.secret_ref is not None:
                data = resources.secret_data(ref.secret_ref.name)
                prefix = ref.secret_ref.directory_path
                for name, value in data.items():
                    _write(_safe_target(staging_dir, prefix, name), value)
            elif ref.config_map_ref is not None:
                data_text = resources.config_map_data(ref.config_map_ref.name)
                prefix = ref.config_map_ref.directory_path
                for name, text in data_text.items():
                    _write(_safe_target(staging_dir, prefix, name), text.encode("utf-8"))

        return FetchResult(staging_path=staging_dir, resolved=InlineLock())
