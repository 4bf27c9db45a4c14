"""Source fetchers, one per ``SourceKind``.

The dispatch table is closed: ``build_fetchers`` refuses to return a table
that leaves any kind without a fetcher.
"""

from __future__ import annotations

from vendorsync.fetchers.base import FetchContext, Fetcher, run_command
from vendorsync.fetchers.directory import DirectoryFetcher
from vendorsync.fetchers.git import GitFetcher
from vendorsync.fetchers.helm_chart import HelmChartFetcher
from vendorsync.fetchers.hg import HgFetcher
from vendorsync.fetchers.http import HttpFetcher
from vendorsync.fetchers.image import ImageFetcher
from vendorsync.fetchers.imgpkg_bundle import ImgpkgBundleFetcher
from vendorsync.fetchers.inline import InlineFetcher
from vendorsync.models.manifest import SourceKind

FETCHER_TYPES: dict[SourceKind, type] = {
    SourceKind.GIT: GitFetcher,
    SourceKind.HG: HgFetcher,
    SourceKind.HTTP: HttpFetcher,
    SourceKind.IMAGE: ImageFetcher,
    SourceKind.IMGPKG_BUNDLE: ImgpkgBundleFetcher,
    SourceKind.HELM_CHART: HelmChartFetcher,
    SourceKind.INLINE: InlineFetcher,
    SourceKind.DIRECTORY: DirectoryFetcher,
}


def check_exhaustive(table: dict[SourceKind, Fetcher]) -> None:
    """Raise ``TypeError`` if *table* misses a kind or maps it wrongly."""
    missing = [k.value for k in SourceKind if k not in table]
    if missing:
        raise TypeError(f"No fetcher registered for source kind(s): {', '.join(missing)}")
    for kind, fetcher in table.items():
        if not isinstance(fetcher, Fetcher) or fetcher.kind is not kind:
            raise TypeError(f"Fetcher registered for '{kind.value}' does not handle it")


def build_fetchers(
    ctx: FetchContext,
    overrides: dict[SourceKind, Fetcher] | None = None,
) -> dict[SourceKind, Fetcher]:
    """Instantiate one fetcher per kind; *overrides* replace defaults (tests)."""
    table: dict[SourceKind, Fetcher] = {kind: cls(ctx) for kind, cls in FETCHER_TYPES.items()}
    table.update(overrides or {})
    check_exhaustive(table)
    return table


__all__ = [
    "FETCHER_TYPES",
    "FetchContext",
    "Fetcher",
    "build_fetchers",
    "check_exhaustive",
    "run_command",
]
