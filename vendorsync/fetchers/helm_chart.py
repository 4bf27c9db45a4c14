"""Packaged Helm chart fetcher (``helm`` CLI)."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

import yaml

from vendorsync.errors import ConfigError, FetchError, RefNotFoundError
from vendorsync.fetchers.base import FetchContext, run_command, source_block
from vendorsync.models.lock import HelmChartLock
from vendorsync.models.manifest import ContentSpec, HelmChartSource, SourceKind
from vendorsync.models.results import FetchResult

logger = logging.getLogger(__name__)

RENDERED_MANIFEST = "manifest.yml"


def read_chart_metadata(chart_dir: Path) -> tuple[str, str]:
    """Return ``(version, appVersion)`` from a chart's ``Chart.yaml``."""
    chart_file = chart_dir / "Chart.yaml"
    try:
        doc = yaml.safe_load(chart_file.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise FetchError(f"Reading {chart_file.name} of chart: {exc}") from exc
    version = str(doc.get("version") or "")
    if not version:
        raise FetchError(f"Expected {chart_file.name} to declare a version")
    return version, str(doc.get("appVersion") or "")


class HelmChartFetcher:
    kind = SourceKind.HELM_CHART

    def __init__(self, ctx: FetchContext) -> None:
        self._ctx = ctx

    def _pull_args(self, source: HelmChartSource, dest: Path) -> list[str]:
        helm = self._ctx.settings.helm_binary
        args = [helm, "pull", "--untar", "--untardir", str(dest)]
        repo_url = source.repository.url if source.repository else ""
        if repo_url.startswith("oci://"):
            args.append(f"{repo_url.rstrip('/')}/{source.name}")
        elif repo_url:
            args.extend([source.name, "--repo", repo_url])
        else:
            # chart name is a local repo alias reference ("repo/chart") or oci:// url
            args.append(source.name)
        if source.version:
            args.extend(["--version", source.version])
        return args

    def _render(self, source: HelmChartSource, chart_dir: Path, staging_dir: Path) -> None:
        helm = self._ctx.settings.helm_binary
        release = source.release_name or source.name.rsplit("/", 1)[-1]
        args = [helm, "template", release, str(chart_dir), "--namespace", source.namespace]
        for values_file in source.values_files:
            path = (self._ctx.working_dir / values_file).resolve()
            if not path.is_file():
                raise ConfigError(f"Expected values file '{values_file}' to exist")
            args.extend(["--values", str(path)])
        completed = run_command(args)
        (staging_dir / RENDERED_MANIFEST).write_bytes(completed.stdout)

    def fetch(self, content: ContentSpec, staging_dir: Path) -> FetchResult:
        source = source_block(content, self.kind)

        self._ctx.reporter.emit("fetch", f"Pulling chart {source.name} {source.version}".rstrip())
        with self._ctx.scratch("helm-") as tmp:
            run_command(self._pull_args(source, tmp), error_type=RefNotFoundError)
            unpacked = [p for p in tmp.iterdir() if p.is_dir()]
            if len(unpacked) != 1:
                raise FetchError(
                    f"Expected helm pull to produce one chart directory, found {len(unpacked)}"
                )
            chart_dir = unpacked[0]
            version, app_version = read_chart_metadata(chart_dir)

            if source.render:
                self._render(source, chart_dir, staging_dir)
            else:
                staging_dir.rmdir()
                shutil.move(str(chart_dir), str(staging_dir))

        logger.info("Fetched chart %s %s.", source.name, version)
        return FetchResult(
            staging_path=staging_dir,
            resolved=HelmChartLock(version=version, app_version=app_version),
        )
