"""Tests for include/exclude filtering and newRootPath re-rooting."""

from __future__ import annotations

from pathlib import Path

import pytest

from vendorsync.core.path_filter import apply_filters, matches_any, reroot
from vendorsync.errors import ConfigError


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    root = tmp_path / "tree"
    for rel in ("README.md", "src/main.py", "src/pkg/util.py", "docs/index.md", "config/app.yml"):
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(rel)
    return root


class TestMatchesAny:
    @pytest.mark.parametrize(
        ("path", "pattern", "expected"),
        [
            ("src/main.py", "src/*", True),
            ("src/pkg/util.py", "src/*", False),
            ("src/pkg/util.py", "src/**/*", True),
            ("src/main.py", "src/**/*.py", True),
            ("README.md", "**/*.md", True),
            ("docs/index.md", "**/*.md", True),
            ("docs/index.md", "*.md", False),
            ("config/app.yml", "config/app.y?l", True),
        ],
    )
    def test_glob(self, path, pattern, expected):
        assert matches_any(path, [pattern]) is expected


class TestApplyFilters:
    def test_no_filters_keeps_everything(self, tree: Path):
        assert len(apply_filters(tree, [], [])) == 5

    def test_include_only(self, tree: Path):
        kept = apply_filters(tree, ["src/**/*"], [])
        assert kept == ["src/main.py", "src/pkg/util.py"]
        assert not (tree / "docs").exists()
        assert not (tree / "README.md").exists()

    def test_exclude_applied_after_include(self, tree: Path):
        kept = apply_filters(tree, ["src/**/*"], ["src/pkg/**"])
        assert kept == ["src/main.py"]
        # Emptied directories are pruned.
        assert not (tree / "src" / "pkg").exists()

    def test_exclude_only(self, tree: Path):
        kept = apply_filters(tree, [], ["**/*.md"])
        assert sorted(kept) == ["config/app.yml", "src/main.py", "src/pkg/util.py"]


class TestReroot:
    def test_subdirectory(self, tree: Path):
        assert reroot(tree, "src") == tree / "src"

    def test_missing_directory(self, tree: Path):
        with pytest.raises(ConfigError, match="newRootPath"):
            reroot(tree, "nope")

    @pytest.mark.parametrize("bad", ["../escape", "/abs"])
    def test_escaping_paths_rejected(self, tree: Path, bad: str):
        with pytest.raises(ConfigError):
            reroot(tree, bad)
