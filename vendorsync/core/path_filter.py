"""Include/exclude filtering and re-rooting of a staged tree."""

from __future__ import annotations

import os
import re
import shutil
from functools import lru_cache
from pathlib import Path, PurePosixPath

from vendorsync.errors import ConfigError


@lru_cache(maxsize=256)
def _glob_regex(pattern: str) -> re.Pattern[str]:
    """Translate a ``**``-aware glob into a regex over POSIX relative paths."""
    i, out = 0, []
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out) + r"\Z")


def matches_any(rel_path: str, patterns: list[str]) -> bool:
    return any(_glob_regex(p).match(rel_path) for p in patterns)


def _relative_files(root: Path) -> list[str]:
    files: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        # Symlinked directories are leaves, not traversed.
        for name in list(dirnames):
            if (base / name).is_symlink():
                dirnames.remove(name)
                filenames.append(name)
        for name in filenames:
            files.append((base / name).relative_to(root).as_posix())
    return sorted(files)


def _prune_empty_dirs(root: Path) -> None:
    for dirpath, _dirnames, _filenames in os.walk(root, topdown=False):
        path = Path(dirpath)
        if path != root and not path.is_symlink() and not any(path.iterdir()):
            path.rmdir()


def apply_filters(root: Path, include: list[str], exclude: list[str]) -> list[str]:
    """Delete files under *root* not selected by the filters.

    A file is kept when it matches an include pattern (or includes are empty)
    and matches no exclude pattern.  Returns the kept relative paths.
    """
    if not include and not exclude:
        return _relative_files(root)

    kept: list[str] = []
    for rel in _relative_files(root):
        selected = (not include or matches_any(rel, include)) and not matches_any(rel, exclude)
        if selected:
            kept.append(rel)
        else:
            (root / rel).unlink()
    _prune_empty_dirs(root)
    return kept


def reroot(root: Path, new_root_path: str) -> Path:
    """Return the subdirectory of *root* that should become the content root."""
    rel = PurePosixPath(new_root_path)
    if rel.is_absolute() or ".." in rel.parts:
        raise ConfigError(f"newRootPath must be a relative path within the content: {new_root_path}")
    target = root.joinpath(*rel.parts)
    if not target.is_dir():
        raise ConfigError(f"Expected newRootPath '{new_root_path}' to be a directory in fetched content")
    return target


def copy_tree(src: Path, dest: Path) -> None:
    """Copy a directory tree preserving symlinks; *dest* must not exist."""
    shutil.copytree(src, dest, symlinks=True)
