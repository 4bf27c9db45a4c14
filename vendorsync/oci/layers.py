"""Layer application and tree archiving for OCI content."""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
from pathlib import Path, PurePosixPath

from vendorsync.errors import FetchError

logger = logging.getLogger(__name__)

_WHITEOUT_PREFIX = ".wh."
_OPAQUE_WHITEOUT = ".wh..wh..opq"


def _safe_parts(name: str) -> tuple[str, ...] | None:
    """Normalize a member name; ``None`` when it escapes the destination."""
    parts = tuple(p for p in PurePosixPath(name.lstrip("/")).parts if p not in ("", "."))
    if not parts or ".." in parts:
        return None
    return parts


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def apply_layer(archive: Path, dest: Path, *, whiteouts: bool = True) -> None:
    """Extract one (optionally gzipped) layer tarball over *dest*.

    With *whiteouts* set, OCI whiteout entries are honored: ``.wh.<name>``
    deletes ``<name>`` from lower layers, ``.wh..wh..opq`` empties its
    directory.  Without it they are ordinary files.  Regular files keep
    their permission bits, widened to owner read/write; setuid, setgid and
    sticky bits are dropped.
    """
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive, mode="r:*") as tar:
            for member in tar:
                parts = _safe_parts(member.name)
                if parts is None:
                    logger.warning("Skipping unsafe layer entry %r", member.name)
                    continue

                parent = dest.joinpath(*parts[:-1])
                base = parts[-1]
                if whiteouts and base == _OPAQUE_WHITEOUT:
                    if parent.is_dir():
                        for child in parent.iterdir():
                            _remove(child)
                    continue
                if whiteouts and base.startswith(_WHITEOUT_PREFIX):
                    _remove(parent / base[len(_WHITEOUT_PREFIX):])
                    continue

                target = parent / base
                if (target.exists() or target.is_symlink()) and not (
                    member.isdir() and target.is_dir()
                ):
                    _remove(target)
                member.name = "/".join(parts)
                if member.islnk():
                    link_parts = _safe_parts(member.linkname)
                    if link_parts is None:
                        logger.warning("Skipping unsafe hardlink %r", member.name)
                        continue
                    member.linkname = "/".join(link_parts)
                if member.isdev():
                    continue
                tar.extract(member, path=dest, set_attrs=False, filter="tar")
                if member.isfile():
                    # The sync itself must be able to read and replace the file.
                    os.chmod(target, (member.mode & 0o777) | 0o600)
    except (tarfile.TarError, OSError) as exc:
        raise FetchError(f"Extracting layer {archive.name}: {exc}") from exc


def archive_tree(src: Path, archive: Path) -> None:
    """Write *src* as an uncompressed, deterministic tar at *archive*."""

    def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
        info.uid = info.gid = 0
        info.uname = info.gname = ""
        info.mtime = 0
        return info

    with tarfile.open(archive, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for dirpath, dirnames, filenames in os.walk(src):
            dirnames.sort()
            for name in sorted(dirnames) + sorted(filenames):
                full = Path(dirpath) / name
                tar.add(full, arcname=full.relative_to(src).as_posix(), recursive=False,
                        filter=_normalize)


def extract_tree(archive: Path, dest: Path) -> None:
    """Inverse of ``archive_tree``."""
    apply_layer(archive, dest, whiteouts=False)
