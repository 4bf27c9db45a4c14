"""Size-bounded, content-keyed artifact cache shared across processes.

Storage layout::

    {directory}/index.db                                   SQLite index (WAL)
    {directory}/objects/{key[0:2]}/{key[2:4]}/{key}.dat    artifact bytes

``key`` is the SHA-256 of the fingerprint string, so any fingerprint shape
maps to a safe file name.

Design:
- The index is the single point of mutual exclusion.  Admission, eviction
  and hit bookkeeping run inside ``BEGIN IMMEDIATE`` transactions, which
  SQLite serializes across processes.
- Artifacts are staged to a temp file and renamed into place before the
  index row commits; readers copy while holding the index lock.  Nobody
  observes a partial or half-evicted artifact.
- Eviction is least-recently-used, ordered by a monotonically increasing
  access sequence rather than wall-clock time.
- Failures degrade: a cache that cannot read or write logs a warning and
  behaves as a miss.  It never fails the fetch that called it.
"""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from vendorsync.config import CacheConfig
from vendorsync.core.hasher import file_sha256_hex, sha256_hex

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_ENTRIES = """
CREATE TABLE IF NOT EXISTS cache_entries (
    fingerprint   TEXT PRIMARY KEY,
    object_key    TEXT NOT NULL,
    size_bytes    INTEGER NOT NULL,
    sha256        TEXT NOT NULL,
    created_at    TEXT NOT NULL,
    access_seq    INTEGER NOT NULL
);
"""

_CREATE_IDX_ACCESS = """
CREATE INDEX IF NOT EXISTS idx_access_seq ON cache_entries(access_seq);
"""

_LOCK_TIMEOUT_SECONDS = 60.0


class CacheStats(BaseModel):
    """Point-in-time view of cache occupancy."""

    model_config = ConfigDict(frozen=True)

    entries: int
    total_bytes: int
    max_bytes: int


class ContentCache:
    """LRU artifact cache bounded by ``CacheConfig.max_size_bytes``.

    Parameters
    ----------
    config:
        Explicit location and budget.  Never read from the environment here.
    """

    def __init__(self, config: CacheConfig) -> None:
        self._config = config
        self._base = Path(config.directory)
        self._objects = self._base / "objects"
        self._db_path = self._base / "index.db"
        self._objects.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def max_size_bytes(self) -> int:
        return self._config.max_size_bytes

    @property
    def directory(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # SQLite plumbing
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._db_path),
            timeout=_LOCK_TIMEOUT_SECONDS,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute(_CREATE_ENTRIES)
            conn.execute(_CREATE_IDX_ACCESS)
        finally:
            conn.close()

    @contextmanager
    def _exclusive(self) -> Iterator[sqlite3.Connection]:
        """Hold the cross-process write lock for the duration of the block."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    @staticmethod
    def _object_key(fingerprint: str) -> str:
        return sha256_hex(fingerprint.encode("utf-8"))

    def _object_path(self, object_key: str) -> Path:
        return self._objects / object_key[:2] / object_key[2:4] / f"{object_key}.dat"

    @staticmethod
    def _next_seq(conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT COALESCE(MAX(access_seq), 0) FROM cache_entries").fetchone()
        return int(row[0]) + 1

    def _drop(self, conn: sqlite3.Connection, fingerprint: str, object_key: str) -> None:
        conn.execute("DELETE FROM cache_entries WHERE fingerprint = ?", (fingerprint,))
        self._object_path(object_key).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_to_path(self, fingerprint: str, dest: Path) -> bool:
        """Copy the artifact for *fingerprint* to *dest*.

        Returns ``True`` on a hit.  A miss, a corrupt entry, or any cache
        failure returns ``False``; corrupt entries are dropped.
        """
        dest = Path(dest)
        try:
            with self._exclusive() as conn:
                row = conn.execute(
                    "SELECT object_key, sha256 FROM cache_entries WHERE fingerprint = ?",
                    (fingerprint,),
                ).fetchone()
                if row is None:
                    return False

                object_key, expected_sha = row
                src = self._object_path(object_key)
                if not src.exists():
                    logger.warning("Cache entry %s lost its artifact; dropping.", fingerprint)
                    self._drop(conn, fingerprint, object_key)
                    return False

                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(src, dest)
                if file_sha256_hex(dest) != expected_sha:
                    logger.warning("Cache entry %s failed integrity check; dropping.", fingerprint)
                    self._drop(conn, fingerprint, object_key)
                    dest.unlink(missing_ok=True)
                    return False

                conn.execute(
                    "UPDATE cache_entries SET access_seq = ? WHERE fingerprint = ?",
                    (self._next_seq(conn), fingerprint),
                )
        except (OSError, sqlite3.Error) as exc:
            logger.warning("Cache degraded, treating %s as a miss: %s", fingerprint, exc)
            return False

        logger.debug("Cache hit for %s.", fingerprint)
        return True

    def get(self, fingerprint: str) -> bytes | None:
        """Return the artifact bytes for *fingerprint*, or ``None`` on a miss."""
        scratch = self._base / f"read-{uuid.uuid4().hex}.tmp"
        try:
            if not self.get_to_path(fingerprint, scratch):
                return None
            return scratch.read_bytes()
        finally:
            scratch.unlink(missing_ok=True)

    def contains(self, fingerprint: str) -> bool:
        """Check for an index entry without touching its recency."""
        try:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT 1 FROM cache_entries WHERE fingerprint = ?", (fingerprint,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.warning("Cache degraded: %s", exc)
            return False
        return row is not None

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def put_file(self, fingerprint: str, src: Path) -> bool:
        """Admit the file at *src* under *fingerprint*.

        Evicts least-recently-used entries to make room.  Returns ``False``
        when the artifact is larger than the whole budget or the cache
        could not be written; neither case is an error for the caller.
        """
        src = Path(src)
        tmp = self._base / f"write-{uuid.uuid4().hex}.tmp"
        try:
            size = src.stat().st_size
            if size > self.max_size_bytes:
                logger.info(
                    "Not caching %s: %d bytes exceeds cache budget of %d bytes.",
                    fingerprint, size, self.max_size_bytes,
                )
                return False

            # Copy outside the lock; only the rename happens under it.
            shutil.copyfile(src, tmp)
            digest = file_sha256_hex(tmp)
            object_key = self._object_key(fingerprint)

            with self._exclusive() as conn:
                conn.execute("DELETE FROM cache_entries WHERE fingerprint = ?", (fingerprint,))
                total = int(
                    conn.execute(
                        "SELECT COALESCE(SUM(size_bytes), 0) FROM cache_entries"
                    ).fetchone()[0]
                )
                while total + size > self.max_size_bytes:
                    victim = conn.execute(
                        "SELECT fingerprint, object_key, size_bytes FROM cache_entries "
                        "ORDER BY access_seq ASC LIMIT 1"
                    ).fetchone()
                    if victim is None:
                        break
                    logger.debug("Evicting %s (%d bytes) from cache.", victim[0], victim[2])
                    self._drop(conn, victim[0], victim[1])
                    total -= int(victim[2])

                final = self._object_path(object_key)
                final.parent.mkdir(parents=True, exist_ok=True)
                os.replace(tmp, final)
                conn.execute(
                    "INSERT INTO cache_entries "
                    "(fingerprint, object_key, size_bytes, sha256, created_at, access_seq) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        fingerprint,
                        object_key,
                        size,
                        digest,
                        datetime.now(timezone.utc).isoformat(),
                        self._next_seq(conn),
                    ),
                )
        except (OSError, sqlite3.Error) as exc:
            logger.warning("Cache degraded, not caching %s: %s", fingerprint, exc)
            return False
        finally:
            tmp.unlink(missing_ok=True)

        logger.debug("Cached %s (%d bytes).", fingerprint, size)
        return True

    def put(self, fingerprint: str, data: bytes) -> bool:
        """Admit raw bytes under *fingerprint*.  See ``put_file``."""
        scratch = self._base / f"stage-{uuid.uuid4().hex}.tmp"
        try:
            scratch.write_bytes(data)
            return self.put_file(fingerprint, scratch)
        except OSError as exc:
            logger.warning("Cache degraded, not caching %s: %s", fingerprint, exc)
            return False
        finally:
            scratch.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def stats(self) -> CacheStats:
        conn = self._connect()
        try:
            count, total = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(size_bytes), 0) FROM cache_entries"
            ).fetchone()
        finally:
            conn.close()
        return CacheStats(
            entries=int(count), total_bytes=int(total), max_bytes=self.max_size_bytes
        )

    def fingerprints(self) -> list[str]:
        """Fingerprints ordered from least to most recently used."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT fingerprint FROM cache_entries ORDER BY access_seq ASC"
            ).fetchall()
        finally:
            conn.close()
        return [r[0] for r in rows]

    def clear(self) -> int:
        """Remove every entry.  Returns the number of entries removed."""
        with self._exclusive() as conn:
            rows = conn.execute("SELECT fingerprint, object_key FROM cache_entries").fetchall()
            for fp, object_key in rows:
                self._drop(conn, fp, object_key)
        logger.info("Cleared %d cache entries from %s.", len(rows), self._base)
        return len(rows)
