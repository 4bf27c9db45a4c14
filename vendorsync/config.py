"""Runtime configuration — env-driven, shared across invocations.

Centralized config using pydantic-settings for environment variable support.
Reads from a .env file and VENDORSYNC_* environment variables.  The cache
location and budget live here (not in the manifest) so that independent
invocations can share and bound the same cache.
"""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Decimal (k, M, G, T) and binary (Ki, Mi, Gi, Ti) suffixes.
_SIZE_SUFFIXES: dict[str, int] = {
    "": 1,
    "k": 10**3,
    "m": 10**6,
    "g": 10**9,
    "t": 10**12,
    "ki": 2**10,
    "mi": 2**20,
    "gi": 2**30,
    "ti": 2**40,
}

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kmgt]i?)?b?\s*$", re.IGNORECASE)


def parse_size(value: str | int) -> int:
    """Parse a human-readable size (``10M``, ``1Gi``, ``512``) into bytes.

    Raises ``ValueError`` for anything that is not a non-negative size.
    """
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Size must be non-negative, got {value}")
        return value

    match = _SIZE_RE.match(value)
    if not match:
        raise ValueError(f"Invalid size {value!r}; expected e.g. '10M', '1Gi', '2048'")

    number, suffix = match.groups()
    multiplier = _SIZE_SUFFIXES[(suffix or "").lower()]
    return int(float(number) * multiplier)


class CacheConfig(BaseModel):
    """Explicit cache configuration handed to ``ContentCache``.

    Tests construct this directly to inject arbitrary budgets.
    """

    model_config = ConfigDict(frozen=True)

    directory: Path
    max_size_bytes: int


class SyncSettings(BaseSettings):
    """Process configuration with environment variable overrides.

    Examples
    --------
    Share a bounded cache between invocations::

        export VENDORSYNC_CACHE_DIR=/var/cache/vendorsync
        export VENDORSYNC_CACHE_MAX_SIZE=10M
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="VENDORSYNC_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "WARNING"

    # Content cache, disabled when cache_dir is unset
    cache_dir: Path | None = None
    cache_max_size: int = 10**9

    # Network and external tools
    http_timeout_seconds: float = 60.0
    git_binary: str = "git"
    hg_binary: str = "hg"
    helm_binary: str = "helm"

    # Scratch area for staging, relative to the working directory
    staging_dir_name: str = ".vendorsync-tmp"

    @field_validator("cache_max_size", mode="before")
    @classmethod
    def _parse_cache_max_size(cls, value: str | int) -> int:
        return parse_size(value)

    @property
    def cache_enabled(self) -> bool:
        """Whether a shared content cache is configured."""
        return self.cache_dir is not None

    def cache_config(self) -> CacheConfig | None:
        """Build the explicit ``CacheConfig``, or ``None`` when caching is off."""
        if self.cache_dir is None:
            return None
        return CacheConfig(
            directory=self.cache_dir,
            max_size_bytes=self.cache_max_size,
        )
