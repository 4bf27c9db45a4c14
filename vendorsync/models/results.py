"""Fetch result model."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

from vendorsync.models.lock import ResolvedVersion


class FetchResult(BaseModel):
    """What a fetcher produced for one content entry.

    ``staging_path`` is owned by the fetch that produced it; the orchestrator
    filters it and moves the result into place.
    """

    model_config = ConfigDict(frozen=True)

    staging_path: Path
    resolved: ResolvedVersion
    cache_hit: bool = False
