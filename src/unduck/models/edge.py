from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from unduck.models.directory import VersionStamp


class EdgeCacheEntry(BaseModel):
    """The two edge cache keys, read together."""

    model_config = ConfigDict(frozen=True)

    payload: bytes  # Raw upstream body, served verbatim
    version: VersionStamp
