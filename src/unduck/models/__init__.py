from __future__ import annotations

from unduck.models.directory import (
    PLACEHOLDER,
    BangEntry,
    CacheRecord,
    DirectorySnapshot,
    VersionStamp,
)
from unduck.models.edge import EdgeCacheEntry
from unduck.models.resolution import Resolution

__all__ = [
    # directory
    "PLACEHOLDER",
    "BangEntry",
    "VersionStamp",
    "DirectorySnapshot",
    "CacheRecord",
    # edge
    "EdgeCacheEntry",
    # resolution
    "Resolution",
]
