"""Protocol interfaces for swappable components.

The loader, proxy and refresher reference these protocols, not the concrete
implementations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from datetime import datetime

    from unduck.models.directory import CacheRecord, VersionStamp
    from unduck.models.edge import EdgeCacheEntry


class DirectoryStoreProtocol(Protocol):
    """Interface for the durable client-side directory store."""

    def read(self) -> CacheRecord | None: ...

    def write(self, record: CacheRecord) -> None: ...

    def is_fresh(self, record: CacheRecord, *, now: datetime | None = None) -> bool: ...


class EdgeCacheProtocol(Protocol):
    """Interface for the edge proxy's durable cache."""

    async def get_entry(self) -> EdgeCacheEntry | None: ...

    async def set_entry(self, payload: bytes, version: VersionStamp) -> None: ...

    async def touch_version(self, version: VersionStamp) -> None: ...

    async def get_asset(self, path: str) -> bytes | None: ...

    async def set_asset(self, path: str, content: bytes) -> None: ...
