"""Client-side directory loading: fresh cache, single-flight fetch, fallback.

Order of preference for a snapshot:
  1. a fresh record (in-memory memo, then the persistent store), no network
  2. the pending fetch, if one is already in flight, no second fetch
  3. a new fetch through the edge proxy, written back to the store
  4. on fetch/parse failure: any stored record regardless of age
  5. the embedded directory

Failures in 3 are logged and never reach the caller.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from unduck.directory import embedded_snapshot
from unduck.errors import ErrorCode, UnduckError
from unduck.fetcher import fetch_payload
from unduck.models.directory import CacheRecord, DirectorySnapshot, VersionStamp
from unduck.payload import content_hash, parse_directory_payload

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from unduck.protocols import DirectoryStoreProtocol

log = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class DirectoryLoader:
    """Produces directory snapshots with at most one concurrent fetch."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: DirectoryStoreProtocol,
        *,
        directory_url: str,
        script_global: str = "bangs",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._store = store
        self._directory_url = directory_url
        self._script_global = script_global
        self._clock = clock
        self._current: CacheRecord | None = None
        self._in_flight: asyncio.Task[DirectorySnapshot] | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    async def load(self, *, force: bool = False) -> DirectorySnapshot:
        """Return the current snapshot, fetching only when nothing fresh is cached.

        ``force`` skips the freshness check but still joins a pending fetch.
        """
        if not force:
            record = self._fresh_record()
            if record is not None:
                return record.snapshot

        if self._in_flight is None:
            self._in_flight = asyncio.create_task(self._fetch_and_store())
        else:
            log.debug("directory_load_joined_in_flight")

        # Shielded so a cancelled waiter does not cancel the shared fetch.
        return await asyncio.shield(self._in_flight)

    def _fresh_record(self) -> CacheRecord | None:
        now = self._clock()
        if self._current is not None and self._store.is_fresh(self._current, now=now):
            return self._current

        record = self._store.read()
        if record is not None and self._store.is_fresh(record, now=now):
            self._current = record
            log.debug("directory_cache_hit", content_hash=record.stamp.content_hash)
            return record
        return None

    async def _fetch_and_store(self) -> DirectorySnapshot:
        try:
            return await self._fetch()
        except UnduckError as exc:
            log.warning(
                "directory_fetch_failed",
                code=exc.code,
                message=exc.message,
                recoverable=exc.recoverable,
            )
            return self._fallback()
        finally:
            self._in_flight = None

    async def _fetch(self) -> DirectorySnapshot:
        fetched = await fetch_payload(self._client, self._directory_url)
        entries = parse_directory_payload(fetched.body, global_name=self._script_global)

        snapshot = DirectorySnapshot(
            entries=tuple(entries),
            stamp=VersionStamp(
                timestamp=self._clock(),
                content_hash=fetched.content_hash or content_hash(fetched.body),
            ),
        )
        record = CacheRecord(snapshot=snapshot)
        self._current = record

        try:
            self._store.write(record)
        except OSError as exc:
            log.warning("directory_store_write_failed", error=str(exc), exc_info=True)

        log.info(
            "directory_loaded",
            source="network",
            entries=len(snapshot.entries),
            content_hash=snapshot.stamp.content_hash,
        )
        return snapshot

    def _fallback(self) -> DirectorySnapshot:
        record = self._current if self._current is not None else self._store.read()
        if record is not None:
            log.info(
                "directory_loaded",
                source="stale_cache",
                entries=len(record.snapshot.entries),
                fetched_at=record.stamp.timestamp.isoformat(),
            )
            return record.snapshot

        snapshot = embedded_snapshot()
        if not snapshot.entries:
            raise UnduckError(
                code=ErrorCode.NO_DIRECTORY_AVAILABLE,
                message="No directory available from network, store, or embedded default",
                suggestion="Check the directory URL and the client store directory.",
                recoverable=False,
            )
        log.warning("directory_loaded", source="embedded", entries=len(snapshot.entries))
        return snapshot
