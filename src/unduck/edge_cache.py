"""SQLite edge cache for the directory payload and its version.

Two fixed keys hold the directory: ``payload`` (raw upstream body) and
``version`` (JSON VersionStamp). Static assets are cached under
``asset:<path>``.

All cache operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures return ``None`` (treated as cache miss by callers),
write failures are logged and ignored. Infrastructure errors never cross the
EdgeCache class boundary.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

import aiosqlite
import structlog
from pydantic import ValidationError

from unduck.models.directory import VersionStamp
from unduck.models.edge import EdgeCacheEntry

log = structlog.get_logger()

PAYLOAD_KEY = "payload"
VERSION_KEY = "version"
_ASSET_PREFIX = "asset:"

_CREATE_EDGE_TABLE = """
CREATE TABLE IF NOT EXISTS edge_cache (
    key        TEXT PRIMARY KEY,
    value      BLOB NOT NULL,
    updated_at TEXT NOT NULL
)
"""

_UPSERT = "INSERT OR REPLACE INTO edge_cache (key, value, updated_at) VALUES (?, ?, ?)"


def _encode_version(version: VersionStamp) -> bytes:
    return version.model_dump_json().encode("utf-8")


def _decode_version(raw: bytes | str) -> VersionStamp:
    return VersionStamp.model_validate(json.loads(raw))


class EdgeCache:
    """SQLite-backed edge cache implementing EdgeCacheProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_EDGE_TABLE)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Directory payload
    # ------------------------------------------------------------------

    async def get_entry(self) -> EdgeCacheEntry | None:
        """Read payload and version together. ``None`` unless both are present."""
        try:
            cursor = await self._db.execute(
                "SELECT key, value FROM edge_cache WHERE key IN (?, ?)",
                (PAYLOAD_KEY, VERSION_KEY),
            )
            rows = dict(await cursor.fetchall())
            if PAYLOAD_KEY not in rows or VERSION_KEY not in rows:
                return None
            return EdgeCacheEntry(
                payload=bytes(rows[PAYLOAD_KEY]),
                version=_decode_version(rows[VERSION_KEY]),
            )
        except aiosqlite.Error:
            log.warning("edge_cache_read_error", key=PAYLOAD_KEY, exc_info=True)
            return None
        except (ValueError, ValidationError):
            log.warning("edge_cache_version_invalid", key=VERSION_KEY, exc_info=True)
            return None

    async def set_entry(self, payload: bytes, version: VersionStamp) -> None:
        """Write payload and version in one transaction. Non-fatal on failure."""
        try:
            now = datetime.now(UTC).isoformat()
            await self._db.executemany(
                _UPSERT,
                [
                    (PAYLOAD_KEY, payload, now),
                    (VERSION_KEY, _encode_version(version), now),
                ],
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("edge_cache_write_error", key=PAYLOAD_KEY, exc_info=True)

    async def touch_version(self, version: VersionStamp) -> None:
        """Rewrite only the version record; the payload is left untouched."""
        try:
            await self._db.execute(
                _UPSERT,
                (VERSION_KEY, _encode_version(version), datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("edge_cache_write_error", key=VERSION_KEY, exc_info=True)

    # ------------------------------------------------------------------
    # Static assets
    # ------------------------------------------------------------------

    async def get_asset(self, path: str) -> bytes | None:
        try:
            cursor = await self._db.execute(
                "SELECT value FROM edge_cache WHERE key = ?", (_ASSET_PREFIX + path,)
            )
            row = await cursor.fetchone()
            return None if row is None else bytes(row[0])
        except aiosqlite.Error:
            log.warning("edge_cache_read_error", key=_ASSET_PREFIX + path, exc_info=True)
            return None

    async def set_asset(self, path: str, content: bytes) -> None:
        try:
            await self._db.execute(
                _UPSERT, (_ASSET_PREFIX + path, content, datetime.now(UTC).isoformat())
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("edge_cache_write_error", key=_ASSET_PREFIX + path, exc_info=True)
