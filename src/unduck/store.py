"""Durable client-side directory store.

The store is a file pair:

- ``directory.json``        entries in upstream wire format
- ``directory-state.json``  ``{timestamp, content_hash, checksum}``

``checksum`` is the SHA-256 of the directory file bytes. Each file is replaced
atomically, and a reader only accepts the pair when the checksum matches, so a
crash between the two replaces leaves a pair that reads as absent instead of
a mismatched snapshot/stamp.
"""

from __future__ import annotations

import hashlib
import json
import os
import sys
from contextlib import suppress
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from unduck.directory import serialise_entries
from unduck.errors import ErrorCode
from unduck.models.directory import BangEntry, CacheRecord, DirectorySnapshot, VersionStamp

if TYPE_CHECKING:
    from pathlib import Path

log = structlog.get_logger()

DEFAULT_TTL_HOURS = 24


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class PersistentDirectoryCache:
    """File-pair store for the last fetched directory snapshot."""

    def __init__(self, root: Path, *, ttl_hours: float = DEFAULT_TTL_HOURS) -> None:
        self.directory_path = root / "directory.json"
        self.state_path = root / "directory-state.json"
        self.ttl = timedelta(hours=ttl_hours)

    def read(self) -> CacheRecord | None:
        """Return the stored record, or None if missing or corrupt. Never raises."""
        if not self.directory_path.is_file() or not self.state_path.is_file():
            log.debug(
                "directory_store_missing",
                path_directory=str(self.directory_path),
                path_state=str(self.state_path),
            )
            return None

        try:
            directory_bytes = self.directory_path.read_bytes()
            state_data = json.loads(self.state_path.read_text(encoding="utf-8"))

            expected_checksum = state_data["checksum"]
            if not isinstance(expected_checksum, str) or not expected_checksum.startswith(
                "sha256:"
            ):
                raise ValueError("directory-state.json 'checksum' must be 'sha256:<hex>'")

            if _sha256_prefixed(directory_bytes) != expected_checksum:
                log.warning(
                    "directory_store_corrupt",
                    code=ErrorCode.STORE_CORRUPT,
                    reason="checksum_mismatch",
                    path_directory=str(self.directory_path),
                )
                return None

            raw_entries = json.loads(directory_bytes.decode("utf-8"))
            entries = tuple(BangEntry.model_validate(entry) for entry in raw_entries)
            stamp = VersionStamp(
                timestamp=datetime.fromisoformat(state_data["timestamp"]),
                content_hash=state_data["content_hash"],
            )
            return CacheRecord(snapshot=DirectorySnapshot(entries=entries, stamp=stamp))
        except Exception:
            log.warning(
                "directory_store_corrupt",
                code=ErrorCode.STORE_CORRUPT,
                reason="invalid_content",
                path_directory=str(self.directory_path),
                path_state=str(self.state_path),
                exc_info=True,
            )
            return None

    def write(self, record: CacheRecord) -> None:
        """Replace the stored pair with ``record``. Raises OSError on failure."""
        directory_bytes = serialise_entries(record.snapshot.entries)
        state_bytes = json.dumps(
            {
                "timestamp": record.stamp.timestamp.isoformat(),
                "content_hash": record.stamp.content_hash,
                "checksum": _sha256_prefixed(directory_bytes),
            }
        ).encode("utf-8")

        self.directory_path.parent.mkdir(parents=True, exist_ok=True)

        directory_tmp = self.directory_path.with_suffix(self.directory_path.suffix + ".tmp")
        state_tmp = self.state_path.with_suffix(self.state_path.suffix + ".tmp")

        try:
            _write_bytes_fsync(directory_tmp, directory_bytes)
            _write_bytes_fsync(state_tmp, state_bytes)

            os.replace(directory_tmp, self.directory_path)
            os.replace(state_tmp, self.state_path)
            _fsync_directory(self.directory_path.parent)
        finally:
            for tmp_path in (directory_tmp, state_tmp):
                with suppress(OSError):
                    tmp_path.unlink(missing_ok=True)

        log.debug(
            "directory_store_written",
            entries=len(record.snapshot.entries),
            content_hash=record.stamp.content_hash,
        )

    def is_fresh(self, record: CacheRecord, *, now: datetime | None = None) -> bool:
        """True while the record is younger than the TTL."""
        current = now if now is not None else _utcnow()
        return current - record.stamp.timestamp < self.ttl


def _sha256_prefixed(payload: bytes) -> str:
    return "sha256:" + hashlib.sha256(payload).hexdigest()


def _write_bytes_fsync(path: Path, data: bytes) -> None:
    with path.open("wb") as file_obj:
        file_obj.write(data)
        file_obj.flush()
        os.fsync(file_obj.fileno())


def _fsync_directory(path: Path) -> None:
    if sys.platform == "win32":
        return  # Windows does not support fsync on directory handles
    directory_fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(directory_fd)
    finally:
        os.close(directory_fd)
