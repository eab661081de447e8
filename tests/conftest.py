"""Shared test fixtures for the unduck test suite."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite
import pytest
import structlog

from unduck.directory import DirectoryModel, build_directory
from unduck.edge_cache import EdgeCache
from unduck.models.directory import BangEntry, DirectorySnapshot, VersionStamp
from unduck.store import PersistentDirectoryCache

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _reset_structlog() -> None:
    """Undo any structlog configuration a test applied (e.g. via the CLI),
    so later tests don't log to a captured stream that pytest has closed."""
    yield
    structlog.reset_defaults()


@pytest.fixture()
def sample_entries() -> list[BangEntry]:
    """Minimal directory entries for testing resolution logic."""
    return [
        BangEntry(
            trigger="g",
            domain="www.google.com",
            url_template="https://www.google.com/search?q={{{s}}}",
            display_name="Google",
        ),
        BangEntry(
            trigger="gh",
            domain="github.com",
            url_template="https://github.com/search?q={{{s}}}",
            category="Tech",
            subcategory="Programming",
            rank=250,
            display_name="GitHub",
        ),
        BangEntry(
            trigger="ghr",
            domain="github.com",
            url_template="https://github.com/{{{s}}}",
            display_name="GitHub Repo",
        ),
        BangEntry(
            trigger="w",
            domain="en.wikipedia.org",
            url_template="https://en.wikipedia.org/wiki/Special:Search?search={{{s}}}",
            display_name="Wikipedia",
        ),
    ]


@pytest.fixture()
def snapshot(sample_entries: list[BangEntry]) -> DirectorySnapshot:
    return DirectorySnapshot(
        entries=tuple(sample_entries),
        stamp=VersionStamp(timestamp=FIXED_NOW, content_hash="abc123"),
    )


@pytest.fixture()
def directory(snapshot: DirectorySnapshot) -> DirectoryModel:
    """Pre-built directory over the sample snapshot, default trigger 'g'."""
    return build_directory(snapshot, default_trigger="g")


@pytest.fixture()
def store(tmp_path: Path) -> PersistentDirectoryCache:
    return PersistentDirectoryCache(tmp_path / "directory", ttl_hours=24)


@pytest.fixture()
async def edge_cache() -> AsyncGenerator[EdgeCache, None]:
    """EdgeCache over an in-memory SQLite database."""
    async with aiosqlite.connect(":memory:") as db:
        cache = EdgeCache(db)
        await cache.init_db()
        yield cache
