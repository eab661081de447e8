"""Change-aware refresh of the edge cache.

The served payload and its hash change only when upstream content changes.
An unchanged payload only moves the version timestamp forward, so the ETag
seen by clients stays stable.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

import structlog

from unduck.errors import UnduckError
from unduck.fetcher import fetch_payload
from unduck.models.directory import VersionStamp
from unduck.payload import content_hash, parse_directory_payload

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from unduck.protocols import EdgeCacheProtocol

log = structlog.get_logger()

RefreshOutcome = Literal["updated", "unchanged", "transient_failure", "semantic_failure"]

SUCCESS_OUTCOMES: frozenset[str] = frozenset({"updated", "unchanged"})


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


async def refresh_edge_cache(
    cache: EdgeCacheProtocol,
    client: httpx.AsyncClient,
    *,
    upstream_url: str,
    script_global: str = "bangs",
    clock: Callable[[], datetime] = _utcnow,
) -> RefreshOutcome:
    """Fetch upstream once and update the edge cache if the content changed.

    Safe to re-run: a failed or interrupted run leaves the previous entry
    authoritative.
    """
    try:
        fetched = await fetch_payload(client, upstream_url)
    except UnduckError as exc:
        outcome: RefreshOutcome = "transient_failure" if exc.recoverable else "semantic_failure"
        log.warning("edge_refresh_failed", outcome=outcome, message=exc.message)
        return outcome

    try:
        entries = parse_directory_payload(fetched.body, global_name=script_global)
    except UnduckError as exc:
        log.warning("edge_refresh_failed", outcome="semantic_failure", message=exc.message)
        return "semantic_failure"

    fresh_hash = content_hash(fetched.body)
    version = VersionStamp(timestamp=clock(), content_hash=fresh_hash)

    previous = await cache.get_entry()
    if previous is not None and previous.version.content_hash == fresh_hash:
        await cache.touch_version(version)
        log.info("edge_refresh_unchanged", content_hash=fresh_hash)
        return "unchanged"

    await cache.set_entry(fetched.body, version)
    log.info(
        "edge_refresh_updated",
        content_hash=fresh_hash,
        previous_hash=previous.version.content_hash if previous is not None else None,
        entries=len(entries),
    )
    return "updated"
