"""Edge caching proxy in front of the upstream bang directory.

``GET /bangs.js`` serves the cached payload with validator headers, filling
the cache from upstream on a miss. Every other path is a static asset lookup.

Two concurrent misses may both fetch upstream and both write the cache. The
writes describe the same (or newer) content, so the last one to land wins
and nothing needs a lock.
"""

from __future__ import annotations

import mimetypes
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from unduck.errors import UnduckError
from unduck.fetcher import HASH_HEADER, TIMESTAMP_HEADER, fetch_payload
from unduck.models.directory import VersionStamp
from unduck.payload import content_hash

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx
    from starlette.requests import Request

    from unduck.protocols import EdgeCacheProtocol
    from unduck.state import AppState

log = structlog.get_logger()

PAYLOAD_MEDIA_TYPE = "application/javascript; charset=utf-8"
INDEX_DOCUMENT = "/index.html"


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def payload_headers(version: VersionStamp, max_age_seconds: int) -> dict[str, str]:
    """Cacheability and validation headers for the directory payload."""
    return {
        "Content-Type": PAYLOAD_MEDIA_TYPE,
        "Cache-Control": f"public, max-age={max_age_seconds}",
        "ETag": f'"{version.content_hash}"',
        TIMESTAMP_HEADER: version.timestamp.isoformat(),
        HASH_HEADER: version.content_hash,
    }


def _etag_matches(if_none_match: str | None, content_hash_: str) -> bool:
    if not if_none_match:
        return False
    candidates = {tag.strip().removeprefix("W/").strip('"') for tag in if_none_match.split(",")}
    return "*" in candidates or content_hash_ in candidates


def normalise_asset_path(path: str) -> str:
    """Map a request path to an asset key: ``""`` and ``/`` become the index."""
    path = "/" + path.lstrip("/")
    return INDEX_DOCUMENT if path == "/" else path


class AssetSource:
    """Pass-through static files rooted at one directory."""

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()

    def read(self, path: str) -> bytes | None:
        """Return the file bytes for an asset path, or None if absent.

        Paths escaping the asset root are treated as absent.
        """
        candidate = (self.root / path.lstrip("/")).resolve()
        if not candidate.is_relative_to(self.root) or not candidate.is_file():
            return None
        try:
            return candidate.read_bytes()
        except OSError:
            log.warning("asset_read_error", path=path, exc_info=True)
            return None


class EdgeCacheProxy:
    """Serves the directory payload and static assets from the edge cache."""

    def __init__(
        self,
        cache: EdgeCacheProtocol,
        client: httpx.AsyncClient,
        *,
        upstream_url: str,
        assets: AssetSource,
        max_age_seconds: int = 86400,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._cache = cache
        self._client = client
        self._upstream_url = upstream_url
        self._assets = assets
        self._max_age_seconds = max_age_seconds
        self._clock = clock

    async def serve_payload(self, if_none_match: str | None = None) -> Response:
        entry = await self._cache.get_entry()

        if entry is not None:
            log.debug("edge_cache_hit", content_hash=entry.version.content_hash)
            payload, version = entry.payload, entry.version
        else:
            log.info("edge_cache_miss", upstream_url=self._upstream_url)
            try:
                fetched = await fetch_payload(self._client, self._upstream_url)
            except UnduckError as exc:
                return JSONResponse(
                    exc.to_dict(),
                    status_code=exc.status_code or 502,
                    headers={"Cache-Control": "no-store"},
                )

            payload = fetched.body
            version = VersionStamp(timestamp=self._clock(), content_hash=content_hash(payload))
            await self._cache.set_entry(payload, version)
            log.info("edge_cache_filled", content_hash=version.content_hash, size=len(payload))

        headers = payload_headers(version, self._max_age_seconds)
        if _etag_matches(if_none_match, version.content_hash):
            del headers["Content-Type"]
            return Response(status_code=304, headers=headers)
        return Response(payload, status_code=200, headers=headers)

    async def serve_asset(self, path: str) -> Response:
        key = normalise_asset_path(path)
        media_type = mimetypes.guess_type(key)[0] or "text/plain"

        content = await self._cache.get_asset(key)
        if content is None:
            content = self._assets.read(key)
            if content is None:
                return Response("Not found", status_code=404, media_type="text/plain")
            await self._cache.set_asset(key, content)
            log.debug("edge_asset_cached", path=key, size=len(content))

        return Response(content, status_code=200, media_type=media_type)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _proxy(request: Request) -> EdgeCacheProxy:
    state: AppState = request.app.state.app_state
    if state.proxy is None:
        raise RuntimeError("Edge components (cache, proxy) not initialized")
    return state.proxy


async def bangs_endpoint(request: Request) -> Response:
    return await _proxy(request).serve_payload(request.headers.get("if-none-match"))


async def asset_endpoint(request: Request) -> Response:
    return await _proxy(request).serve_asset(request.path_params.get("path", ""))


EDGE_ROUTES = [
    Route("/bangs.js", bangs_endpoint, methods=["GET", "HEAD"]),
    Route("/{path:path}", asset_endpoint, methods=["GET", "HEAD"]),
]
