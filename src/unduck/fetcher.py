"""Upstream HTTP access for the directory payload.

Both the edge proxy (fetching the upstream source) and the client loader
(fetching the edge endpoint) go through ``fetch_payload``. The httpx client is
injected; the lifespan owns its lifecycle.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog

from unduck import __version__
from unduck.errors import ErrorCode, UnduckError

log = structlog.get_logger()

HASH_HEADER = "X-Bangs-Hash"
TIMESTAMP_HEADER = "X-Bangs-Timestamp"


@dataclass(frozen=True)
class FetchedPayload:
    """Raw directory body plus any version metadata the server attached."""

    body: bytes
    status_code: int
    content_hash: str | None = None
    timestamp: str | None = None


def build_http_client(timeout_seconds: float = 30.0) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(timeout_seconds, connect=5.0),
        headers={"User-Agent": f"unduck/{__version__}"},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in {408, 429}


async def fetch_payload(client: httpx.AsyncClient, url: str) -> FetchedPayload:
    """GET a directory payload.

    Raises UnduckError(UPSTREAM_UNAVAILABLE) on network errors and non-2xx
    responses. ``status_code`` is set when a response was received;
    ``recoverable`` marks transient failures (network, 5xx, 408, 429).
    """
    try:
        response = await client.get(url)
    except httpx.HTTPError as exc:
        log.warning("upstream_fetch_failed", reason="network_error", url=url, error=str(exc))
        raise UnduckError(
            code=ErrorCode.UPSTREAM_UNAVAILABLE,
            message=f"Network error fetching {url}: {exc}",
            suggestion="The directory source may be temporarily unavailable.",
            recoverable=True,
        ) from exc

    if not response.is_success:
        log.warning(
            "upstream_fetch_failed",
            reason="http_status",
            url=url,
            status_code=response.status_code,
        )
        raise UnduckError(
            code=ErrorCode.UPSTREAM_UNAVAILABLE,
            message=f"HTTP {response.status_code} fetching {url}",
            suggestion="The directory source may be temporarily unavailable.",
            recoverable=is_transient_status(response.status_code),
            status_code=response.status_code,
        )

    log.info(
        "fetch_complete",
        url=url,
        status_code=response.status_code,
        content_length=len(response.content),
    )
    return FetchedPayload(
        body=response.content,
        status_code=response.status_code,
        content_hash=response.headers.get(HASH_HEADER) or None,
        timestamp=response.headers.get(TIMESTAMP_HEADER) or None,
    )
