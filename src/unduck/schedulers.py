"""Background scheduler coroutines for edge refresh and client directory upkeep."""

from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING

import structlog

from unduck.refresher import SUCCESS_OUTCOMES, refresh_edge_cache
from unduck.search import current_directory

if TYPE_CHECKING:
    from unduck.state import AppState

log = structlog.get_logger()

REFRESH_INITIAL_BACKOFF_SECONDS = 60
REFRESH_MAX_BACKOFF_SECONDS = 60 * 60
REFRESH_MAX_TRANSIENT_BACKOFF_ATTEMPTS = 8


def _jittered_delay(base_seconds: int) -> float:
    return base_seconds * random.uniform(0.8, 1.2)


async def run_edge_refresh_scheduler(state: AppState) -> None:
    """Refresh the edge cache now and then on the configured interval.

    Transient failures retry with jittered exponential backoff until the
    attempt budget is spent, then wait a full interval.
    """
    if state.edge_cache is None or state.http_client is None:
        log.warning("edge_refresh_scheduler_skipped", reason="edge_not_initialized")
        return

    backoff_seconds = REFRESH_INITIAL_BACKOFF_SECONDS
    consecutive_transient_failures = 0

    while True:
        try:
            outcome = await refresh_edge_cache(
                state.edge_cache,
                state.http_client,
                upstream_url=state.settings.upstream.url,
                script_global=state.settings.upstream.script_global,
            )
        except Exception:
            log.warning("edge_refresh_scheduler_error", exc_info=True)
            outcome = "semantic_failure"

        interval_seconds = state.settings.edge.refresh_interval_hours * 3600

        if outcome in SUCCESS_OUTCOMES:
            consecutive_transient_failures = 0
            backoff_seconds = REFRESH_INITIAL_BACKOFF_SECONDS
            await asyncio.sleep(interval_seconds)
            continue

        if outcome == "transient_failure":
            consecutive_transient_failures += 1
            if consecutive_transient_failures >= REFRESH_MAX_TRANSIENT_BACKOFF_ATTEMPTS:
                log.warning(
                    "edge_refresh_transient_retry_suspended",
                    consecutive_failures=consecutive_transient_failures,
                    cooldown_seconds=interval_seconds,
                )
                consecutive_transient_failures = 0
                backoff_seconds = REFRESH_INITIAL_BACKOFF_SECONDS
                await asyncio.sleep(interval_seconds)
                continue

            await asyncio.sleep(_jittered_delay(backoff_seconds))
            backoff_seconds = min(backoff_seconds * 2, REFRESH_MAX_BACKOFF_SECONDS)
            continue

        # semantic failure
        consecutive_transient_failures = 0
        backoff_seconds = REFRESH_INITIAL_BACKOFF_SECONDS
        await asyncio.sleep(interval_seconds)


async def run_client_refresh_scheduler(state: AppState) -> None:
    """Re-fetch and republish the directory on every tick while the frontend runs.

    Each tick is a forced load, so it hits the network regardless of TTL and
    shares the single-flight gate with foreground requests.
    """
    if state.loader is None:
        log.warning("client_refresh_scheduler_skipped", reason="loader_not_initialized")
        return

    interval_seconds = state.settings.client.refresh_interval_hours * 3600

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await current_directory(state, force=True)
        except Exception:
            log.warning("client_refresh_scheduler_error", exc_info=True)
