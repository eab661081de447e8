"""Unit tests for the refresh schedulers in schedulers.py.

Tests the scheduling loops by mocking refresh_edge_cache, current_directory
and asyncio.sleep; the client loop is also run against a real DirectoryLoader
to count network fetches per tick. Each test controls a sequence of outcomes
and verifies the resulting sleep durations and loop behavior.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from unduck.config import Settings
from unduck.loader import DirectoryLoader
from unduck.models.directory import CacheRecord, DirectorySnapshot, VersionStamp
from unduck.schedulers import (
    REFRESH_INITIAL_BACKOFF_SECONDS,
    REFRESH_MAX_BACKOFF_SECONDS,
    REFRESH_MAX_TRANSIENT_BACKOFF_ATTEMPTS,
    run_client_refresh_scheduler,
    run_edge_refresh_scheduler,
)
from unduck.state import AppState


def _edge_state() -> AppState:
    return AppState(settings=Settings(), edge_cache=MagicMock(), http_client=MagicMock())


def _interval(state: AppState) -> float:
    return state.settings.edge.refresh_interval_hours * 3600


def _no_jitter():
    return patch("unduck.schedulers._jittered_delay", side_effect=lambda seconds: float(seconds))


class TestEdgeScheduler:
    async def test_skips_without_edge_components(self) -> None:
        state = AppState(settings=Settings())
        mock_refresh = AsyncMock(return_value="updated")

        with patch("unduck.schedulers.refresh_edge_cache", mock_refresh):
            await run_edge_refresh_scheduler(state)

        mock_refresh.assert_not_awaited()

    async def test_refreshes_before_first_sleep(self) -> None:
        state = _edge_state()
        mock_refresh = AsyncMock(return_value="updated")

        async def fake_sleep(duration: float) -> None:
            mock_refresh.assert_awaited_once()
            raise asyncio.CancelledError

        with (
            patch("unduck.schedulers.refresh_edge_cache", mock_refresh),
            patch("asyncio.sleep", side_effect=fake_sleep),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_edge_refresh_scheduler(state)

    @pytest.mark.parametrize("outcome", ["updated", "unchanged", "semantic_failure"])
    async def test_non_transient_outcomes_sleep_full_interval(self, outcome: str) -> None:
        state = _edge_state()
        sleep_durations: list[float] = []

        async def fake_sleep(duration: float) -> None:
            sleep_durations.append(duration)
            raise asyncio.CancelledError

        with (
            patch("unduck.schedulers.refresh_edge_cache", AsyncMock(return_value=outcome)),
            patch("asyncio.sleep", side_effect=fake_sleep),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_edge_refresh_scheduler(state)

        assert sleep_durations == [_interval(state)]

    async def test_transient_failure_uses_backoff(self) -> None:
        state = _edge_state()
        sleep_durations: list[float] = []

        async def fake_sleep(duration: float) -> None:
            sleep_durations.append(duration)
            if len(sleep_durations) >= 3:
                raise asyncio.CancelledError

        with (
            patch(
                "unduck.schedulers.refresh_edge_cache",
                AsyncMock(return_value="transient_failure"),
            ),
            patch("asyncio.sleep", side_effect=fake_sleep),
            _no_jitter(),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_edge_refresh_scheduler(state)

        assert sleep_durations == [
            REFRESH_INITIAL_BACKOFF_SECONDS,
            REFRESH_INITIAL_BACKOFF_SECONDS * 2,
            REFRESH_INITIAL_BACKOFF_SECONDS * 4,
        ]

    async def test_backoff_capped_at_max(self) -> None:
        state = _edge_state()
        sleep_durations: list[float] = []

        async def fake_sleep(duration: float) -> None:
            sleep_durations.append(duration)
            if len(sleep_durations) >= 7:
                raise asyncio.CancelledError

        with (
            patch(
                "unduck.schedulers.refresh_edge_cache",
                AsyncMock(return_value="transient_failure"),
            ),
            patch("asyncio.sleep", side_effect=fake_sleep),
            _no_jitter(),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_edge_refresh_scheduler(state)

        assert sleep_durations == [60, 120, 240, 480, 960, 1920, REFRESH_MAX_BACKOFF_SECONDS]

    async def test_retry_suspended_after_attempt_budget(self) -> None:
        state = _edge_state()
        sleep_durations: list[float] = []

        async def fake_sleep(duration: float) -> None:
            sleep_durations.append(duration)
            if len(sleep_durations) >= REFRESH_MAX_TRANSIENT_BACKOFF_ATTEMPTS + 1:
                raise asyncio.CancelledError

        with (
            patch(
                "unduck.schedulers.refresh_edge_cache",
                AsyncMock(return_value="transient_failure"),
            ),
            patch("asyncio.sleep", side_effect=fake_sleep),
            _no_jitter(),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_edge_refresh_scheduler(state)

        assert sleep_durations[-2] == _interval(state)
        assert sleep_durations[-1] == REFRESH_INITIAL_BACKOFF_SECONDS

    async def test_success_resets_backoff(self) -> None:
        state = _edge_state()
        sleep_durations: list[float] = []
        outcomes = ["transient_failure", "transient_failure", "unchanged", "transient_failure"]

        async def fake_sleep(duration: float) -> None:
            sleep_durations.append(duration)
            if len(sleep_durations) >= 4:
                raise asyncio.CancelledError

        with (
            patch("unduck.schedulers.refresh_edge_cache", AsyncMock(side_effect=outcomes)),
            patch("asyncio.sleep", side_effect=fake_sleep),
            _no_jitter(),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_edge_refresh_scheduler(state)

        assert sleep_durations == [
            REFRESH_INITIAL_BACKOFF_SECONDS,
            REFRESH_INITIAL_BACKOFF_SECONDS * 2,
            _interval(state),
            REFRESH_INITIAL_BACKOFF_SECONDS,
        ]

    async def test_unexpected_exception_treated_as_semantic(self) -> None:
        state = _edge_state()
        sleep_durations: list[float] = []

        async def fake_sleep(duration: float) -> None:
            sleep_durations.append(duration)
            raise asyncio.CancelledError

        with (
            patch(
                "unduck.schedulers.refresh_edge_cache",
                AsyncMock(side_effect=RuntimeError("unexpected")),
            ),
            patch("asyncio.sleep", side_effect=fake_sleep),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_edge_refresh_scheduler(state)

        assert sleep_durations == [_interval(state)]


class TestClientScheduler:
    async def test_skips_without_loader(self) -> None:
        state = AppState(settings=Settings())
        mock_publish = AsyncMock()

        with patch("unduck.schedulers.current_directory", mock_publish):
            await run_client_refresh_scheduler(state)

        mock_publish.assert_not_awaited()

    async def test_sleeps_before_each_reload(self) -> None:
        state = AppState(settings=Settings(), loader=MagicMock())
        sleep_durations: list[float] = []
        mock_publish = AsyncMock()

        async def fake_sleep(duration: float) -> None:
            sleep_durations.append(duration)
            if len(sleep_durations) >= 3:
                raise asyncio.CancelledError

        with (
            patch("unduck.schedulers.current_directory", mock_publish),
            patch("asyncio.sleep", side_effect=fake_sleep),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_client_refresh_scheduler(state)

        interval = state.settings.client.refresh_interval_hours * 3600
        assert sleep_durations == [interval, interval, interval]
        assert mock_publish.await_count == 2
        mock_publish.assert_awaited_with(state, force=True)

    async def test_errors_do_not_stop_the_loop(self) -> None:
        state = AppState(settings=Settings(), loader=MagicMock())
        sleep_count = 0
        mock_publish = AsyncMock(side_effect=RuntimeError("boom"))

        async def fake_sleep(duration: float) -> None:
            nonlocal sleep_count
            sleep_count += 1
            if sleep_count >= 3:
                raise asyncio.CancelledError

        with (
            patch("unduck.schedulers.current_directory", mock_publish),
            patch("asyncio.sleep", side_effect=fake_sleep),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_client_refresh_scheduler(state)

        assert mock_publish.await_count == 2

    async def test_each_tick_fetches_despite_fresh_store(self, store, snapshot) -> None:
        now = datetime.now(UTC)
        store.write(
            CacheRecord(
                snapshot=DirectorySnapshot(
                    entries=snapshot.entries,
                    stamp=VersionStamp(
                        timestamp=now - timedelta(minutes=5), content_hash="seeded"
                    ),
                )
            )
        )
        body = json.dumps(
            [{"t": "gh", "d": "github.com", "u": "https://github.com/search?q={{{s}}}"}]
        ).encode()
        fetches = 0

        def handler(_request: httpx.Request) -> httpx.Response:
            nonlocal fetches
            fetches += 1
            return httpx.Response(200, content=body)

        sleep_count = 0

        async def fake_sleep(duration: float) -> None:
            nonlocal sleep_count
            sleep_count += 1
            if sleep_count >= 4:
                raise asyncio.CancelledError

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            loader = DirectoryLoader(
                client, store, directory_url="https://edge.example/bangs.js", clock=lambda: now
            )
            state = AppState(settings=Settings(), loader=loader)

            with (
                patch("asyncio.sleep", side_effect=fake_sleep),
                pytest.raises(asyncio.CancelledError),
            ):
                await run_client_refresh_scheduler(state)

        assert fetches == 3
        assert state.directory is not None
        assert state.directory.lookup("gh") is not None
        assert state.directory.lookup("w") is None
