"""Tests for the sync orchestrator.

Covers the three trigger guards, throttle arming, lock handling, failure
notices, teardown suppression and the debounced visibility trigger.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from inbox_triage.config_schema import SyncConfig
from inbox_triage.core.logging import get_correlation_id
from inbox_triage.core.notices import Notice, NoticeBuffer
from inbox_triage.engine.cache import FETCH_FAILED_MESSAGE, ThreadCache
from inbox_triage.engine.sync import FAILED_MESSAGE, LOCKED_MESSAGE, SyncOrchestrator
from inbox_triage.remote.protocol import SyncResponse, SyncSummary

COMPLETED = SyncResponse(summary=SyncSummary(threads_synced=3, messages_synced=9))
LOCKED = SyncResponse(
    skipped=True,
    reason="locked",
    locked_until="2026-03-02T09:05:00Z",
    locked_by="other-tab",
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def remote() -> MagicMock:
    mock = MagicMock()
    mock.run_sync = AsyncMock(return_value=COMPLETED)
    return mock


@pytest.fixture
def cache() -> MagicMock:
    mock = MagicMock()
    mock.invalidate = AsyncMock(return_value=[])
    mock.is_stale.return_value = True
    mock.age.return_value = 0.0
    return mock


@pytest.fixture
def orchestrator(
    remote: MagicMock, cache: MagicMock, notices: NoticeBuffer, clock
) -> SyncOrchestrator:
    config = SyncConfig(throttle_seconds=60, visibility_debounce_seconds=0.01)
    return SyncOrchestrator(remote, cache, notices, config, clock=clock)


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


class TestGuards:
    async def test_unmounted_trigger_is_skipped(
        self, orchestrator: SyncOrchestrator, remote: MagicMock
    ) -> None:
        attempt = await orchestrator.retry()
        assert attempt.outcome == "skipped"
        assert attempt.skip_reason == "unmounted"
        remote.run_sync.assert_not_awaited()

    async def test_concurrent_triggers_issue_one_call(
        self, orchestrator: SyncOrchestrator, remote: MagicMock
    ) -> None:
        release = asyncio.Event()

        async def slow_sync() -> SyncResponse:
            await release.wait()
            return COMPLETED

        remote.run_sync.side_effect = slow_sync
        mount = asyncio.create_task(orchestrator.mount())
        await asyncio.sleep(0)
        assert orchestrator.state == "in_flight"

        retry = await orchestrator.retry()
        release.set()
        first = await mount

        assert retry.outcome == "skipped"
        assert retry.skip_reason == "in_flight"
        assert first.outcome == "completed"
        assert remote.run_sync.await_count == 1
        assert orchestrator.state == "idle"

    async def test_throttle_window(
        self, orchestrator: SyncOrchestrator, remote: MagicMock, clock
    ) -> None:
        await orchestrator.mount()

        clock.advance(30)
        throttled = await orchestrator.retry()
        assert throttled.skip_reason == "throttled"
        assert orchestrator.throttle_remaining == 30

        clock.advance(31)
        again = await orchestrator.retry()
        assert again.outcome == "completed"
        assert remote.run_sync.await_count == 2


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class TestOutcomes:
    async def test_success_refreshes_cache(
        self, orchestrator: SyncOrchestrator, cache: MagicMock, notices: NoticeBuffer
    ) -> None:
        attempt = await orchestrator.mount()

        assert attempt.outcome == "completed"
        assert attempt.summary == SyncSummary(3, 9)
        assert attempt.cycle_id
        cache.invalidate.assert_awaited_once()
        assert orchestrator.last_success_at is not None
        assert notices.notices == []
        assert get_correlation_id() is None

    async def test_locked_does_not_arm_throttle(
        self,
        orchestrator: SyncOrchestrator,
        remote: MagicMock,
        cache: MagicMock,
        notices: NoticeBuffer,
    ) -> None:
        remote.run_sync.return_value = LOCKED

        attempt = await orchestrator.mount()

        assert attempt.outcome == "locked"
        assert attempt.locked_until == "2026-03-02T09:05:00Z"
        assert notices.notices == [Notice("info", LOCKED_MESSAGE)]
        cache.invalidate.assert_not_awaited()
        assert orchestrator.throttle_remaining == 0

        remote.run_sync.return_value = COMPLETED
        assert (await orchestrator.retry()).outcome == "completed"

    async def test_failure_notice_and_idle(
        self,
        orchestrator: SyncOrchestrator,
        remote: MagicMock,
        notices: NoticeBuffer,
    ) -> None:
        remote.run_sync.side_effect = RuntimeError("network down")

        attempt = await orchestrator.mount()

        assert attempt.outcome == "failed"
        assert attempt.error == "network down"
        assert notices.notices == [Notice("error", FAILED_MESSAGE)]
        assert orchestrator.state == "idle"
        assert orchestrator.throttle_remaining == 0

    async def test_non_lock_skip_counts_as_completed(
        self, orchestrator: SyncOrchestrator, remote: MagicMock, notices: NoticeBuffer
    ) -> None:
        remote.run_sync.return_value = SyncResponse(skipped=True, reason="nothing_to_do")
        attempt = await orchestrator.mount()
        assert attempt.outcome == "completed"
        assert notices.notices == []

    async def test_remote_errors_reported(
        self, orchestrator: SyncOrchestrator, remote: MagicMock
    ) -> None:
        remote.run_sync.return_value = SyncResponse(errors=("mailbox x failed",))
        attempt = await orchestrator.mount()
        assert attempt.errors == ("mailbox x failed",)


# ---------------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------------


class TestTeardown:
    async def test_result_after_teardown_is_silent(
        self,
        orchestrator: SyncOrchestrator,
        remote: MagicMock,
        cache: MagicMock,
        notices: NoticeBuffer,
    ) -> None:
        release = asyncio.Event()

        async def slow_failure() -> SyncResponse:
            await release.wait()
            raise RuntimeError("late failure")

        remote.run_sync.side_effect = slow_failure
        mount = asyncio.create_task(orchestrator.mount())
        await asyncio.sleep(0)

        orchestrator.teardown()
        assert not orchestrator.is_mounted
        assert orchestrator.state == "idle"

        release.set()
        attempt = await mount
        assert attempt.outcome == "failed"
        assert notices.notices == []
        cache.invalidate.assert_not_awaited()

    async def test_late_success_does_not_touch_cache(
        self,
        orchestrator: SyncOrchestrator,
        remote: MagicMock,
        cache: MagicMock,
    ) -> None:
        release = asyncio.Event()

        async def slow_sync() -> SyncResponse:
            await release.wait()
            return COMPLETED

        remote.run_sync.side_effect = slow_sync
        mount = asyncio.create_task(orchestrator.mount())
        await asyncio.sleep(0)
        orchestrator.teardown()
        release.set()
        await mount

        cache.invalidate.assert_not_awaited()
        assert orchestrator.last_success_at is None

    async def test_remount_runs_while_old_sync_pending(
        self, orchestrator: SyncOrchestrator, remote: MagicMock
    ) -> None:
        release = asyncio.Event()
        calls = 0

        async def first_slow() -> SyncResponse:
            nonlocal calls
            calls += 1
            if calls == 1:
                await release.wait()
            return COMPLETED

        remote.run_sync.side_effect = first_slow
        old = asyncio.create_task(orchestrator.mount())
        await asyncio.sleep(0)
        orchestrator.teardown()

        fresh = await orchestrator.mount()
        assert fresh.outcome == "completed"

        release.set()
        await old
        assert orchestrator.state == "idle"
        assert remote.run_sync.await_count == 2


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------


class TestVisibility:
    async def test_stale_cache_syncs(
        self, orchestrator: SyncOrchestrator, remote: MagicMock, cache: MagicMock, clock
    ) -> None:
        await orchestrator.mount()
        clock.advance(61)
        cache.is_stale.return_value = True

        for _ in range(3):
            orchestrator.on_visibility_regained()
        await orchestrator.wait_for_visibility()

        assert remote.run_sync.await_count == 2
        cache.is_stale.assert_called_with(600)

    async def test_fresh_cache_skips(
        self, orchestrator: SyncOrchestrator, remote: MagicMock, cache: MagicMock
    ) -> None:
        await orchestrator.mount()
        cache.is_stale.return_value = False

        orchestrator.on_visibility_regained()
        await orchestrator.wait_for_visibility()

        assert remote.run_sync.await_count == 1

    async def test_teardown_cancels_pending_timer(
        self, orchestrator: SyncOrchestrator, remote: MagicMock
    ) -> None:
        await orchestrator.mount()
        orchestrator.on_visibility_regained()
        orchestrator.teardown()
        await asyncio.sleep(0.03)
        assert remote.run_sync.await_count == 1

    async def test_second_event_does_not_cancel_running_sync(
        self, orchestrator: SyncOrchestrator, remote: MagicMock, clock
    ) -> None:
        await orchestrator.mount()
        clock.advance(61)
        entered = asyncio.Event()
        release = asyncio.Event()
        cancelled: list[bool] = []

        async def slow_sync() -> SyncResponse:
            entered.set()
            try:
                await release.wait()
            except asyncio.CancelledError:
                cancelled.append(True)
                raise
            return COMPLETED

        remote.run_sync.side_effect = slow_sync
        orchestrator.on_visibility_regained()
        await entered.wait()

        orchestrator.on_visibility_regained()
        # Let the second timer fire; the in-flight guard turns it away
        await asyncio.sleep(0.03)
        release.set()
        await orchestrator.wait_for_visibility()

        assert cancelled == []
        assert remote.run_sync.await_count == 2
        assert orchestrator.state == "idle"
        assert orchestrator.throttle_remaining == 60

    async def test_teardown_during_visibility_sync(
        self,
        orchestrator: SyncOrchestrator,
        remote: MagicMock,
        cache: MagicMock,
        notices: NoticeBuffer,
        clock,
    ) -> None:
        await orchestrator.mount()
        clock.advance(61)
        entered = asyncio.Event()
        release = asyncio.Event()
        cancelled: list[bool] = []

        async def slow_sync() -> SyncResponse:
            entered.set()
            try:
                await release.wait()
            except asyncio.CancelledError:
                cancelled.append(True)
                raise
            return COMPLETED

        remote.run_sync.side_effect = slow_sync
        orchestrator.on_visibility_regained()
        await entered.wait()

        orchestrator.teardown()
        release.set()
        await orchestrator.wait_for_visibility()

        assert cancelled == []
        # Only the mount sync refreshed the cache; the late result is discarded
        cache.invalidate.assert_awaited_once()
        assert notices.notices == []

    async def test_ignored_when_unmounted(
        self, orchestrator: SyncOrchestrator, cache: MagicMock
    ) -> None:
        orchestrator.on_visibility_regained()
        await orchestrator.wait_for_visibility()
        cache.is_stale.assert_not_called()


# ---------------------------------------------------------------------------
# Unexpected errors
# ---------------------------------------------------------------------------


class TestUnexpectedErrors:
    async def test_thread_source_error_after_sync(
        self, remote: MagicMock, notices: NoticeBuffer, clock
    ) -> None:
        source = MagicMock()
        source.fetch_threads = AsyncMock(side_effect=ValueError("bad page"))
        thread_cache = ThreadCache(source, notices, clock=clock)
        orchestrator = SyncOrchestrator(
            remote, thread_cache, notices, SyncConfig(throttle_seconds=60), clock=clock
        )

        attempt = await orchestrator.mount()

        assert attempt.outcome == "completed"
        assert orchestrator.throttle_remaining == 60
        assert orchestrator.last_success_at is not None
        assert notices.messages("error") == [FETCH_FAILED_MESSAGE]

    async def test_refresh_error_still_arms_throttle(
        self, orchestrator: SyncOrchestrator, cache: MagicMock, notices: NoticeBuffer
    ) -> None:
        cache.invalidate.side_effect = RuntimeError("cache exploded")

        attempt = await orchestrator.mount()

        assert attempt.outcome == "completed"
        assert orchestrator.throttle_remaining == 60
        assert notices.messages("error") == [FETCH_FAILED_MESSAGE]

    async def test_malformed_response_is_a_failure(
        self, orchestrator: SyncOrchestrator, remote: MagicMock, notices: NoticeBuffer
    ) -> None:
        remote.run_sync.return_value = None

        attempt = await orchestrator.mount()

        assert attempt.outcome == "failed"
        assert orchestrator.state == "idle"
        assert orchestrator.throttle_remaining == 0
        assert notices.notices == [Notice("error", FAILED_MESSAGE)]
