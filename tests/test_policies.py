"""Tests for throttle, debounce and token bucket policies."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from inbox_triage.core.errors import RateLimitExceeded
from inbox_triage.core.policies import Debouncer, ThrottlePolicy, TokenBucket

# ---------------------------------------------------------------------------
# ThrottlePolicy
# ---------------------------------------------------------------------------


class TestThrottlePolicy:
    def test_allows_before_first_mark(self, clock) -> None:
        throttle = ThrottlePolicy(60, clock)
        assert throttle.allows()
        assert throttle.remaining() == 0.0
        assert throttle.last_run is None

    def test_window(self, clock) -> None:
        throttle = ThrottlePolicy(60, clock)
        throttle.mark()
        clock.advance(30)
        assert not throttle.allows()
        assert throttle.remaining() == 30
        clock.advance(30)
        assert throttle.allows()

    def test_reset(self, clock) -> None:
        throttle = ThrottlePolicy(60, clock)
        throttle.mark()
        throttle.reset()
        assert throttle.allows()


# ---------------------------------------------------------------------------
# Debouncer
# ---------------------------------------------------------------------------


class TestDebouncer:
    async def test_runs_once_after_burst(self) -> None:
        callback = AsyncMock()
        debouncer = Debouncer(0.01, callback, name="test")
        for _ in range(3):
            debouncer.trigger()
        assert debouncer.pending
        await debouncer.wait()
        callback.assert_awaited_once()
        assert not debouncer.pending

    async def test_cancel(self) -> None:
        callback = AsyncMock()
        debouncer = Debouncer(0.01, callback)
        debouncer.trigger()
        debouncer.cancel()
        await asyncio.sleep(0.03)
        callback.assert_not_awaited()

    async def test_retrigger_while_callback_runs(self) -> None:
        started = asyncio.Event()
        release = asyncio.Event()
        finished: list[bool] = []

        async def callback() -> None:
            started.set()
            await release.wait()
            finished.append(True)

        debouncer = Debouncer(0.0, callback)
        debouncer.trigger()
        await started.wait()
        assert debouncer.running
        assert not debouncer.pending

        debouncer.trigger()
        assert debouncer.pending
        release.set()
        await debouncer.wait()

        # The first run completed and the new timer fired a second run
        assert finished == [True, True]
        assert not debouncer.running

    async def test_cancel_leaves_running_callback(self) -> None:
        started = asyncio.Event()
        release = asyncio.Event()
        finished: list[bool] = []

        async def callback() -> None:
            started.set()
            await release.wait()
            finished.append(True)

        debouncer = Debouncer(0.0, callback)
        debouncer.trigger()
        await started.wait()

        debouncer.cancel()
        release.set()
        await debouncer.wait()

        assert finished == [True]

    async def test_wait_without_timer(self) -> None:
        await Debouncer(0.01, AsyncMock()).wait()

    async def test_callback_errors_are_logged(self) -> None:
        callback = AsyncMock(side_effect=RuntimeError("boom"))
        debouncer = Debouncer(0.0, callback, name="test")
        with patch("inbox_triage.core.policies.logger") as mock_logger:
            debouncer.trigger()
            await debouncer.wait()
        mock_logger.warning.assert_called_once_with(
            "debounced_callback_failed", debouncer="test", error="boom"
        )


# ---------------------------------------------------------------------------
# TokenBucket
# ---------------------------------------------------------------------------


class TestTokenBucket:
    async def test_consumes_available_tokens(self, clock) -> None:
        bucket = TokenBucket(rate=1.0, capacity=2, clock=clock)
        await bucket.consume()
        await bucket.consume()
        assert bucket.tokens == 0

    async def test_refills_over_time(self, clock) -> None:
        bucket = TokenBucket(rate=2.0, capacity=2, clock=clock)
        await bucket.consume(2)
        clock.advance(0.5)
        await bucket.consume()
        assert bucket.tokens == 0

    async def test_over_capacity(self, clock) -> None:
        bucket = TokenBucket(rate=1.0, capacity=1, clock=clock)
        with pytest.raises(RateLimitExceeded):
            await bucket.consume(2)

    async def test_wait_too_long(self, clock) -> None:
        bucket = TokenBucket(rate=0.01, capacity=1, clock=clock)
        await bucket.consume()
        with pytest.raises(RateLimitExceeded) as exc_info:
            await bucket.consume()
        assert exc_info.value.retry_after == pytest.approx(100)
