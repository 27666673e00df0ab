"""Reusable timing policies: throttle, debounce and token bucket.

These wrap the three ways the engine limits how often something happens:

- ThrottlePolicy: a hard floor between executions (sync at most once a minute)
- Debouncer: collapse a burst of triggers into one call after a quiet period
  (live-update notifications, tab visibility changes)
- TokenBucket: proactive request pacing for the remote HTTP client

All policies take an injectable monotonic clock so tests can move time
without sleeping.

Usage:
    from inbox_triage.core.policies import Debouncer, ThrottlePolicy

    throttle = ThrottlePolicy(min_interval=60.0)
    if throttle.allows():
        await do_work()
        throttle.mark()

    debouncer = Debouncer(1.0, refetch, name="live_update")
    debouncer.trigger()  # later triggers reset the timer
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from inbox_triage.core.errors import RateLimitExceeded
from inbox_triage.core.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]

# Longest a caller may be asked to wait for a token before we give up
MAX_TOKEN_WAIT_SECONDS = 20.0


class ThrottlePolicy:
    """Minimum elapsed time between successive executions.

    The policy only records executions when told to via mark(), so callers
    decide what counts as an execution (e.g. only successful syncs re-arm
    the window).
    """

    def __init__(self, min_interval: float, clock: Clock = time.monotonic) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._last_run: float | None = None

    @property
    def last_run(self) -> float | None:
        """Clock reading of the last marked execution, or None."""
        return self._last_run

    def remaining(self) -> float:
        """Seconds until the next execution is allowed (0 when allowed now)."""
        if self._last_run is None:
            return 0.0
        elapsed = self._clock() - self._last_run
        return max(0.0, self.min_interval - elapsed)

    def allows(self) -> bool:
        return self.remaining() <= 0.0

    def mark(self) -> None:
        """Record an execution at the current clock reading."""
        self._last_run = self._clock()

    def reset(self) -> None:
        self._last_run = None


class Debouncer:
    """Run an async callback once a burst of triggers has gone quiet.

    Each trigger() cancels the pending timer and starts a new one, so the
    callback runs `delay` seconds after the *last* trigger. Only the timer
    is cancellable: once the callback has started it runs to completion,
    and a trigger() arriving meanwhile arms a fresh timer alongside it.
    Exceptions from the callback are logged, never propagated: there is no
    caller left to receive them.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], Awaitable[Any]],
        name: str = "debounce",
    ) -> None:
        self.delay = delay
        self._callback = callback
        self._name = name
        self._timer: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        """Whether a timer is armed and its callback has not started yet."""
        return self._timer is not None and not self._timer.done()

    @property
    def running(self) -> bool:
        """Whether a fired callback is still executing."""
        return bool(self._running)

    def trigger(self) -> None:
        """Arm (or re-arm) the timer. Must be called from a running event loop."""
        self.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._sleep_then_fire())

    def cancel(self) -> None:
        """Drop any pending timer. A callback already running is left alone."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def wait(self) -> None:
        """Wait for the armed timer and every callback it started to finish."""
        timer = self._timer
        if timer is not None:
            try:
                await timer
            except asyncio.CancelledError:
                pass
        while self._running:
            await asyncio.gather(*self._running)

    async def _sleep_then_fire(self) -> None:
        await asyncio.sleep(self.delay)
        # No await past this point, so cancel() can no longer reach the callback
        task = asyncio.get_running_loop().create_task(self._run_callback())
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run_callback(self) -> None:
        try:
            await self._callback()
        except Exception as e:
            logger.warning("debounced_callback_failed", debouncer=self._name, error=str(e))


class TokenBucket:
    """Token bucket rate limiter for outbound requests.

    Tokens are added at a fixed rate and each request consumes one. When the
    bucket is empty the caller waits for the refill, unless the wait would
    exceed MAX_TOKEN_WAIT_SECONDS, in which case RateLimitExceeded is raised.
    """

    def __init__(
        self,
        rate: float = 1.0,
        capacity: int = 1,
        clock: Clock = time.monotonic,
    ) -> None:
        self.rate = rate
        self.capacity = capacity
        self.tokens: float = capacity
        self._clock = clock
        self.last_refill = clock()
        self.lock = asyncio.Lock()

    async def consume(self, tokens: int = 1) -> None:
        """Consume tokens, waiting for a refill when needed.

        Raises:
            RateLimitExceeded: If more tokens than capacity are requested, or
                the refill would take too long
        """
        if tokens > self.capacity:
            raise RateLimitExceeded(
                f"Requested tokens ({tokens}) exceed bucket capacity ({self.capacity})"
            )

        async with self.lock:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return

            wait_time = (tokens - self.tokens) / self.rate
            if wait_time > MAX_TOKEN_WAIT_SECONDS:
                raise RateLimitExceeded(
                    f"Rate limit exceeded, would require {wait_time:.2f}s wait",
                    retry_after=wait_time,
                )

            logger.debug("token_bucket_wait", wait_time=wait_time)
            await asyncio.sleep(wait_time)
            self._refill()
            self.tokens = max(0.0, self.tokens - tokens)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_refill = now
