"""Sync orchestrator: at most one remote sync in flight, at most one per minute.

Triggers (mount, tab visibility regained, manual retry, scheduler interval)
all funnel into trigger(). Three guards run in order before a remote call:

1. the in-flight slot, claimed synchronously (no await between the check
   and the claim) so two triggers in the same tick cannot both pass
2. the observable sync state (idle / in_flight)
3. the throttle window since the last *successful* sync

On a remote "locked" answer the user gets an info notice and the throttle
is NOT re-armed, so a retry can go through once the lock clears. On
success the thread cache is invalidated and the throttle re-armed, but only
while the orchestrator is still mounted. teardown() clears both flags and
suppresses every later notice and state update from a sync still running.

Usage:
    from inbox_triage.engine.sync import SyncOrchestrator

    orchestrator = SyncOrchestrator(remote, cache, notifier, config.sync)
    attempt = await orchestrator.mount()
    orchestrator.on_visibility_regained()
    ...
    orchestrator.teardown()
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

from inbox_triage.core.logging import get_logger, set_correlation_id
from inbox_triage.core.notices import Notice
from inbox_triage.core.policies import Debouncer, ThrottlePolicy
from inbox_triage.engine.cache import FETCH_FAILED_MESSAGE

if TYPE_CHECKING:
    from inbox_triage.config_schema import SyncConfig
    from inbox_triage.core.notices import Notifier
    from inbox_triage.core.policies import Clock
    from inbox_triage.engine.cache import ThreadCache
    from inbox_triage.remote.protocol import RemoteSync, SyncSummary

logger = get_logger(__name__)

SyncState = Literal["idle", "in_flight"]
SyncTrigger = Literal["mount", "visibility", "retry", "interval"]
SyncOutcome = Literal["completed", "locked", "failed", "skipped"]
SkipReason = Literal["unmounted", "in_flight", "syncing", "throttled"]

LOCKED_MESSAGE = "Sync already running. Please wait and try again."
FAILED_MESSAGE = "Failed to sync emails"

DEFAULT_THROTTLE_SECONDS = 60.0
DEFAULT_VISIBILITY_DEBOUNCE_SECONDS = 0.5
DEFAULT_VISIBILITY_STALE_SECONDS = 10 * 60


@dataclass(frozen=True, slots=True)
class SyncAttempt:
    """What happened to one trigger.

    Attributes:
        trigger: What asked for the sync
        outcome: completed, locked, failed or skipped
        skip_reason: Which guard rejected the trigger (skipped only)
        summary: Remote counts (completed only)
        locked_until: When the remote lock expires (locked only)
        errors: Non-fatal remote errors reported with a completed sync
        error: Failure message (failed only)
        cycle_id: Correlation ID of the attempt (None when skipped)
    """

    trigger: SyncTrigger
    outcome: SyncOutcome
    skip_reason: SkipReason | None = None
    summary: SyncSummary | None = None
    locked_until: str | None = None
    errors: tuple[str, ...] = ()
    error: str | None = None
    cycle_id: str | None = None


class SyncOrchestrator:
    """Coordinate remote sync triggers for one mounted inbox session."""

    def __init__(
        self,
        remote: RemoteSync,
        cache: ThreadCache,
        notifier: Notifier,
        config: SyncConfig | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._remote = remote
        self._cache = cache
        self._notifier = notifier

        throttle_seconds = config.throttle_seconds if config else DEFAULT_THROTTLE_SECONDS
        visibility_debounce = (
            config.visibility_debounce_seconds if config else DEFAULT_VISIBILITY_DEBOUNCE_SECONDS
        )
        self._visibility_stale_seconds = (
            config.visibility_stale_minutes * 60 if config else DEFAULT_VISIBILITY_STALE_SECONDS
        )

        self._throttle = ThrottlePolicy(throttle_seconds, clock)
        self._visibility = Debouncer(visibility_debounce, self._sync_if_stale, name="visibility")

        self._in_flight = False
        self._state: SyncState = "idle"
        self._mounted = False
        # Bumped on teardown; a sync started under an older generation is orphaned
        self._generation = 0
        self._last_success_at: datetime | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_mounted(self) -> bool:
        return self._mounted

    @property
    def last_success_at(self) -> datetime | None:
        """Wall-clock time of the last successful sync, or None."""
        return self._last_success_at

    @property
    def throttle_remaining(self) -> float:
        return self._throttle.remaining()

    async def mount(self) -> SyncAttempt:
        """Mark the session mounted and run the initial sync."""
        self._mounted = True
        return await self.trigger("mount")

    def on_visibility_regained(self) -> None:
        """Debounced: sync only if the thread cache is stale when the timer fires."""
        if self._mounted:
            self._visibility.trigger()

    async def wait_for_visibility(self) -> None:
        """Wait for a pending visibility timer (and the sync it starts) to finish."""
        await self._visibility.wait()

    async def retry(self) -> SyncAttempt:
        return await self.trigger("retry")

    async def trigger(self, trigger: SyncTrigger) -> SyncAttempt:
        """Run one sync if every guard allows it.

        Never raises; the outcome is reported in the returned SyncAttempt
        and, while mounted, as a user notice.
        """
        if not self._mounted:
            return SyncAttempt(trigger, "skipped", skip_reason="unmounted")

        if self._in_flight:
            logger.debug("sync_skipped_in_flight", trigger=trigger)
            return SyncAttempt(trigger, "skipped", skip_reason="in_flight")
        if self._state == "in_flight":
            logger.debug("sync_skipped_syncing", trigger=trigger)
            return SyncAttempt(trigger, "skipped", skip_reason="syncing")
        if not self._throttle.allows():
            logger.debug(
                "sync_throttled",
                trigger=trigger,
                remaining_seconds=round(self._throttle.remaining(), 1),
            )
            return SyncAttempt(trigger, "skipped", skip_reason="throttled")

        self._in_flight = True
        generation = self._generation
        cycle_id = str(uuid.uuid4())
        set_correlation_id(cycle_id)
        try:
            self._state = "in_flight"
            return await self._run(trigger, generation, cycle_id)
        except Exception as e:
            logger.error(
                "sync_cycle_error", trigger=trigger, error=str(e), error_type=type(e).__name__
            )
            self._notify(generation, Notice("error", FAILED_MESSAGE))
            return SyncAttempt(trigger, "failed", error=str(e), cycle_id=cycle_id)
        finally:
            if generation == self._generation:
                self._state = "idle"
                self._in_flight = False
            set_correlation_id(None)

    def reconfigure(self, config: SyncConfig) -> None:
        """Apply new timing settings. The last successful sync stays on record."""
        self._throttle.min_interval = config.throttle_seconds
        self._visibility.delay = config.visibility_debounce_seconds
        self._visibility_stale_seconds = config.visibility_stale_minutes * 60
        logger.info(
            "sync_orchestrator_reconfigured",
            throttle_seconds=config.throttle_seconds,
            visibility_stale_minutes=config.visibility_stale_minutes,
        )

    def teardown(self) -> None:
        """Unmount: drop pending timers, clear flags, silence any running sync.

        A remote call already in flight is not cancelled, including one
        started by the visibility timer; its result is discarded when it
        arrives.
        """
        self._mounted = False
        self._generation += 1
        self._in_flight = False
        self._state = "idle"
        self._visibility.cancel()
        logger.debug("sync_orchestrator_torn_down")

    def _is_live(self, generation: int) -> bool:
        return self._mounted and generation == self._generation

    def _notify(self, generation: int, notice: Notice) -> None:
        if self._is_live(generation):
            self._notifier.notify(notice)

    async def _run(self, trigger: SyncTrigger, generation: int, cycle_id: str) -> SyncAttempt:
        logger.info("sync_started", trigger=trigger)
        try:
            response = await self._remote.run_sync()
        except Exception as e:
            logger.error("sync_failed", trigger=trigger, error=str(e))
            self._notify(generation, Notice("error", FAILED_MESSAGE))
            return SyncAttempt(trigger, "failed", error=str(e), cycle_id=cycle_id)

        if response.is_locked:
            logger.info(
                "sync_locked",
                trigger=trigger,
                locked_until=response.locked_until,
                locked_by=response.locked_by,
            )
            self._notify(generation, Notice("info", LOCKED_MESSAGE))
            return SyncAttempt(
                trigger, "locked", locked_until=response.locked_until, cycle_id=cycle_id
            )

        if response.summary is not None:
            logger.info(
                "sync_complete",
                threads_synced=response.summary.threads_synced,
                messages_synced=response.summary.messages_synced,
            )

        if self._is_live(generation):
            self._throttle.mark()
            self._last_success_at = datetime.now(UTC)
            await self._refresh_cache(generation)

        if response.errors:
            logger.warning("sync_completed_with_errors", errors=list(response.errors))

        return SyncAttempt(
            trigger,
            "completed",
            summary=response.summary,
            errors=response.errors,
            cycle_id=cycle_id,
        )

    async def _refresh_cache(self, generation: int) -> None:
        try:
            await self._cache.invalidate()
        except Exception as e:
            logger.warning("sync_cache_refresh_failed", error=str(e), error_type=type(e).__name__)
            self._notify(generation, Notice("error", FETCH_FAILED_MESSAGE))

    async def _sync_if_stale(self) -> None:
        if self._cache.is_stale(self._visibility_stale_seconds):
            await self.trigger("visibility")
        else:
            logger.debug("visibility_sync_skipped_fresh", cache_age=round(self._cache.age(), 1))
