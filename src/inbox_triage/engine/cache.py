"""Thread cache: the engine's single in-memory copy of the thread list.

The cache is the only place thread records are held. It never patches a
record locally: writers go through the mutation sink and then call
invalidate(), which refetches the first page from the thread source.

Behaviours:
- First page via refetch() (raises) or invalidate() (notifies); older
  pages appended via load_more() using the before-date cursor, one at a time
- Age tracking from the start of the last fetch, used by the sync
  orchestrator's visibility trigger and by live-update gating
- Live-update notifications are debounced and ignored while the cache is
  fresher than the configured minimum age
- A permission rejection (HTTP 403) is reported distinctly from other
  fetch failures

Usage:
    from inbox_triage.engine.cache import ThreadCache

    cache = ThreadCache(source, notifier, page_size=100)
    threads = await cache.invalidate()
    await cache.load_more()
"""

from __future__ import annotations

import math
import time
from typing import TYPE_CHECKING, Any

from inbox_triage.core.errors import RemoteError, ThreadFetchError
from inbox_triage.core.logging import get_logger
from inbox_triage.core.notices import Notice
from inbox_triage.core.policies import Debouncer
from inbox_triage.engine.threads import Thread

if TYPE_CHECKING:
    from inbox_triage.core.notices import Notifier
    from inbox_triage.core.policies import Clock
    from inbox_triage.remote.protocol import ThreadPage, ThreadSource

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 100
LIVE_UPDATE_DEBOUNCE_SECONDS = 1.0
LIVE_UPDATE_MIN_AGE_SECONDS = 5 * 60

PERMISSION_DENIED_MESSAGE = "Inbox is admin/manager only (permission)."
FETCH_FAILED_MESSAGE = "Inbox failed to load (backend error)."
LOAD_MORE_FAILED_MESSAGE = "Failed to load more threads"


def _threads_from_page(page: ThreadPage) -> list[Thread]:
    return [
        Thread.from_record(r)
        for r in page.threads
        if isinstance(r, dict) and r.get("is_deleted") is not True
    ]


def _page_cursor(page: ThreadPage) -> str | None:
    """Cursor for the page after this one: reported cursor, else oldest record's date."""
    if page.next_before:
        return page.next_before
    records: list[Any] = [r for r in page.threads if isinstance(r, dict)]
    if not records:
        return None
    last_date = records[-1].get("last_message_date")
    return str(last_date) if last_date else None


class ThreadCache:
    """In-memory, invalidate-and-refetch cache of threads."""

    def __init__(
        self,
        source: ThreadSource,
        notifier: Notifier,
        page_size: int = DEFAULT_PAGE_SIZE,
        live_update_debounce: float = LIVE_UPDATE_DEBOUNCE_SECONDS,
        live_update_min_age: float = LIVE_UPDATE_MIN_AGE_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        self._source = source
        self._notifier = notifier
        self.page_size = page_size
        self._live_update_min_age = live_update_min_age
        self._clock = clock

        self._threads: list[Thread] = []
        self._last_fetch_at: float | None = None
        self._cursor: str | None = None
        self._has_more = False
        self._loading_more = False
        self._live_update = Debouncer(live_update_debounce, self.invalidate, name="live_update")

    @property
    def threads(self) -> list[Thread]:
        return list(self._threads)

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def is_loading_more(self) -> bool:
        return self._loading_more

    @property
    def last_fetch_at(self) -> float | None:
        """Clock reading when the last first-page fetch started, or None."""
        return self._last_fetch_at

    def age(self) -> float:
        """Seconds since the last fetch started (infinite if never fetched)."""
        if self._last_fetch_at is None:
            return math.inf
        return self._clock() - self._last_fetch_at

    def is_stale(self, max_age_seconds: float) -> bool:
        return self.age() >= max_age_seconds

    def get(self, thread_id: str) -> Thread | None:
        return next((t for t in self._threads if t.id == thread_id), None)

    async def refetch(self) -> list[Thread]:
        """Replace the cached list with a fresh first page.

        Raises:
            ThreadFetchError: If the thread source fails for any reason
                (permission_denied is set for HTTP 403)
        """
        self._last_fetch_at = self._clock()
        try:
            page = await self._source.fetch_threads(limit=self.page_size)
        except RemoteError as e:
            logger.error(
                "thread_fetch_failed",
                status_code=e.status_code,
                error=str(e),
            )
            raise ThreadFetchError(str(e), permission_denied=e.is_permission_denied) from e
        except Exception as e:
            logger.error("thread_fetch_failed", error=str(e), error_type=type(e).__name__)
            raise ThreadFetchError(str(e)) from e

        self._threads = _threads_from_page(page)
        self._cursor = _page_cursor(page)
        self._has_more = page.has_more
        logger.debug("thread_cache_refreshed", count=len(self._threads), has_more=self._has_more)
        return self.threads

    async def invalidate(self) -> list[Thread]:
        """Discard the cached page and refetch, reporting failures as a notice.

        The previously cached threads are kept when the fetch fails.
        """
        try:
            return await self.refetch()
        except ThreadFetchError as e:
            message = PERMISSION_DENIED_MESSAGE if e.permission_denied else FETCH_FAILED_MESSAGE
            self._notifier.notify(Notice("error", message))
            return self.threads

    async def load_more(self) -> int:
        """Append the next older page.

        No-op when there is no cursor, no more pages, or a load is already
        running.

        Returns:
            Number of threads appended
        """
        if not self._cursor or not self._has_more or self._loading_more:
            return 0

        self._loading_more = True
        try:
            page = await self._source.fetch_threads(limit=self.page_size, before=self._cursor)
        except Exception as e:
            logger.warning("thread_load_more_failed", cursor=self._cursor, error=str(e))
            self._notifier.notify(Notice("error", LOAD_MORE_FAILED_MESSAGE))
            return 0
        finally:
            self._loading_more = False

        more = _threads_from_page(page)
        if not more:
            self._has_more = False
            return 0

        known = {t.id for t in self._threads}
        fresh = [t for t in more if t.id not in known]
        self._threads.extend(fresh)
        self._cursor = _page_cursor(page)
        self._has_more = page.has_more
        logger.debug("thread_cache_extended", added=len(fresh), has_more=self._has_more)
        return len(fresh)

    def on_live_update(self) -> None:
        """Handle a server-side change notification for any thread.

        Ignored while the cache is fresher than the minimum age; otherwise
        arms a debounced reload. Must be called from a running event loop.
        """
        if not self.is_stale(self._live_update_min_age):
            logger.debug("live_update_ignored_fresh", age=round(self.age(), 1))
            return
        self._live_update.trigger()

    async def wait_for_live_update(self) -> None:
        await self._live_update.wait()

    def reconfigure(
        self,
        page_size: int,
        live_update_debounce: float,
        live_update_min_age: float,
    ) -> None:
        """Apply new paging and live-update settings from the next fetch on."""
        self.page_size = page_size
        self._live_update.delay = live_update_debounce
        self._live_update_min_age = live_update_min_age

    def close(self) -> None:
        """Cancel any pending debounced reload."""
        self._live_update.cancel()
