"""Bulk operation batcher: apply one action to every selected thread.

Selected IDs are split into chunks of `chunk_size` (10 by default). Each
chunk is issued concurrently and fully settles before the batcher pauses
(100 ms by default) and moves to the next chunk. The first chunk containing
a failure aborts the operation: remaining chunks are not issued and
requests already made are not rolled back.

Only a fully successful run invalidates the cache, clears the selection and
shows one success notice. A failure shows one error notice and keeps the
selection so the user can retry.

Usage:
    from inbox_triage.engine.bulk import BulkBatcher, SelectionSet

    selection = SelectionSet()
    selection.select_all(t.thread.id for t in visible)
    result = await BulkBatcher(sink, cache, notifier, actor).apply(selection, "close")
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from inbox_triage.core.errors import BulkOperationError
from inbox_triage.core.logging import get_logger
from inbox_triage.core.notices import Notice, pluralize
from inbox_triage.engine.workflow import (
    assign_patch,
    close_patch,
    link_contract_patch,
    link_project_patch,
    mark_read_patch,
    mark_unread_patch,
)

if TYPE_CHECKING:
    from inbox_triage.config_schema import BulkConfig
    from inbox_triage.core.notices import Notifier
    from inbox_triage.engine.cache import ThreadCache
    from inbox_triage.engine.workflow import Actor
    from inbox_triage.remote.protocol import MutationSink

logger = get_logger(__name__)

BulkAction = Literal[
    "mark_read", "mark_unread", "close", "assign_to_me", "link_project", "link_contract"
]

DEFAULT_CHUNK_SIZE = 10
DEFAULT_PAUSE_SECONDS = 0.1

# action -> (success template, failure message)
_MESSAGES: dict[BulkAction, tuple[str, str]] = {
    "mark_read": ("Marked {count} as read", "Failed to mark threads as read"),
    "mark_unread": ("Marked {count} as unread", "Failed to mark threads as unread"),
    "close": ("Closed {count}", "Failed to close threads"),
    "assign_to_me": ("Assigned {count} to you", "Failed to assign threads"),
    "link_project": ("Linked {count}", "Failed to link threads"),
    "link_contract": ("Linked {count}", "Failed to link threads"),
}


class SelectionSet:
    """Ordered set of selected thread IDs plus the selection-mode flag.

    Entering or leaving selection mode always clears the selection.
    """

    def __init__(self) -> None:
        self._ids: dict[str, None] = {}
        self.active = False

    def enter(self) -> None:
        self.active = True
        self.clear()

    def exit(self) -> None:
        self.active = False
        self.clear()

    def toggle_mode(self) -> None:
        if self.active:
            self.exit()
        else:
            self.enter()

    def add(self, thread_id: str) -> None:
        self._ids[thread_id] = None

    def discard(self, thread_id: str) -> None:
        self._ids.pop(thread_id, None)

    def set(self, thread_id: str, checked: bool) -> None:
        if checked:
            self.add(thread_id)
        else:
            self.discard(thread_id)

    def select_all(self, thread_ids: Iterable[str]) -> None:
        """Replace the selection with the given IDs (e.g. the visible list)."""
        self._ids = dict.fromkeys(thread_ids)

    def clear(self) -> None:
        self._ids = {}

    def ids(self) -> list[str]:
        return list(self._ids)

    def __contains__(self, thread_id: object) -> bool:
        return thread_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))


@dataclass(frozen=True, slots=True)
class BulkResult:
    """Outcome of one bulk operation.

    Attributes:
        action: Action applied
        requested: Number of selected threads
        chunks_issued: Chunks actually sent (including a failing one)
        succeeded: True when every request succeeded
        failed_chunk: Index of the chunk that failed (None on success)
        failed_ids: Thread IDs whose update failed in that chunk
    """

    action: BulkAction
    requested: int
    chunks_issued: int
    succeeded: bool
    failed_chunk: int | None = None
    failed_ids: tuple[str, ...] = ()


class BulkBatcher:
    """Chunked, paced application of one patch to many threads."""

    def __init__(
        self,
        sink: MutationSink,
        cache: ThreadCache,
        notifier: Notifier,
        actor: Actor,
        config: BulkConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._sink = sink
        self._cache = cache
        self._notifier = notifier
        self._actor = actor
        self.chunk_size = config.chunk_size if config else DEFAULT_CHUNK_SIZE
        self.pause_seconds = config.pause_seconds if config else DEFAULT_PAUSE_SECONDS
        self._sleep = sleep
        self._now = now or (lambda: datetime.now(UTC))

    def build_patch(self, action: BulkAction, target_id: str | None = None) -> dict[str, Any]:
        """Build the patch for an action. One timestamp is shared by the whole batch.

        Raises:
            ValueError: If a link action has no target or the action is unknown
        """
        if action == "mark_read":
            return mark_read_patch(self._now())
        if action == "mark_unread":
            return mark_unread_patch(self._now())
        if action == "close":
            return close_patch()
        if action == "assign_to_me":
            return assign_patch(self._actor.email, self._actor.name, self._actor, self._now())
        if action in ("link_project", "link_contract"):
            if not target_id:
                raise ValueError(f"{action} requires a target id")
            if action == "link_project":
                return link_project_patch(target_id)
            return link_contract_patch(target_id)
        raise ValueError(f"Unknown bulk action: {action!r}")

    async def apply(
        self,
        selection: SelectionSet,
        action: BulkAction,
        target_id: str | None = None,
    ) -> BulkResult:
        """Apply an action to every selected thread.

        Args:
            selection: Selected thread IDs (cleared only on full success)
            action: Action to apply
            target_id: Project or contract ID for link actions

        Returns:
            BulkResult describing what was issued
        """
        ids = selection.ids()
        count = len(ids)
        if count == 0:
            return BulkResult(action, 0, 0, succeeded=True)

        patch = self.build_patch(action, target_id)
        success_template, failure_message = _MESSAGES[action]
        chunks_issued = 0

        logger.info("bulk_operation_started", action=action, count=count)
        try:
            for index, chunk in enumerate(itertools.batched(ids, self.chunk_size)):
                if index:
                    await self._sleep(self.pause_seconds)
                chunks_issued += 1
                await self._run_chunk(index, chunk, patch)
        except BulkOperationError as e:
            logger.warning(
                "bulk_operation_failed",
                action=action,
                chunk_index=e.chunk_index,
                failed=len(e.failed_ids),
                error=str(e),
            )
            self._notifier.notify(Notice("error", failure_message))
            return BulkResult(
                action,
                count,
                chunks_issued,
                succeeded=False,
                failed_chunk=e.chunk_index,
                failed_ids=tuple(e.failed_ids),
            )

        # Updates are already applied; a refresh failure is only logged
        try:
            await self._cache.invalidate()
        except Exception as e:
            logger.warning("bulk_refresh_failed", action=action, error=str(e))
        selection.clear()
        logger.info("bulk_operation_complete", action=action, count=count, chunks=chunks_issued)
        self._notifier.notify(
            Notice("success", success_template.format(count=pluralize(count)))
        )
        return BulkResult(action, count, chunks_issued, succeeded=True)

    async def _run_chunk(
        self,
        index: int,
        chunk: tuple[str, ...],
        patch: dict[str, Any],
    ) -> None:
        results = await asyncio.gather(
            *(self._sink.update_thread(thread_id, dict(patch)) for thread_id in chunk),
            return_exceptions=True,
        )
        failed = [
            tid for tid, r in zip(chunk, results, strict=True) if isinstance(r, BaseException)
        ]
        if failed:
            first = next(r for r in results if isinstance(r, BaseException))
            logger.warning(
                "bulk_chunk_failed", chunk_index=index, failed=len(failed), size=len(chunk)
            )
            raise BulkOperationError(
                f"{len(failed)} of {len(chunk)} updates failed in chunk {index}: {first}",
                chunk_index=index,
                failed_ids=failed,
            )
