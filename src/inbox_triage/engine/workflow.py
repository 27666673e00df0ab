"""Workflow status resolution and single-thread workflow actions.

Every thread has one canonical workflow status:

- "done" when the thread is manually closed (closing wins over everything)
- otherwise its stored next_action_status ("needs_action", "waiting", "fyi")
- otherwise "needs_action"

Status changes are expressed as partial-field patches. Nothing here mutates
a Thread: WorkflowActions writes the patch through the mutation sink, then
invalidates the thread cache so the next read reflects the server.

Usage:
    from inbox_triage.engine.workflow import WorkflowActions, resolve_workflow_status

    status = resolve_workflow_status(thread)  # "needs_action" | "waiting" | "fyi" | "done"

    actions = WorkflowActions(sink, cache, notifier, actor)
    await actions.mark_done(thread.id)
    await actions.reopen(thread.id)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from inbox_triage.core.logging import get_logger
from inbox_triage.core.notices import Notice
from inbox_triage.engine.threads import NextActionStatus, Thread, WorkflowStatus

if TYPE_CHECKING:
    from inbox_triage.classifier.direction import TeamMember
    from inbox_triage.core.notices import Notifier
    from inbox_triage.core.policies import Clock
    from inbox_triage.engine.cache import ThreadCache
    from inbox_triage.remote.protocol import MutationSink

logger = get_logger(__name__)

DEFAULT_STATUS: NextActionStatus = "needs_action"

STATUS_LABELS: dict[WorkflowStatus, str] = {
    "needs_action": "Needs Action",
    "waiting": "Waiting",
    "fyi": "FYI",
    "done": "Done",
}

# A thread-opened audit entry is written at most once per thread per window
OPEN_AUDIT_WINDOW_SECONDS = 30 * 60

NOTE_ENTITY = "EmailThreadNote"
AUDIT_ENTITY = "EmailAudit"


def resolve_workflow_status(thread: Thread) -> WorkflowStatus:
    """Canonical workflow status of a thread.

    The manual-closed flag always wins, so a thread that is both closed and
    "waiting" resolves to "done".
    """
    if thread.is_closed:
        return "done"
    return thread.next_action_status or DEFAULT_STATUS


@dataclass(frozen=True, slots=True)
class Actor:
    """The signed-in user performing actions.

    Attributes:
        email: Actor's email (also the assignment key)
        display_name: Preferred display name
        full_name: Fallback display name
    """

    email: str
    display_name: str | None = None
    full_name: str | None = None

    @property
    def name(self) -> str:
        return self.display_name or self.full_name or self.email


def _iso(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Patch builders
# ---------------------------------------------------------------------------


def status_patch(status: NextActionStatus) -> dict[str, Any]:
    return {"next_action_status": status}


def close_patch() -> dict[str, Any]:
    return {"userStatus": "closed"}


def reopen_patch() -> dict[str, Any]:
    """Clear the closed flag and put the thread back into needs_action."""
    return {"userStatus": None, "next_action_status": DEFAULT_STATUS}


def assign_patch(
    assignee_email: str | None,
    assignee_name: str | None,
    actor: Actor,
    now: datetime,
) -> dict[str, Any]:
    """Assign a thread to someone (or unassign with assignee_email=None).

    The assigning actor and timestamp are recorded alongside the assignee.
    """
    return {
        "assigned_to": assignee_email,
        "assigned_to_name": assignee_name if assignee_email else None,
        "assigned_by": actor.email,
        "assigned_by_name": actor.name,
        "assigned_at": _iso(now),
    }


def mark_read_patch(now: datetime) -> dict[str, Any]:
    stamp = _iso(now)
    return {"isUnread": False, "lastReadAt": stamp, "unreadUpdatedAt": stamp}


def mark_unread_patch(now: datetime) -> dict[str, Any]:
    return {"isUnread": True, "unreadUpdatedAt": _iso(now)}


def link_project_patch(project_id: str) -> dict[str, Any]:
    return {"project_id": project_id}


def link_contract_patch(contract_id: str) -> dict[str, Any]:
    return {"contract_id": contract_id}


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class WorkflowActions:
    """Single-thread workflow actions: write, invalidate, notify.

    Each action issues one patch through the mutation sink, then asks the
    thread cache to refetch. A failure of either step produces one error
    notice; success produces one success notice. Actions return True on
    success and never raise for remote failures.
    """

    def __init__(
        self,
        sink: MutationSink,
        cache: ThreadCache,
        notifier: Notifier,
        actor: Actor,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._sink = sink
        self._cache = cache
        self._notifier = notifier
        self._actor = actor
        self._now = now or (lambda: datetime.now(UTC))

    async def set_status(self, thread_id: str, status: NextActionStatus) -> bool:
        return await self._apply(
            thread_id,
            status_patch(status),
            success=f"Moved to {STATUS_LABELS[status]}",
            failure="Failed to update status",
            event="thread_status_set",
        )

    async def mark_done(self, thread_id: str) -> bool:
        return await self._apply(
            thread_id,
            close_patch(),
            success="Marked as done",
            failure="Failed to mark as done",
            event="thread_closed",
        )

    async def reopen(self, thread_id: str) -> bool:
        return await self._apply(
            thread_id,
            reopen_patch(),
            success="Reopened thread",
            failure="Failed to reopen thread",
            event="thread_reopened",
        )

    async def assign(self, thread_id: str, assignee: TeamMember | None) -> bool:
        """Assign a thread to a team member, or unassign with None."""
        if assignee is None:
            patch = assign_patch(None, None, self._actor, self._now())
            success = "Thread unassigned"
        else:
            name = assignee.display_name or assignee.email
            patch = assign_patch(assignee.email, name, self._actor, self._now())
            success = f"Assigned to {name}"
        return await self._apply(
            thread_id,
            patch,
            success=success,
            failure="Failed to assign thread",
            event="thread_assigned",
        )

    async def assign_to_me(self, thread_id: str) -> bool:
        patch = assign_patch(self._actor.email, self._actor.name, self._actor, self._now())
        return await self._apply(
            thread_id,
            patch,
            success="Assigned to you",
            failure="Failed to assign thread",
            event="thread_assigned",
        )

    async def mark_read(self, thread_id: str) -> bool:
        return await self._apply(
            thread_id,
            mark_read_patch(self._now()),
            success="Marked as read",
            failure="Failed to mark as read",
            event="thread_marked_read",
        )

    async def mark_unread(self, thread_id: str) -> bool:
        return await self._apply(
            thread_id,
            mark_unread_patch(self._now()),
            success="Marked as unread",
            failure="Failed to mark as unread",
            event="thread_marked_unread",
        )

    async def add_note(self, thread_id: str, body: str) -> bool:
        """Attach a team note to a thread. Blank notes are ignored."""
        text = body.strip() if isinstance(body, str) else ""
        if not text:
            return False
        fields = {
            "thread_id": thread_id,
            "body": text,
            "author_email": self._actor.email,
            "author_name": self._actor.name,
        }
        try:
            await self._sink.create_record(NOTE_ENTITY, fields)
        except Exception as e:
            logger.warning("thread_note_failed", thread_id=thread_id, error=str(e))
            self._notifier.notify(Notice("error", "Failed to add note"))
            return False
        logger.info("thread_note_added", thread_id=thread_id)
        self._notifier.notify(Notice("success", "Note added"))
        return True

    async def _apply(
        self,
        thread_id: str,
        patch: dict[str, Any],
        *,
        success: str,
        failure: str,
        event: str,
    ) -> bool:
        try:
            await self._sink.update_thread(thread_id, patch)
            await self._cache.invalidate()
        except Exception as e:
            logger.warning(f"{event}_failed", thread_id=thread_id, error=str(e))
            self._notifier.notify(Notice("error", failure))
            return False
        logger.info(event, thread_id=thread_id, fields=sorted(patch))
        self._notifier.notify(Notice("success", success))
        return True


class OpenAuditTracker:
    """Record "thread opened" audit entries, at most once per thread per window.

    Audit writes are best effort: failures are logged and never surface as
    notices.
    """

    def __init__(
        self,
        sink: MutationSink,
        actor: Actor,
        window_seconds: float = OPEN_AUDIT_WINDOW_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        self._sink = sink
        self._actor = actor
        self._window = window_seconds
        self._clock = clock
        self._last_recorded: dict[str, float] = {}

    def should_record(self, thread_id: str) -> bool:
        last = self._last_recorded.get(thread_id)
        return last is None or self._clock() - last >= self._window

    async def record_open(self, thread_id: str) -> bool:
        """Write an audit entry unless one was written recently.

        Returns:
            True when an entry was written
        """
        if not self.should_record(thread_id):
            return False
        self._last_recorded[thread_id] = self._clock()
        try:
            await self._sink.create_record(
                AUDIT_ENTITY,
                {
                    "thread_id": thread_id,
                    "action": "thread_opened",
                    "actor_email": self._actor.email,
                    "actor_name": self._actor.name,
                },
            )
        except Exception as e:
            logger.debug("thread_open_audit_failed", thread_id=thread_id, error=str(e))
            return False
        return True
