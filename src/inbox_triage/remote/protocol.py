"""Collaborator contracts at the edge of the triage engine.

Three remote collaborators are consumed, never implemented here in
anything but an HTTP client (see remote.client):

- ThreadSource: bounded, cursor-paginated pages of raw thread records
- MutationSink: partial-field updates for threads, creation of side records
  (team notes, audit entries)
- RemoteSync: the single "pull new mail" operation, which either completes
  with a summary or reports that another session holds the server lock
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class ThreadPage:
    """One page of raw thread records.

    Attributes:
        threads: Raw records visible to the current actor
        has_more: Whether older pages exist
        next_before: Cursor for the next page (last_message_date of the oldest record)
    """

    threads: list[dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    next_before: str | None = None


@dataclass(frozen=True, slots=True)
class SyncSummary:
    """Counts reported by a completed remote sync."""

    threads_synced: int = 0
    messages_synced: int = 0


@dataclass(frozen=True, slots=True)
class SyncResponse:
    """Outcome of one remote sync call.

    Attributes:
        skipped: True when the remote did not run the sync
        reason: Why it was skipped ("locked" when another session holds the lock)
        locked_until: ISO time the server lock expires (when locked)
        locked_by: Who holds the server lock (when locked)
        summary: Counts from a completed sync
        errors: Non-fatal per-phase errors reported by a completed sync
    """

    skipped: bool = False
    reason: str | None = None
    locked_until: str | None = None
    locked_by: str | None = None
    summary: SyncSummary | None = None
    errors: tuple[str, ...] = ()

    @property
    def is_locked(self) -> bool:
        return self.skipped and self.reason == "locked"

    @classmethod
    def from_payload(cls, payload: Any) -> SyncResponse:
        """Parse a remote JSON payload, tolerating missing or mistyped fields.

        Accepts the payload either at the top level or wrapped in "data".
        """
        if not isinstance(payload, dict):
            return cls()
        if isinstance(payload.get("data"), dict) and "skipped" not in payload:
            payload = payload["data"]

        summary = None
        raw_summary = payload.get("summary")
        if isinstance(raw_summary, dict):
            summary = SyncSummary(
                threads_synced=_as_int(raw_summary.get("threads_synced")),
                messages_synced=_as_int(raw_summary.get("messages_synced")),
            )

        raw_errors = payload.get("errors")
        errors = tuple(str(e) for e in raw_errors) if isinstance(raw_errors, list) else ()

        return cls(
            skipped=payload.get("skipped") is True,
            reason=payload.get("reason") if isinstance(payload.get("reason"), str) else None,
            locked_until=_as_optional_str(payload.get("locked_until")),
            locked_by=_as_optional_str(payload.get("locked_by")),
            summary=summary,
            errors=errors,
        )


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_optional_str(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


class ThreadSource(Protocol):
    """Query for pages of thread records visible to the current actor."""

    async def fetch_threads(self, limit: int, before: str | None = None) -> ThreadPage:
        """Fetch up to `limit` threads older than the `before` cursor (newest first)."""
        ...


class MutationSink(Protocol):
    """Record-level writes keyed by identifier."""

    async def update_thread(self, thread_id: str, patch: dict[str, Any]) -> None:
        """Apply a partial-field patch to one thread."""
        ...

    async def create_record(self, entity: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Create a side record (e.g. "EmailThreadNote", "EmailAudit")."""
        ...


class RemoteSync(Protocol):
    """The remote "pull new mail" operation. Idempotent, no required input."""

    async def run_sync(self) -> SyncResponse: ...
