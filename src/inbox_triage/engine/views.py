"""View filter and sorter.

Two surfaces project the annotated thread list:

Workflow views (the primary surface), one of:
    unassigned  - needs_action with no assignee, newest first
    my-actions  - needs_action assigned to the actor, newest first
    waiting     - waiting on someone else, OLDEST first so stalled items surface
    fyi         - informational, newest first
    done        - closed, newest first

Filter toggles (the simpler surface). At most one toggle applies, chosen by
FILTER_PRIORITY. Closed threads only appear under the "closed" toggle. Results
sort pinned first (most recently pinned on top), then unread, then newest.

Both surfaces run the same pipeline: drop soft-deleted threads, annotate,
apply the free-text search, apply the view predicate, sort. Sorting is
stable, so equal timestamps keep their input order.

Usage:
    from inbox_triage.engine.views import filter_workflow_view, count_workflow

    waiting = filter_workflow_view(threads, "waiting", actor_email="me@acme.test")
    counts = count_workflow(threads, actor_email="me@acme.test")
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, fields
from typing import Literal, get_args

from inbox_triage.engine.annotate import AnnotatedThread, ThreadAnnotator
from inbox_triage.engine.threads import Thread, epoch_ms, normalize_email
from inbox_triage.engine.workflow import resolve_workflow_status

WorkflowView = Literal["unassigned", "my-actions", "waiting", "fyi", "done"]
InboxFilter = Literal[
    "closed", "assigned_to_me", "sent", "received", "pinned", "linked", "unlinked"
]

WORKFLOW_VIEWS: tuple[WorkflowView, ...] = get_args(WorkflowView)

# When several toggles are on, the first one in this order wins
FILTER_PRIORITY: tuple[InboxFilter, ...] = get_args(InboxFilter)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def matches_search(thread: Thread, term: str) -> bool:
    """Case-insensitive substring search over the thread's visible text.

    Searches subject, customer name, sender, every recipient and the snippet.
    The raw term is used as typed, spaces included. An empty term matches
    everything.
    """
    needle = term.lower() if isinstance(term, str) else ""
    if not needle:
        return True
    haystacks = (
        thread.subject,
        thread.customer_name,
        thread.from_address,
        *thread.to_addresses,
        thread.snippet,
    )
    return any(needle in h.lower() for h in haystacks if h)


def _is_assigned_to(thread: Thread, actor_email: str | None) -> bool:
    actor = normalize_email(actor_email)
    return bool(actor) and normalize_email(thread.assigned_to) == actor


# ---------------------------------------------------------------------------
# Workflow views
# ---------------------------------------------------------------------------


def _view_predicate(
    view: WorkflowView,
    actor_email: str | None,
) -> Callable[[AnnotatedThread], bool]:
    if view == "unassigned":
        return lambda a: a.status == "needs_action" and not a.thread.assigned_to
    if view == "my-actions":
        return lambda a: a.status == "needs_action" and _is_assigned_to(a.thread, actor_email)
    if view in ("waiting", "fyi", "done"):
        return lambda a: a.status == view
    raise ValueError(f"Unknown workflow view: {view!r}")


def sort_for_view(items: list[AnnotatedThread], view: WorkflowView) -> list[AnnotatedThread]:
    """Sort annotated threads by last message time for a view.

    "waiting" is oldest first; every other view is newest first. Missing
    timestamps sort as epoch zero.
    """
    if view == "waiting":
        return sorted(items, key=lambda a: a.thread.last_message_ms)
    return sorted(items, key=lambda a: a.thread.last_message_ms, reverse=True)


def filter_workflow_view(
    threads: Iterable[Thread],
    view: WorkflowView,
    *,
    search: str = "",
    actor_email: str | None = None,
    org_addresses: frozenset[str] = frozenset(),
    annotator: ThreadAnnotator | None = None,
) -> list[AnnotatedThread]:
    """Project threads onto one workflow view.

    Args:
        threads: Threads from the cache
        view: Workflow view to show
        search: Free-text search term
        actor_email: Current user (for "my-actions")
        org_addresses: Organization addresses for direction resolution
        annotator: Annotator to use (default classifier settings when None)

    Returns:
        Annotated threads in display order

    Raises:
        ValueError: If the view name is unknown
    """
    predicate = _view_predicate(view, actor_email)
    annotated = (annotator or ThreadAnnotator()).annotate_all(threads, org_addresses)
    matched = [a for a in annotated if matches_search(a.thread, search) and predicate(a)]
    return sort_for_view(matched, view)


@dataclass(frozen=True, slots=True)
class WorkflowCounts:
    """Number of threads in each workflow view.

    Threads in needs_action assigned to someone other than the actor are
    counted in none of the buckets.
    """

    unassigned: int = 0
    my_actions: int = 0
    waiting: int = 0
    fyi: int = 0
    done: int = 0

    def as_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def count_workflow(threads: Iterable[Thread], actor_email: str | None = None) -> WorkflowCounts:
    """Count non-deleted threads per workflow view (search is not applied)."""
    counts = dict.fromkeys(("unassigned", "my_actions", "waiting", "fyi", "done"), 0)
    for thread in threads:
        if thread.is_deleted:
            continue
        status = resolve_workflow_status(thread)
        if status != "needs_action":
            counts[status] += 1
        elif not thread.assigned_to:
            counts["unassigned"] += 1
        elif _is_assigned_to(thread, actor_email):
            counts["my_actions"] += 1
    return WorkflowCounts(**counts)


# ---------------------------------------------------------------------------
# Filter toggles
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FilterToggles:
    """On/off state of the simple-surface filter toggles."""

    closed: bool = False
    assigned_to_me: bool = False
    sent: bool = False
    received: bool = False
    pinned: bool = False
    linked: bool = False
    unlinked: bool = False

    @classmethod
    def from_names(cls, names: Iterable[str]) -> FilterToggles:
        """Build toggles from filter names (unknown names raise ValueError)."""
        wanted = set(names)
        unknown = wanted - set(FILTER_PRIORITY)
        if unknown:
            raise ValueError(f"Unknown filter(s): {', '.join(sorted(unknown))}")
        return cls(**{name: True for name in wanted})

    def active(self) -> InboxFilter | None:
        """The single filter that applies, by priority, or None."""
        for name in FILTER_PRIORITY:
            if getattr(self, name):
                return name
        return None


def _filter_predicate(
    active: InboxFilter | None,
    actor_email: str | None,
) -> Callable[[AnnotatedThread], bool]:
    if active == "closed":
        return lambda a: a.thread.is_closed
    if active == "assigned_to_me":
        return lambda a: _is_assigned_to(a.thread, actor_email)
    if active == "sent":
        return lambda a: a.direction == "sent"
    if active == "received":
        return lambda a: a.direction == "received"
    if active == "pinned":
        return lambda a: a.thread.is_pinned
    if active == "linked":
        return lambda a: a.thread.is_linked
    if active == "unlinked":
        return lambda a: not a.thread.is_linked
    return lambda a: True


def sort_inbox(items: list[AnnotatedThread]) -> list[AnnotatedThread]:
    """Pinned first (latest pin on top), then unread, then newest message."""
    return sorted(
        items,
        key=lambda a: (
            not a.thread.is_pinned,
            -epoch_ms(a.thread.pinned_at),
            not a.thread.is_unread,
            -a.thread.last_message_ms,
        ),
    )


def filter_inbox(
    threads: Iterable[Thread],
    toggles: FilterToggles | None = None,
    *,
    search: str = "",
    actor_email: str | None = None,
    org_addresses: frozenset[str] = frozenset(),
    annotator: ThreadAnnotator | None = None,
) -> list[AnnotatedThread]:
    """Project threads through the filter toggles.

    Closed threads are hidden unless the "closed" toggle is the active one.
    """
    active = (toggles or FilterToggles()).active()
    predicate = _filter_predicate(active, actor_email)
    annotated = (annotator or ThreadAnnotator()).annotate_all(threads, org_addresses)
    matched = [
        a
        for a in annotated
        if matches_search(a.thread, search)
        and (active == "closed" or not a.thread.is_closed)
        and predicate(a)
    ]
    return sort_inbox(matched)
