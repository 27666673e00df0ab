"""Per-thread annotation: status, direction, intent, category and triage hint.

Annotation is pure and never raises past its boundary. A thread whose
classification blows up unexpectedly is still returned, with safe defaults
(unknown direction, no intent, uncategorised), and the failure is logged.

Usage:
    from inbox_triage.engine.annotate import ThreadAnnotator

    annotator = ThreadAnnotator.from_config(config.classifier)
    annotated = annotator.annotate_all(threads, org_addresses)
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from inbox_triage.classifier.category import CategorySuggester, CategorySuggestion
from inbox_triage.classifier.direction import resolve_direction
from inbox_triage.classifier.intent import (
    LOW_VALUE_SNIPPET_MAX_CHARS,
    IntentResult,
    classify_thread_intent,
)
from inbox_triage.core.logging import get_logger
from inbox_triage.engine.threads import Direction, Thread, WorkflowStatus
from inbox_triage.engine.workflow import resolve_workflow_status

if TYPE_CHECKING:
    from inbox_triage.config_schema import ClassifierConfig

logger = get_logger(__name__)

TriageHint = Literal["closed", "needs_link", "needs_reply", "important_fyi", "reference", "waiting"]


@dataclass(frozen=True, slots=True)
class AnnotatedThread:
    """A thread plus everything the views need to filter, sort and render it.

    Attributes:
        thread: The underlying thread record
        status: Canonical workflow status
        direction: Who wrote the last message
        intent: Intent bucket, only for received threads
        category: Suggested subject-matter category
        triage_hint: Display-only legacy triage bucket
        triage_reason: Why the hint was chosen
    """

    thread: Thread
    status: WorkflowStatus
    direction: Direction
    intent: IntentResult | None
    category: CategorySuggestion
    triage_hint: TriageHint
    triage_reason: str


def derive_triage_hint(
    thread: Thread,
    direction: Direction,
    intent: IntentResult | None,
) -> tuple[TriageHint, str]:
    """Display-only triage bucket.

    Closed threads are "closed", unlinked threads "needs_link". Linked
    threads follow their direction: received threads take their intent
    bucket, sent threads are "waiting", unknown direction is "reference".
    """
    if thread.is_closed:
        return "closed", "closed"
    if not thread.is_linked:
        return "needs_link", "unlinked"
    if direction == "received" and intent is not None:
        return intent.bucket, intent.reason
    if direction == "sent":
        return "waiting", "sent-last"
    return "reference", "unknown-direction"


class ThreadAnnotator:
    """Annotate threads with the classification layer's outputs."""

    def __init__(
        self,
        category_suggester: CategorySuggester | None = None,
        low_value_max_chars: int = LOW_VALUE_SNIPPET_MAX_CHARS,
    ) -> None:
        self._suggester = category_suggester or CategorySuggester()
        self._low_value_max_chars = low_value_max_chars

    @classmethod
    def from_config(cls, config: ClassifierConfig) -> ThreadAnnotator:
        suggester = CategorySuggester(
            threshold=config.category_threshold,
            score_overrides=config.category_scores,
        )
        return cls(suggester, config.low_value_snippet_max_chars)

    def annotate(self, thread: Thread, org_addresses: frozenset[str]) -> AnnotatedThread:
        status = resolve_workflow_status(thread)
        try:
            direction = resolve_direction(thread, org_addresses)
            intent = (
                classify_thread_intent(thread, self._low_value_max_chars)
                if direction == "received"
                else None
            )
            category = self._suggester.suggest_for_thread(thread)
        except Exception as e:
            logger.warning("thread_annotation_failed", thread_id=thread.id, error=str(e))
            direction, intent = "unknown", None
            category = CategorySuggestion("uncategorised", "no strong match", 0)

        hint, reason = derive_triage_hint(thread, direction, intent)
        return AnnotatedThread(
            thread=thread,
            status=status,
            direction=direction,
            intent=intent,
            category=category,
            triage_hint=hint,
            triage_reason=reason,
        )

    def annotate_all(
        self,
        threads: Iterable[Thread],
        org_addresses: frozenset[str],
    ) -> list[AnnotatedThread]:
        """Annotate every thread that is not soft-deleted, preserving order."""
        return [self.annotate(t, org_addresses) for t in threads if not t.is_deleted]
