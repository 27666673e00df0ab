"""Intent classifier for received threads.

Buckets a received thread by how much attention it needs:

1. needs_reply    - actionable language anywhere in subject + snippet
2. important_fyi  - transactional notices (orders, invoices, shipping, ETA)
3. reference      - short low-value acknowledgements ("thanks", "approved")
4. needs_reply    - default: unclassified received mail is never silently archived

Actionable language is checked first on purpose, so "please confirm the
invoice" is a reply, not a passive FYI.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from inbox_triage.classifier.patterns import (
    ACTIONABLE_PATTERNS,
    IMPORTANT_FYI_PATTERNS,
    LOW_VALUE_ACK_PATTERNS,
    matches_any,
)
from inbox_triage.engine.threads import Thread

IntentBucket = Literal["needs_reply", "important_fyi", "reference"]

# Snippets longer than this are never treated as a bare acknowledgement
LOW_VALUE_SNIPPET_MAX_CHARS = 60

# Joins subject and snippet into the combined text that patterns run against
TEXT_SEPARATOR = "\n"


@dataclass(frozen=True, slots=True)
class IntentResult:
    """Intent bucket with the rule that produced it."""

    bucket: IntentBucket
    reason: str


def combined_text(subject: str, snippet: str) -> str:
    return f"{subject}{TEXT_SEPARATOR}{snippet}"


def classify_intent(
    subject: str,
    snippet: str,
    low_value_max_chars: int = LOW_VALUE_SNIPPET_MAX_CHARS,
) -> IntentResult:
    """Classify the intent of a received message from its subject and snippet.

    Args:
        subject: Thread subject
        snippet: Preview text of the latest message
        low_value_max_chars: Longest trimmed snippet that may count as an acknowledgement

    Returns:
        IntentResult; deterministic for equal inputs
    """
    subject = subject if isinstance(subject, str) else ""
    snippet = snippet if isinstance(snippet, str) else ""
    combined = combined_text(subject, snippet)

    if matches_any(combined, ACTIONABLE_PATTERNS):
        return IntentResult("needs_reply", "actionable-pattern")

    if matches_any(subject, IMPORTANT_FYI_PATTERNS) or matches_any(
        combined, IMPORTANT_FYI_PATTERNS
    ):
        return IntentResult("important_fyi", "important-fyi")

    short_snippet = snippet.strip()
    if 0 < len(short_snippet) <= low_value_max_chars and matches_any(
        short_snippet, LOW_VALUE_ACK_PATTERNS
    ):
        return IntentResult("reference", "low-value-fyi")

    return IntentResult("needs_reply", "received-default")


def classify_thread_intent(
    thread: Thread,
    low_value_max_chars: int = LOW_VALUE_SNIPPET_MAX_CHARS,
) -> IntentResult:
    """Convenience wrapper for classify_intent() on a Thread."""
    return classify_intent(thread.subject, thread.snippet, low_value_max_chars)
